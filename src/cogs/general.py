"""General commands and events.

- /commands: 登録されているスラッシュコマンドの一覧
- on_member_join: 設定されたチャンネルにウェルカムメッセージを送信
"""

from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from src.config import settings
from src.constants import DEFAULT_EMBED_COLOR

logger = logging.getLogger(__name__)


def build_command_list_embed(
    command_list: list[app_commands.Command | app_commands.Group],
) -> discord.Embed:
    """コマンド一覧の Embed を作る。グループはサブコマンドを展開する。"""
    lines: list[str] = []
    for command in sorted(command_list, key=lambda c: c.name):
        if isinstance(command, app_commands.Group):
            for sub in command.commands:
                lines.append(f"**/{command.name} {sub.name}** - {sub.description}")
        else:
            lines.append(f"**/{command.name}** - {command.description}")

    embed = discord.Embed(
        title="🤖 Commands",
        description="\n".join(lines),
        color=DEFAULT_EMBED_COLOR,
    )
    embed.set_footer(text=f"{len(lines)} commands available")
    return embed


class GeneralCog(commands.Cog):
    """一般コマンドとイベントの Cog。"""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @app_commands.command(name="commands", description="コマンド一覧を表示")
    async def list_commands(self, interaction: discord.Interaction) -> None:
        """Bot のスラッシュコマンド一覧を表示する。"""
        embed = build_command_list_embed(list(self.bot.tree.get_commands()))
        await interaction.response.send_message(embed=embed)

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        """新規メンバーにウェルカムメッセージを送る。"""
        channel_name = settings.welcome_channel_name
        if not channel_name or member.bot:
            return

        channel = discord.utils.get(member.guild.text_channels, name=channel_name)
        if channel is None:
            return

        try:
            await channel.send(f"ようこそ {member.mention} さん、{member.guild.name} へ!")
        except discord.HTTPException:
            logger.warning(
                "Failed to send welcome message in guild %s", member.guild.id
            )


async def setup(bot: commands.Bot) -> None:
    """Cog を Bot に登録する。"""
    await bot.add_cog(GeneralCog(bot))
