"""Demotion slash commands.

一時降格 (ロールの一時剥奪) を操作するコマンドの Cog。
- /demote: ユーザーからロールを一定期間剥奪する
- /demotions list: 有効な降格の一覧
- /demotions restore: 早期に手動復元する (ロール指定なしで全て)
- /demotions history: ユーザーの降格履歴

実際の状態遷移は DemotionService が行い、この Cog は入力の受け取りと
結果の表示だけを担当する。
"""

from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from src.constants import (
    AUTOCOMPLETE_CHOICE_LIMIT,
    DEFAULT_EMBED_COLOR,
    DEFAULT_REASON,
    DEMOTION_EMBED_COLOR,
    MAX_DEMOTION_HOURS,
    MAX_DEMOTION_MINUTES,
)
from src.core.builders import (
    build_discord_timestamp,
    build_duration_text,
    build_role_list_text,
)
from src.core.errors import AlreadyDemotedError, DemotionError
from src.core.validators import is_selectable_role_id
from src.database.models import Demotion
from src.services.demotion_service import DemotionRequest, DemotionService

logger = logging.getLogger(__name__)


# =============================================================================
# 表示用ヘルパー
# =============================================================================


def build_active_list_embed(demotions: list[Demotion], now: int) -> discord.Embed:
    """有効な降格一覧の Embed を作る。"""
    embed = discord.Embed(title="⬇️ Active Demotions", color=DEMOTION_EMBED_COLOR)
    lines: list[str] = []
    for demotion in demotions:
        if demotion.restore_at <= now:
            restore_display = "✅ **Done** (まもなく復元)"
        else:
            restore_display = (
                f"{build_discord_timestamp(demotion.restore_at, 'R')} "
                f"({build_discord_timestamp(demotion.restore_at, 't')})"
            )
        lines.append(
            f"**<@{demotion.user_id}>**\n"
            f"└ Role: **{demotion.role_name}**\n"
            f"└ Restores: {restore_display}\n"
            f"└ By: <@{demotion.demoted_by}>\n"
            f"└ Reason: {demotion.reason or DEFAULT_REASON}\n"
        )
    embed.description = "\n".join(lines)
    embed.set_footer(text=f"{len(demotions)} active demotion(s)")
    return embed


def build_history_embed(user: discord.abc.User, history: list[Demotion]) -> discord.Embed:
    """降格履歴の Embed を作る。"""
    embed = discord.Embed(
        title=f"📜 Demotion History: {user}",
        color=DEFAULT_EMBED_COLOR,
    )
    embed.set_thumbnail(url=user.display_avatar.url)
    lines: list[str] = []
    for record in history:
        status = "✅ Restored" if record.restored else "⏳ Active"
        lines.append(
            f"**{record.role_name}** - {status}\n"
            f"└ Demoted: {build_discord_timestamp(record.demoted_at, 'R')}\n"
            f"└ By: <@{record.demoted_by}>\n"
            f"└ Reason: {record.reason or DEFAULT_REASON}\n"
        )
    embed.description = "\n".join(lines)
    embed.set_footer(text=f"Showing last {len(history)} demotion(s)")
    return embed


def build_demotion_success_message(
    demotion: Demotion, user: discord.abc.User, hours: int, minutes: int
) -> str:
    """降格成功時のメッセージを作る。"""
    return (
        "⬇️ **Demotion Successful!**\n\n"
        f"**User:** {user}\n"
        f"**Role Removed:** {demotion.role_name}\n"
        f"**Duration:** {build_duration_text(hours, minutes)}\n"
        f"**Restore Time:** {build_discord_timestamp(demotion.restore_at)}\n"
        f"**Reason:** {demotion.reason or DEFAULT_REASON}\n\n"
        "期間が終了すると自動的にロールが復元されます。"
    )


class DemotionCog(commands.Cog):
    """一時降格コマンドの Cog。"""

    def __init__(self, bot: commands.Bot, service: DemotionService) -> None:
        self.bot = bot
        self.service = service

    demotions_group = app_commands.Group(
        name="demotions",
        description="降格の一覧・手動復元・履歴",
        default_permissions=discord.Permissions(manage_roles=True),
        guild_only=True,
    )

    # ==========================================================================
    # /demote
    # ==========================================================================

    @app_commands.command(
        name="demote", description="ユーザーからロールを一定期間剥奪する"
    )
    @app_commands.describe(
        user="降格するユーザー",
        role="一時的に外すロール (入力して検索)",
        hours=f"時間 (0-{MAX_DEMOTION_HOURS})",
        minutes=f"分 (0-{MAX_DEMOTION_MINUTES})",
        reason="理由",
    )
    @app_commands.default_permissions(manage_roles=True)
    @app_commands.guild_only()
    async def demote(
        self,
        interaction: discord.Interaction,
        user: discord.User,
        role: str,
        hours: app_commands.Range[int, 0, MAX_DEMOTION_HOURS] = 0,
        minutes: app_commands.Range[int, 0, MAX_DEMOTION_MINUTES] = 0,
        reason: str | None = None,
    ) -> None:
        """ユーザーを一時降格する。"""
        if interaction.guild is None:
            return

        try:
            await interaction.response.defer()
        except (discord.HTTPException, discord.InteractionResponded):
            return

        if not is_selectable_role_id(role):
            await interaction.followup.send(
                "❌ 候補から有効なロールを選択してください。"
            )
            return

        request = DemotionRequest(
            guild_id=str(interaction.guild.id),
            user_id=str(user.id),
            role_id=role,
            actor_id=str(interaction.user.id),
            hours=hours,
            minutes=minutes,
            reason=reason,
        )

        try:
            demotion = await self.service.create_demotion(request)
        except AlreadyDemotedError as e:
            message = f"❌ {e.user_message}"
            if e.existing is not None:
                message += (
                    "\n復元予定: "
                    f"{build_discord_timestamp(e.existing.restore_at)}"
                )
            await interaction.followup.send(message)
            return
        except DemotionError as e:
            await interaction.followup.send(f"❌ {e.user_message}")
            return

        await interaction.followup.send(
            build_demotion_success_message(demotion, user, hours, minutes)
        )

    @demote.autocomplete("role")
    async def role_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        """選択中のユーザーが持つロールを候補として返す。"""
        guild = interaction.guild
        user = getattr(interaction.namespace, "user", None)
        if guild is None or user is None:
            return [
                app_commands.Choice(
                    name="⚠️ 先にユーザーを選択してください", value="none"
                )
            ]

        member = await self.service.gateway.fetch_member(str(guild.id), str(user.id))
        if member is None:
            return [
                app_commands.Choice(name="❌ ユーザーがサーバーにいません", value="none")
            ]

        search = current.lower()
        roles = sorted(
            (
                r
                for r in member.roles
                if r.id != guild.id and search in r.name.lower()
            ),
            key=lambda r: r.position,
            reverse=True,
        )[:AUTOCOMPLETE_CHOICE_LIMIT]

        if not roles:
            label = "一致するロールがありません" if search else "降格できるロールがありません"
            return [app_commands.Choice(name=label, value="none")]

        return [app_commands.Choice(name=r.name, value=str(r.id)) for r in roles]

    # ==========================================================================
    # /demotions
    # ==========================================================================

    async def _defer_authorized(self, interaction: discord.Interaction) -> bool:
        """応答を保留し、実行権限を確認する。権限がなければ応答して False。"""
        if interaction.guild is None:
            return False
        try:
            await interaction.response.defer()
        except (discord.HTTPException, discord.InteractionResponded):
            return False
        try:
            await self.service.check_authorized(
                str(interaction.guild.id), str(interaction.user.id)
            )
        except DemotionError as e:
            await interaction.followup.send(f"❌ {e.user_message}")
            return False
        return True

    @demotions_group.command(name="list", description="有効な降格の一覧")
    async def demotions_list(self, interaction: discord.Interaction) -> None:
        """ギルド内の有効な降格を表示する。"""
        if not await self._defer_authorized(interaction):
            return
        assert interaction.guild is not None

        demotions = await self.service.list_active_demotions(str(interaction.guild.id))
        if not demotions:
            await interaction.followup.send("✅ 有効な降格はありません。")
            return

        embed = build_active_list_embed(demotions, self.service.now())
        await interaction.followup.send(embed=embed)

    @demotions_group.command(name="restore", description="降格を早期に解除する")
    @app_commands.describe(
        user="復元するユーザー",
        role="復元するロール (省略時はすべて)",
    )
    async def demotions_restore(
        self,
        interaction: discord.Interaction,
        user: discord.User,
        role: discord.Role | None = None,
    ) -> None:
        """降格を手動で早期復元する。"""
        if not await self._defer_authorized(interaction):
            return
        assert interaction.guild is not None

        try:
            restored = await self.service.restore_demotion(
                str(user.id),
                str(interaction.guild.id),
                str(role.id) if role else None,
                actor_id=str(interaction.user.id),
            )
        except DemotionError as e:
            suffix = f" (ロール **{role.name}**)" if role else ""
            await interaction.followup.send(f"❌ {user}: {e.user_message}{suffix}")
            return

        if not restored:
            # 記録は解除済み。メンバー退出やロール削除で付与できなかった
            await interaction.followup.send(
                f"⚠️ {user} はサーバーにいないか、ロールが削除されているため"
                "ロールを復元できませんでした。"
                "降格は解除済みとして記録しました。"
            )
            return

        await interaction.followup.send(
            f"✅ {user} に {len(restored)} 件のロールを復元しました: "
            f"{build_role_list_text(restored)}"
        )

    @demotions_group.command(name="history", description="ユーザーの降格履歴")
    @app_commands.describe(user="履歴を確認するユーザー")
    async def demotions_history(
        self, interaction: discord.Interaction, user: discord.User
    ) -> None:
        """ユーザーの降格履歴を表示する。"""
        if not await self._defer_authorized(interaction):
            return
        assert interaction.guild is not None

        history = await self.service.get_history(str(user.id), str(interaction.guild.id))
        if not history:
            await interaction.followup.send(f"📜 {user} の降格履歴はありません。")
            return

        await interaction.followup.send(embed=build_history_embed(user, history))


async def setup(bot: commands.Bot) -> None:
    """Cog を Bot に登録する関数。bot.load_extension() から呼ばれる。"""
    await bot.add_cog(DemotionCog(bot, bot.demotion_service))  # type: ignore[attr-defined]
