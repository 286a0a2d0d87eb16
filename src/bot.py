"""Discord bot class.

Bot 本体。起動時に DB を初期化し、Cog を読み込み、スラッシュコマンドを同期する。

降格機能の共有オブジェクト (予約マーカー、Gateway、DemotionService) は
Bot が所有し、各 Cog の setup() から参照する。
"""

from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from src.config import settings
from src.database.engine import init_db
from src.services.demotion_service import DemotionService
from src.services.gateway import DiscordGateway
from src.utils import ExpiringKeyCache

logger = logging.getLogger(__name__)

EXTENSIONS = (
    "src.cogs.general",
    "src.cogs.demotion",
    "src.cogs.demotion_tasks",
)

_ACTIVITY_TYPES = {
    "playing": discord.ActivityType.playing,
    "listening": discord.ActivityType.listening,
    "watching": discord.ActivityType.watching,
    "competing": discord.ActivityType.competing,
    "streaming": discord.ActivityType.streaming,
}

_STATUSES = {
    "online": discord.Status.online,
    "idle": discord.Status.idle,
    "dnd": discord.Status.dnd,
    "invisible": discord.Status.invisible,
}


def make_activity(activity_type: str, text: str) -> discord.BaseActivity | None:
    """設定値からアクティビティを作る。テキストが空なら None。"""
    if not text:
        return None
    kind = _ACTIVITY_TYPES.get(activity_type.lower(), discord.ActivityType.playing)
    if kind is discord.ActivityType.playing:
        return discord.Game(name=text)
    return discord.Activity(type=kind, name=text)


def make_status(status: str) -> discord.Status:
    """設定値から Discord のステータスを作る。不明な値は online。"""
    return _STATUSES.get(status.lower(), discord.Status.online)


class CooldownCommandTree(app_commands.CommandTree):
    """ユーザーごとのクールダウンを適用するコマンドツリー。"""

    def __init__(
        self, client: discord.Client, *, cooldown_seconds: float | None = None
    ) -> None:
        super().__init__(client)
        self.cooldown_seconds = (
            cooldown_seconds
            if cooldown_seconds is not None
            else settings.command_cooldown_seconds
        )
        self.cooldowns = ExpiringKeyCache()

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        """クールダウン中なら応答して False を返す。"""
        if interaction.type is not discord.InteractionType.application_command:
            return True

        key = interaction.user.id
        if self.cooldowns.is_reserved(key):
            time_left = self.cooldowns.remaining(key)
            name = interaction.command.name if interaction.command else "command"
            try:
                await interaction.response.send_message(
                    f"/{name} を再度使うには {time_left:.1f} 秒お待ちください。",
                    ephemeral=True,
                )
            except discord.HTTPException:
                logger.warning("Failed to send cooldown reply to %s", key)
            return False

        self.cooldowns.reserve(key, self.cooldown_seconds)
        logger.info(
            "Executing %s for user %s",
            interaction.command.name if interaction.command else "?",
            key,
        )
        return True

    async def on_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        """コマンド実行中の予期しないエラーをログに出し、汎用メッセージで応答する。"""
        name = interaction.command.name if interaction.command else "?"
        logger.error("Error executing %s", name, exc_info=error)
        message = "コマンドの実行中にエラーが発生しました。"
        try:
            if interaction.response.is_done():
                await interaction.followup.send(message, ephemeral=True)
            else:
                await interaction.response.send_message(message, ephemeral=True)
        except discord.HTTPException:
            logger.warning("Failed to send error reply for %s", name)


class DemotionBot(commands.Bot):
    """一時降格 Bot。"""

    def __init__(self) -> None:
        intents = discord.Intents.default()
        intents.members = True
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            activity=make_activity(settings.activity_type, settings.activity_name),
            status=make_status(settings.bot_status),
            tree_cls=CooldownCommandTree,
        )
        self.reservations = ExpiringKeyCache()
        self.gateway = DiscordGateway(self)
        self.demotion_service = DemotionService(self.gateway, self.reservations)

    async def setup_hook(self) -> None:
        """Bot 起動時の初期化処理。"""
        await init_db()

        for extension in EXTENSIONS:
            await self.load_extension(extension)

        await self.tree.sync()
        logger.info("Commands synced globally")

    async def on_ready(self) -> None:
        """接続完了時のログ出力。"""
        logger.info("Ready! Logged in as %s", self.user)
