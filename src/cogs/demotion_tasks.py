"""Demotion background tasks cog.

一時降格の自動復元と保護を行う Cog。

仕組み:
  - tasks.loop で一定間隔 (既定 10 秒) ごとに DemotionReconciler を実行し、
    期限切れの降格を復元する
  - on_member_update でロール追加を検知し、ProtectionGuard に渡して
    降格中ロールの再付与を取り消す

Reconciler と Guard は互いを参照しない。共有するのは DB と予約マーカーだけ。
"""

from __future__ import annotations

import logging

import discord
from discord.ext import commands, tasks

from src.config import settings
from src.services.protection import ProtectionGuard
from src.services.reconciler import DemotionReconciler

logger = logging.getLogger(__name__)


class DemotionTasksCog(commands.Cog):
    """自動復元ループと保護リスナーを提供する Cog。"""

    def __init__(
        self,
        bot: commands.Bot,
        reconciler: DemotionReconciler,
        guard: ProtectionGuard,
    ) -> None:
        self.bot = bot
        self.reconciler = reconciler
        self.guard = guard

    async def cog_load(self) -> None:
        """Cog 読み込み時にバックグラウンドタスクを開始する。"""
        self._check_demotions.change_interval(
            seconds=settings.demotion_check_interval_seconds
        )
        self._check_demotions.start()
        logger.info(
            "Demotion auto-restore task started (every %ss)",
            settings.demotion_check_interval_seconds,
        )

    async def cog_unload(self) -> None:
        """Cog アンロード時にバックグラウンドタスクを停止する。"""
        if self._check_demotions.is_running():
            self._check_demotions.cancel()

    # ==========================================================================
    # イベントリスナー
    # ==========================================================================

    @commands.Cog.listener()
    async def on_member_update(
        self, before: discord.Member, after: discord.Member
    ) -> None:
        """ロール追加時に降格中のロールでないか確認する。"""
        before_ids = {str(r.id) for r in before.roles}
        after_ids = {str(r.id) for r in after.roles}
        if not after_ids - before_ids:
            return

        try:
            await self.guard.handle_role_change(
                str(after.guild.id),
                str(after.id),
                before_ids,
                after_ids,
                user_display=str(after),
            )
        except Exception:
            logger.exception(
                "Demotion Protection: error handling role update for %s", after.id
            )

    # ==========================================================================
    # バックグラウンドタスク
    # ==========================================================================

    @tasks.loop(seconds=10)
    async def _check_demotions(self) -> None:
        """期限切れの降格を復元する。"""
        try:
            await self.reconciler.run_once()
        except Exception:
            logger.exception("Demotion auto-restore pass failed")

    @_check_demotions.before_loop
    async def _before_check_demotions(self) -> None:
        """Bot の接続完了を待つ。"""
        await self.bot.wait_until_ready()


async def setup(bot: commands.Bot) -> None:
    """Cog を Bot に登録する。"""
    service = bot.demotion_service  # type: ignore[attr-defined]
    reservations = bot.reservations  # type: ignore[attr-defined]
    reconciler = DemotionReconciler(service, reservations)
    guard = ProtectionGuard(service.gateway, reservations)
    await bot.add_cog(DemotionTasksCog(bot, reconciler, guard))
