"""Protection against re-granting a demoted role.

降格中のロールが手動で付与された場合に自動で外す。

仕組み:
  - on_member_update で「追加された」ロールだけを見る (削除は無視)
  - 予約マーカーがあるロールは Bot 自身の復元なのでスキップ
  - 有効な降格がない、または復元時刻を過ぎている場合は何もしない
    (期限切れは Reconciler に任せる)
  - それ以外はロールを外し、監査ログから付与した人を探して DM で通知する

注意:
  このモジュールは DB を読むだけで、レコードの作成・更新はしない。
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

import discord
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.constants import DEFAULT_REASON
from src.core.builders import build_remaining_text
from src.database.engine import async_session
from src.database.models import Demotion
from src.services.db_service import get_active_demotion
from src.services.gateway import DiscordGateway, PlatformError
from src.utils import ExpiringKeyCache, now_ms, reservation_key

logger = logging.getLogger(__name__)


def build_protection_notice(
    demotion: Demotion, user_display: str, remaining_ms: int
) -> str:
    """ロールを付与しようとした人に送る通知文を作る。"""
    return (
        "⚠️ **Demotion Protection**\n\n"
        f"**{user_display}** に **{demotion.role_name}** を付与しようとしましたが、"
        "現在このロールから降格中です。\n\n"
        f"**残り時間:** {build_remaining_text(remaining_ms)}\n"
        f"**理由:** {demotion.reason or DEFAULT_REASON}\n\n"
        "早期に解除する場合は `/demotions restore` を使用してください。"
    )


class ProtectionGuard:
    """降格中ロールの再付与を検知して取り消す。"""

    def __init__(
        self,
        gateway: DiscordGateway,
        reservations: ExpiringKeyCache,
        *,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.gateway = gateway
        self.reservations = reservations
        self._session_factory = session_factory
        self._clock = clock

    async def handle_role_change(
        self,
        guild_id: str,
        user_id: str,
        before_role_ids: Iterable[str],
        after_role_ids: Iterable[str],
        *,
        user_display: str | None = None,
    ) -> list[str]:
        """ロール変更イベントを処理する。

        Returns:
            取り消した (再度外した) ロール ID のリスト
        """
        added = set(after_role_ids) - set(before_role_ids)
        if not added:
            return []

        reverted: list[str] = []
        for role_id in sorted(added):
            if self.reservations.is_reserved(reservation_key(user_id, role_id)):
                continue

            async with self._session_factory() as session:
                demotion = await get_active_demotion(
                    session, user_id, guild_id, role_id
                )
            if demotion is None:
                continue

            remaining = demotion.restore_at - self._clock()
            if remaining <= 0:
                continue

            try:
                await self.gateway.remove_role(
                    guild_id,
                    user_id,
                    role_id,
                    reason="Demotion still active - role automatically removed",
                )
            except PlatformError:
                logger.exception(
                    "Demotion Protection: failed to remove %s from %s",
                    demotion.role_name,
                    user_id,
                )
                continue

            logger.info(
                "Demotion Protection: removed %s from %s - demotion still active",
                demotion.role_name,
                user_id,
            )
            reverted.append(role_id)
            await self._notify_granter(
                demotion, guild_id, user_id, user_display or user_id, remaining
            )

        return reverted

    async def _notify_granter(
        self,
        demotion: Demotion,
        guild_id: str,
        user_id: str,
        user_display: str,
        remaining_ms: int,
    ) -> None:
        """ロールを付与した人を監査ログから特定して DM する (ベストエフォート)。"""
        try:
            entry = await self.gateway.fetch_recent_audit_entry(
                guild_id, discord.AuditLogAction.member_role_update
            )
        except PlatformError:
            logger.debug("Could not read audit log for guild %s", guild_id)
            return

        if entry is None or entry.actor_id is None:
            return
        if entry.target_id != user_id or entry.actor_id == self.gateway.bot_user_id:
            return

        await self.gateway.send_direct_message(
            entry.actor_id,
            build_protection_notice(demotion, user_display, remaining_ms),
        )
