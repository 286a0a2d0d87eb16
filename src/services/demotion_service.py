"""Demotion state machine.

一時降格のライフサイクルを管理するサービス。

状態:
  - Active: restored=False (復元時刻前、または期限切れでまだ未処理)
  - Restored: restored=True (終端状態。どの経路で復元されても同じ)

遷移:
  - Create: 検証 → Discord でロール剥奪 → レコード保存
  - AutoRestore: Reconciler から呼ばれる。DB を先に復元済みにしてからロール付与
  - ManualRestore: オペレーターによる早期復元。順序は AutoRestore と同じ

復元時は DB の更新が Discord へのロール付与より先。途中で落ちた場合は
「復元済みだがロールが無い」状態になり、同じレコードを再処理しない。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.constants import DEMOTION_HISTORY_LIMIT, RESTORE_IN_FLIGHT_TTL_SECONDS
from src.core.errors import (
    AlreadyDemotedError,
    DemotionConflictError,
    InvalidDurationError,
    NoActiveDemotionError,
    NotAuthorizedError,
    PlatformOperationFailedError,
    RoleHierarchyViolationError,
    RoleNotFoundError,
    RoleNotHeldError,
    SelfTargetForbiddenError,
    StoreOperationFailedError,
    TargetNotFoundError,
)
from src.core.permissions import (
    AuthorizationPolicy,
    can_manage_role,
    is_guild_owner,
    is_self_target,
)
from src.core.validators import compute_restore_at, validate_demotion_duration
from src.database.engine import async_session
from src.database.models import Demotion
from src.services.db_service import (
    create_demotion,
    get_active_demotion,
    get_active_demotions_by_guild,
    get_active_demotions_for_user,
    get_demotion_history,
    mark_demotion_restored,
)
from src.services.gateway import DiscordGateway, PlatformError
from src.utils import ExpiringKeyCache, now_ms, reservation_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DemotionRequest:
    """降格作成リクエスト。"""

    guild_id: str
    user_id: str
    role_id: str
    actor_id: str
    hours: int = 0
    minutes: int = 0
    reason: str | None = None


class DemotionService:
    """降格の作成・復元・照会を行う。"""

    def __init__(
        self,
        gateway: DiscordGateway,
        reservations: ExpiringKeyCache,
        *,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        authorize: AuthorizationPolicy = is_guild_owner,
        clock: Callable[[], int] = now_ms,
        restore_grace_seconds: float | None = None,
    ) -> None:
        self.gateway = gateway
        self.reservations = reservations
        self._session_factory = session_factory
        self._authorize = authorize
        self._clock = clock
        self.restore_grace_seconds = (
            restore_grace_seconds
            if restore_grace_seconds is not None
            else settings.restore_grace_seconds
        )

    # ==========================================================================
    # Create
    # ==========================================================================

    async def check_authorized(self, guild_id: str, actor_id: str) -> None:
        """実行者が降格操作を許可されているか確認する。

        Raises:
            NotAuthorizedError: 許可されていない場合
            TargetNotFoundError: ギルドが取得できない場合
        """
        guild = await self.gateway.fetch_guild(guild_id)
        if guild is None:
            raise TargetNotFoundError
        if not self._authorize(guild, int(actor_id)):
            raise NotAuthorizedError

    async def create_demotion(self, request: DemotionRequest) -> Demotion:
        """ロールを一時的に剥奪し、降格レコードを作成する。

        Raises:
            DemotionError: 検証・競合・Discord 操作の失敗 (サブクラス参照)
        """
        await self.check_authorized(request.guild_id, request.actor_id)

        if is_self_target(request.actor_id, request.user_id):
            raise SelfTargetForbiddenError

        if not validate_demotion_duration(request.hours, request.minutes):
            raise InvalidDurationError

        # 降格中はロールが剥奪済みなので、保有チェックより先に確認する
        async with self._session_factory() as session:
            existing = await get_active_demotion(
                session, request.user_id, request.guild_id, request.role_id
            )
        if existing is not None:
            raise AlreadyDemotedError(existing)

        role = await self.gateway.fetch_role(request.guild_id, request.role_id)
        if role is None:
            raise RoleNotFoundError

        member = await self.gateway.fetch_member(request.guild_id, request.user_id)
        if member is None:
            raise TargetNotFoundError

        if not any(str(r.id) == request.role_id for r in member.roles):
            raise RoleNotHeldError(
                f"{member} は **{role.name}** ロールを持っていません。"
            )

        bot_position = await self.gateway.bot_top_role_position(request.guild_id)
        if not can_manage_role(bot_position, role.position):
            raise RoleHierarchyViolationError

        # Discord 側の剥奪を先に行う (失敗時は何も保存しない)
        try:
            await self.gateway.remove_role(
                request.guild_id,
                request.user_id,
                request.role_id,
                reason=f"Timed demotion by {request.actor_id}: "
                f"{request.reason or 'No reason provided'}",
            )
        except PlatformError as e:
            logger.warning(
                "Demotion: failed to remove role %s from %s in guild %s: %s",
                request.role_id,
                request.user_id,
                request.guild_id,
                e,
            )
            raise PlatformOperationFailedError from e

        demoted_at = self._clock()
        restore_at = compute_restore_at(demoted_at, request.hours, request.minutes)
        try:
            async with self._session_factory() as session:
                demotion = await create_demotion(
                    session,
                    user_id=request.user_id,
                    guild_id=request.guild_id,
                    role_id=request.role_id,
                    role_name=role.name,
                    demoted_by=request.actor_id,
                    reason=request.reason,
                    demoted_at=demoted_at,
                    restore_at=restore_at,
                )
        except DemotionConflictError as e:
            # 別のインタラクションが先に保存した。そちらのレコードが復元を担う
            logger.info(
                "Demotion: concurrent demotion detected for user=%s role=%s",
                request.user_id,
                request.role_id,
            )
            raise AlreadyDemotedError(e.existing) from e
        except Exception as e:
            # ロールは剥奪済みだが記録がない状態。再試行はしない
            logger.exception(
                "Demotion: role %s removed from %s but the record was not saved",
                request.role_id,
                request.user_id,
            )
            raise StoreOperationFailedError from e

        logger.info(
            "Demotion: user=%s role=%s(%s) guild=%s for %dh %dm by %s",
            request.user_id,
            role.name,
            request.role_id,
            request.guild_id,
            request.hours,
            request.minutes,
            request.actor_id,
        )
        return demotion

    # ==========================================================================
    # Restore
    # ==========================================================================

    async def auto_restore(self, demotion: Demotion) -> bool:
        """期限切れの降格を復元する (Reconciler 用)。

        Returns:
            このメソッドが Restored へ遷移させた場合 True。
            既に別経路で復元済みなら False (ロールは付与しない)。
        """
        async with self._session_factory() as session:
            claimed = await mark_demotion_restored(session, demotion.id)
        if not claimed:
            logger.debug("Demotion %s already restored, skipping", demotion.id)
            return False

        granted = await self._grant_role(
            demotion, reason="Timed demotion expired - role restored automatically"
        )
        if granted:
            logger.info(
                "Demotion: restored %s to user=%s in guild=%s",
                demotion.role_name,
                demotion.user_id,
                demotion.guild_id,
            )
            await self.gateway.send_direct_message(
                demotion.user_id,
                f"✅ 一時降格が終了しました。**{demotion.role_name}** ロールが"
                "復元されました。",
            )
        return True

    async def restore_demotion(
        self,
        user_id: str,
        guild_id: str,
        role_id: str | None = None,
        *,
        actor_id: str | None = None,
    ) -> list[str]:
        """降格を早期に手動復元する。

        Args:
            user_id: 対象ユーザー
            guild_id: ギルド
            role_id: 復元するロール。None ならユーザーの有効な降格をすべて復元
            actor_id: 操作者 (監査ログ用)

        Returns:
            実際にロールを付与できたロール名のリスト

        Raises:
            NoActiveDemotionError: 有効な降格がない場合
        """
        async with self._session_factory() as session:
            if role_id is not None:
                demotion = await get_active_demotion(
                    session, user_id, guild_id, role_id
                )
                demotions = [demotion] if demotion is not None else []
            else:
                demotions = await get_active_demotions_for_user(
                    session, user_id, guild_id
                )

        if not demotions:
            raise NoActiveDemotionError

        restored_names: list[str] = []
        for demotion in demotions:
            key = reservation_key(demotion.user_id, demotion.role_id)
            self.reservations.reserve(key, RESTORE_IN_FLIGHT_TTL_SECONDS)
            try:
                async with self._session_factory() as session:
                    claimed = await mark_demotion_restored(session, demotion.id)
                if not claimed:
                    continue
                granted = await self._grant_role(
                    demotion,
                    reason=f"Early restoration by {actor_id or 'unknown'}",
                )
                if granted:
                    restored_names.append(demotion.role_name)
            finally:
                self.reservations.reserve(key, self.restore_grace_seconds)

        logger.info(
            "Demotion: manual restore for user=%s guild=%s by %s: %s",
            user_id,
            guild_id,
            actor_id,
            restored_names,
        )
        if restored_names:
            await self.gateway.send_direct_message(
                user_id,
                f"✅ 降格が早期解除されました。ロール **{', '.join(restored_names)}** "
                "が復元されました。",
            )
        return restored_names

    async def _grant_role(self, demotion: Demotion, *, reason: str) -> bool:
        """降格したロールを付与する。メンバー・ロール不在や失敗はログのみ。"""
        member = await self.gateway.fetch_member(demotion.guild_id, demotion.user_id)
        if member is None:
            logger.info(
                "Demotion %s: user %s not found in guild %s",
                demotion.id,
                demotion.user_id,
                demotion.guild_id,
            )
            return False

        role = await self.gateway.fetch_role(demotion.guild_id, demotion.role_id)
        if role is None:
            logger.info(
                "Demotion %s: role %s no longer exists",
                demotion.id,
                demotion.role_id,
            )
            return False

        try:
            await self.gateway.add_role(
                demotion.guild_id, demotion.user_id, demotion.role_id, reason=reason
            )
        except PlatformError:
            logger.exception(
                "Demotion %s: failed to give %s back to %s",
                demotion.id,
                demotion.role_name,
                demotion.user_id,
            )
            return False
        return True

    # ==========================================================================
    # Query
    # ==========================================================================

    async def list_active_demotions(self, guild_id: str) -> list[Demotion]:
        """ギルドの有効な降格を復元時刻の昇順で返す。"""
        async with self._session_factory() as session:
            return await get_active_demotions_by_guild(session, guild_id)

    async def get_history(
        self, user_id: str, guild_id: str, limit: int = DEMOTION_HISTORY_LIMIT
    ) -> list[Demotion]:
        """ユーザーの降格履歴を新しい順に返す。"""
        async with self._session_factory() as session:
            return await get_demotion_history(session, user_id, guild_id, limit)

    def now(self) -> int:
        """サービスの時計で現在時刻 (ms) を返す。"""
        return self._clock()

