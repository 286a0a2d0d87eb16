"""Reconciliation pass for expired demotions.

期限切れの降格をまとめて復元する。Cog の tasks.loop から定期的に呼ばれる。

仕組み:
  - 実行ロックを取得できなければそのティックは丸ごとスキップ (キューしない)
  - 期限切れ・未復元のレコードを全ギルド分取得
  - レコードごとに (user_id, role_id) の予約マーカーを立ててから復元
  - 完了後は猶予時間だけマーカーを残す (付与イベントが遅れて届くため)
  - 1件の失敗は他のレコードの処理を止めない
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.constants import RESTORE_IN_FLIGHT_TTL_SECONDS
from src.database.engine import async_session
from src.services.db_service import get_expired_demotions
from src.services.demotion_service import DemotionService
from src.utils import ExpiringKeyCache, now_ms, reservation_key

logger = logging.getLogger(__name__)


class DemotionReconciler:
    """期限切れ降格の復元パスを排他的に実行する。"""

    def __init__(
        self,
        service: DemotionService,
        reservations: ExpiringKeyCache,
        *,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        clock: Callable[[], int] = now_ms,
        grace_seconds: float | None = None,
    ) -> None:
        self.service = service
        self.reservations = reservations
        self._session_factory = session_factory
        self._clock = clock
        self.grace_seconds = (
            grace_seconds if grace_seconds is not None else settings.restore_grace_seconds
        )
        self._run_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    async def run_once(self) -> int:
        """1回分の復元パスを実行する。

        Returns:
            復元済みに遷移させたレコード数。実行中でスキップした場合は 0。
        """
        if self._run_lock.locked():
            logger.debug("Reconciliation pass already running, skipping tick")
            return 0

        async with self._run_lock:
            async with self._session_factory() as session:
                expired = await get_expired_demotions(session, self._clock())

            restored = 0
            for demotion in expired:
                key = reservation_key(demotion.user_id, demotion.role_id)
                if self.reservations.is_reserved(key):
                    continue

                self.reservations.reserve(key, RESTORE_IN_FLIGHT_TTL_SECONDS)
                try:
                    if await self.service.auto_restore(demotion):
                        restored += 1
                except Exception:
                    logger.exception(
                        "Error restoring demotion %s (user=%s role=%s)",
                        demotion.id,
                        demotion.user_id,
                        demotion.role_id,
                    )
                finally:
                    self.reservations.reserve(key, self.grace_seconds)

            if restored:
                logger.info("Reconciliation restored %d demotion(s)", restored)
            return restored
