"""Tests for the reconciliation pass."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.constants import RESTORE_IN_FLIGHT_TTL_SECONDS
from src.services.demotion_service import DemotionService
from src.services.reconciler import DemotionReconciler
from src.utils import ExpiringKeyCache, reservation_key
from tests.factories import FakeClock, FakeMonotonic

from .conftest import GUILD_ID, ROLE_ID, TARGET_ID, THIRTY_MINUTES_MS, seed_demotion


@pytest.fixture
def reconciler(
    service: DemotionService,
    reservations: ExpiringKeyCache,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
) -> DemotionReconciler:
    return DemotionReconciler(
        service,
        reservations,
        session_factory=session_factory,
        clock=clock,
        grace_seconds=5.0,
    )


class TestRunOnce:
    """Tests for DemotionReconciler.run_once()."""

    async def test_nothing_before_restore_time(
        self,
        reconciler: DemotionReconciler,
        gateway: MagicMock,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """復元時刻前は何もしない。"""
        await seed_demotion(session_factory)
        clock.advance(THIRTY_MINUTES_MS - 1)

        assert await reconciler.run_once() == 0
        gateway.add_role.assert_not_awaited()

    async def test_restores_expired_once(
        self,
        reconciler: DemotionReconciler,
        service: DemotionService,
        gateway: MagicMock,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
        monotonic: FakeMonotonic,
    ) -> None:
        """期限切れの降格を1回だけ復元する。"""
        await seed_demotion(session_factory)
        clock.advance(THIRTY_MINUTES_MS + 10_000)

        assert await reconciler.run_once() == 1
        gateway.add_role.assert_awaited_once()
        assert await service.list_active_demotions(GUILD_ID) == []

        monotonic.advance(10)
        assert await reconciler.run_once() == 0
        gateway.add_role.assert_awaited_once()

    async def test_overlapping_ticks_restore_once(
        self,
        reconciler: DemotionReconciler,
        gateway: MagicMock,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """実行中のティックと重なった呼び出しはスキップされる。"""
        await seed_demotion(session_factory)
        clock.advance(THIRTY_MINUTES_MS)

        results = await asyncio.gather(reconciler.run_once(), reconciler.run_once())

        assert sorted(results) == [0, 1]
        gateway.add_role.assert_awaited_once()
        assert not reconciler.is_running

    async def test_skips_reserved_key(
        self,
        reconciler: DemotionReconciler,
        service: DemotionService,
        gateway: MagicMock,
        reservations: ExpiringKeyCache,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """手動復元などで予約中のレコードは触らない。"""
        await seed_demotion(session_factory)
        clock.advance(THIRTY_MINUTES_MS)
        reservations.reserve(reservation_key(TARGET_ID, ROLE_ID), 60)

        assert await reconciler.run_once() == 0
        gateway.add_role.assert_not_awaited()
        assert len(await service.list_active_demotions(GUILD_ID)) == 1

    async def test_failure_does_not_stop_other_records(
        self,
        reconciler: DemotionReconciler,
        gateway: MagicMock,
        member: MagicMock,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """1件の予期しない失敗が他のレコードの処理を止めない。"""
        await seed_demotion(session_factory, restore_at=clock.now + 1)
        await seed_demotion(
            session_factory, role_id="500", role_name="Helper", restore_at=clock.now + 2
        )
        clock.advance(THIRTY_MINUTES_MS)
        gateway.fetch_member.side_effect = [RuntimeError("boom"), member]

        assert await reconciler.run_once() == 1
        gateway.add_role.assert_awaited_once()
        assert gateway.add_role.await_args.args[2] == "500"

    async def test_leaves_grace_marker(
        self,
        reconciler: DemotionReconciler,
        reservations: ExpiringKeyCache,
        monotonic: FakeMonotonic,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """復元後は猶予時間だけ予約マーカーが残り、その後解除される。"""
        await seed_demotion(session_factory)
        clock.advance(THIRTY_MINUTES_MS)

        await reconciler.run_once()

        key = reservation_key(TARGET_ID, ROLE_ID)
        assert reservations.is_reserved(key)
        monotonic.advance(5)
        assert not reservations.is_reserved(key)

    async def test_in_flight_marker_ttl(
        self,
        reconciler: DemotionReconciler,
        gateway: MagicMock,
        reservations: ExpiringKeyCache,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """付与中は共通の処理中 TTL で予約されている。"""
        key = reservation_key(TARGET_ID, ROLE_ID)
        seen: list[float] = []

        def _capture(*args: Any, **kwargs: Any) -> None:
            seen.append(reservations.remaining(key))

        gateway.add_role.side_effect = _capture
        await seed_demotion(session_factory)
        clock.advance(THIRTY_MINUTES_MS)

        await reconciler.run_once()

        assert seen == [RESTORE_IN_FLIGHT_TTL_SECONDS]
