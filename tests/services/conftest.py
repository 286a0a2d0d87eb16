"""Service test fixtures."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.database.models import Demotion
from src.services.db_service import create_demotion
from src.services.demotion_service import DemotionService
from src.utils import ExpiringKeyCache
from tests.factories import (
    BASE_TIME_MS,
    FakeClock,
    FakeMonotonic,
    make_gateway,
    make_guild,
    make_member,
    make_role,
)

GUILD_ID = "100000000000000001"
OWNER_ID = "200000000000000002"
TARGET_ID = "300000000000000003"
ROLE_ID = "400000000000000004"
BOT_ID = "999"

# 30分 (ms)
THIRTY_MINUTES_MS = 1_800_000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def reservations(monotonic: FakeMonotonic) -> ExpiringKeyCache:
    return ExpiringKeyCache(monotonic)


@pytest.fixture
def role() -> MagicMock:
    return make_role(ROLE_ID, "Moderator", position=5)


@pytest.fixture
def member(role: MagicMock) -> MagicMock:
    return make_member(TARGET_ID, [role])


@pytest.fixture
def gateway(role: MagicMock, member: MagicMock) -> MagicMock:
    return make_gateway(
        guild=make_guild(GUILD_ID, OWNER_ID),
        member=member,
        role=role,
        bot_position=10,
        bot_user_id=BOT_ID,
    )


@pytest.fixture
def service(
    gateway: MagicMock,
    reservations: ExpiringKeyCache,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
) -> DemotionService:
    return DemotionService(
        gateway,
        reservations,
        session_factory=session_factory,
        clock=clock,
        restore_grace_seconds=5.0,
    )


async def seed_demotion(
    session_factory: async_sessionmaker[AsyncSession], **overrides: Any
) -> Demotion:
    """DB に有効な降格を直接作成する。"""
    values: dict[str, Any] = {
        "user_id": TARGET_ID,
        "guild_id": GUILD_ID,
        "role_id": ROLE_ID,
        "role_name": "Moderator",
        "demoted_by": OWNER_ID,
        "reason": None,
        "demoted_at": BASE_TIME_MS,
        "restore_at": BASE_TIME_MS + THIRTY_MINUTES_MS,
    }
    values.update(overrides)
    async with session_factory() as session:
        return await create_demotion(session, **values)
