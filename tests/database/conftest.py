"""Database test fixtures with factory helpers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models import Demotion
from tests.factories import BASE_TIME_MS, snowflake

# 1時間 (ms)
HOUR_MS = 60 * 60 * 1000

DemotionFactory = Callable[..., Awaitable[Demotion]]


@pytest.fixture
def demotion_factory(db_session: AsyncSession) -> DemotionFactory:
    """Demotion レコードを直接挿入するファクトリ。

    db_service の検証を通らない状態 (復元済み、期限切れ) も作れる。
    """

    async def _create(**overrides: Any) -> Demotion:
        values: dict[str, Any] = {
            "user_id": snowflake(),
            "guild_id": snowflake(),
            "role_id": snowflake(),
            "role_name": "Moderator",
            "demoted_by": snowflake(),
            "reason": None,
            "demoted_at": BASE_TIME_MS,
            "restore_at": BASE_TIME_MS + HOUR_MS,
            "restored": False,
        }
        values.update(overrides)
        demotion = Demotion(**values)
        db_session.add(demotion)
        await db_session.commit()
        await db_session.refresh(demotion)
        return demotion

    return _create
