"""Shared pytest fixtures."""

import os

# Set DISCORD_TOKEN before any src imports to avoid validation error
os.environ.setdefault("DISCORD_TOKEN", "test-token-for-testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.constants import DEFAULT_TEST_DATABASE_URL  # noqa: E402
from src.database.models import Base  # noqa: E402

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", DEFAULT_TEST_DATABASE_URL)


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """テストごとに新しいインメモリ DB のセッションファクトリを提供する。

    StaticPool で1本の接続を共有するので、同じテスト内の全セッションが
    同じインメモリ DB を参照する。
    """
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """テスト DB のセッションを提供する。"""
    async with session_factory() as session:
        yield session
