"""Database service functions with side effects.

降格レコードの CRUD 操作を提供する。
各関数は AsyncSession を受け取り、SQL クエリを実行する。

Examples:
    基本的な使い方::

        from src.database.engine import async_session
        from src.services.db_service import get_active_demotion

        async with async_session() as session:
            demotion = await get_active_demotion(session, user_id, guild_id, role_id)
            if demotion:
                print(f"Restores at: {demotion.restore_at}")

See Also:
    - :mod:`src.database.models`: テーブル定義
    - :mod:`src.database.engine`: データベース接続設定

Notes:
    - 変更系の関数は session.commit() を内部で呼び出す
      (Discord 側の操作より先に永続化が完了する)
    - レコードは削除しない (履歴として残す)
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.constants import DEMOTION_HISTORY_LIMIT
from src.core.errors import DemotionConflictError
from src.database.models import Demotion

# =============================================================================
# Demotion (一時降格) 操作
# =============================================================================


async def create_demotion(
    session: AsyncSession,
    *,
    user_id: str,
    guild_id: str,
    role_id: str,
    role_name: str,
    demoted_by: str,
    reason: str | None,
    demoted_at: int,
    restore_at: int,
) -> Demotion:
    """降格レコードを作成する。

    同じ (user, guild, role) に有効なレコードがある場合は作成しない。
    チェックと挿入はアトミックではないが、人間の操作頻度では問題にならない。

    Raises:
        DemotionConflictError: 有効な降格が既に存在する場合
        ValueError: restore_at が demoted_at 以下の場合
    """
    if restore_at <= demoted_at:
        msg = f"restore_at ({restore_at}) must be after demoted_at ({demoted_at})"
        raise ValueError(msg)

    existing = await get_active_demotion(session, user_id, guild_id, role_id)
    if existing is not None:
        raise DemotionConflictError(existing)

    demotion = Demotion(
        user_id=user_id,
        guild_id=guild_id,
        role_id=role_id,
        role_name=role_name,
        demoted_by=demoted_by,
        reason=reason,
        demoted_at=demoted_at,
        restore_at=restore_at,
        restored=False,
    )
    session.add(demotion)
    await session.commit()
    await session.refresh(demotion)
    return demotion


async def get_active_demotion(
    session: AsyncSession, user_id: str, guild_id: str, role_id: str
) -> Demotion | None:
    """指定ユーザー・ロールの有効な降格を取得する。"""
    stmt = (
        select(Demotion)
        .where(
            Demotion.user_id == user_id,
            Demotion.guild_id == guild_id,
            Demotion.role_id == role_id,
            Demotion.restored.is_(False),
        )
        .order_by(Demotion.id)
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_active_demotions_by_guild(
    session: AsyncSession, guild_id: str
) -> list[Demotion]:
    """ギルドの有効な降格を復元時刻の昇順で取得する。"""
    stmt = (
        select(Demotion)
        .where(Demotion.guild_id == guild_id, Demotion.restored.is_(False))
        .order_by(Demotion.restore_at, Demotion.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_active_demotions_for_user(
    session: AsyncSession, user_id: str, guild_id: str
) -> list[Demotion]:
    """ユーザーの有効な降格をすべて取得する。"""
    stmt = (
        select(Demotion)
        .where(
            Demotion.user_id == user_id,
            Demotion.guild_id == guild_id,
            Demotion.restored.is_(False),
        )
        .order_by(Demotion.restore_at, Demotion.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_expired_demotions(session: AsyncSession, now: int) -> list[Demotion]:
    """復元時刻を過ぎた未復元の降格を全ギルド分取得する。"""
    stmt = (
        select(Demotion)
        .where(Demotion.restore_at <= now, Demotion.restored.is_(False))
        .order_by(Demotion.restore_at, Demotion.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_demotion_restored(session: AsyncSession, demotion_id: int) -> bool:
    """降格を復元済みにする。

    restored=False の行だけを更新するので冪等。
    実際に状態遷移させた呼び出しだけが True を受け取る (claim)。
    """
    stmt = (
        update(Demotion)
        .where(Demotion.id == demotion_id, Demotion.restored.is_(False))
        .values(restored=True)
    )
    result = await session.execute(stmt)
    await session.commit()
    return int(result.rowcount) > 0  # type: ignore[attr-defined]


async def get_demotion_history(
    session: AsyncSession,
    user_id: str,
    guild_id: str,
    limit: int = DEMOTION_HISTORY_LIMIT,
) -> list[Demotion]:
    """ユーザーの降格履歴を新しい順に取得する。"""
    stmt = (
        select(Demotion)
        .where(Demotion.user_id == user_id, Demotion.guild_id == guild_id)
        .order_by(Demotion.demoted_at.desc(), Demotion.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
