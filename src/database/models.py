"""Database table definitions.

テーブル定義 (SQLAlchemy 2.x ORM)。

demotions:
  一時降格 (ロールの一時剥奪) の記録。追記専用で削除しない。
  restored=False が「有効な降格」、True が「復元済み (終端状態)」。
  時刻はすべてエポックからのミリ秒。
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """全モデルの基底クラス。"""


class Demotion(Base):
    """一時降格レコード。"""

    __tablename__ = "demotions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    guild_id: Mapped[str] = mapped_column(String, nullable=False)
    role_id: Mapped[str] = mapped_column(String, nullable=False)
    # ロールが後で削除されても表示できるよう作成時の名前を保持する
    role_name: Mapped[str] = mapped_column(String, nullable=False)
    demoted_by: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str | None] = mapped_column(String, nullable=True)
    demoted_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    restore_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    restored: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index(
            "idx_demotions_active_lookup",
            "user_id",
            "guild_id",
            "role_id",
            "restored",
        ),
        Index("idx_demotions_restore_scan", "restore_at", "restored"),
    )

    @property
    def is_active(self) -> bool:
        return not self.restored

    def __repr__(self) -> str:
        return (
            f"<Demotion id={self.id} user={self.user_id} role={self.role_id} "
            f"restore_at={self.restore_at} restored={self.restored}>"
        )
