"""Add demotions table.

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "demotions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("guild_id", sa.String(), nullable=False),
        sa.Column("role_id", sa.String(), nullable=False),
        sa.Column("role_name", sa.String(), nullable=False),
        sa.Column("demoted_by", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("demoted_at", sa.BigInteger(), nullable=False),
        sa.Column("restore_at", sa.BigInteger(), nullable=False),
        sa.Column(
            "restored", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
    )
    op.create_index(
        "idx_demotions_active_lookup",
        "demotions",
        ["user_id", "guild_id", "role_id", "restored"],
    )
    op.create_index(
        "idx_demotions_restore_scan",
        "demotions",
        ["restore_at", "restored"],
    )


def downgrade() -> None:
    op.drop_index("idx_demotions_restore_scan", table_name="demotions")
    op.drop_index("idx_demotions_active_lookup", table_name="demotions")
    op.drop_table("demotions")
