"""Initial schema - leaderboard table

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # name is deliberately not unique; duplicates are collapsed by the ledger
    op.create_table(
        "leaderboard",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("score", sa.Integer, nullable=False),
        sa.Column("dappies", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_leaderboard_name", "leaderboard", ["name"])
    op.create_index("ix_leaderboard_score", "leaderboard", ["score"])


def downgrade() -> None:
    op.drop_index("ix_leaderboard_score", table_name="leaderboard")
    op.drop_index("ix_leaderboard_name", table_name="leaderboard")
    op.drop_table("leaderboard")
