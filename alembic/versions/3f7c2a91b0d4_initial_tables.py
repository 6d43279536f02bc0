"""initial_tables

Revision ID: 3f7c2a91b0d4
Revises:
Create Date: 2026-10-19 10:12:44.201337

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f7c2a91b0d4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _counter(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), nullable=False, server_default="0")


def upgrade() -> None:
    """Create meal_logs, daily_summaries and preferences tables."""
    op.create_table(
        "meal_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("food_name", sa.String(256), nullable=False),
        _counter("calories"),
        _counter("protein"),
        _counter("carbs"),
        _counter("fat"),
        sa.Column("photo_uri", sa.Text(), nullable=True),
        sa.Column("is_manual", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    # Range queries for a day window scan this index.
    op.create_index("ix_meal_logs_timestamp", "meal_logs", ["timestamp"])

    op.create_table(
        "daily_summaries",
        sa.Column("date", sa.String(10), primary_key=True),
        _counter("total_calories"),
        _counter("total_protein"),
        _counter("total_carbs"),
        _counter("total_fat"),
        _counter("goal_calories"),
        _counter("streak_count"),
        _counter("water_intake"),
    )

    op.create_table(
        "preferences",
        sa.Column("key", sa.String(64), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("preferences")
    op.drop_table("daily_summaries")
    op.drop_index("ix_meal_logs_timestamp", table_name="meal_logs")
    op.drop_table("meal_logs")
