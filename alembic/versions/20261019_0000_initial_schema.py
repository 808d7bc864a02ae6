"""Initial schema for users, raw/computed wager stats, adjustments and sync logs.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TIMEFRAMES = ("daily", "weekly", "monthly", "all_time")


def _amount(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(20, 4), nullable=False, server_default="0")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("external_id", sa.String(64), nullable=True),
        sa.Column("is_placeholder", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("external_linked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id"),
    )
    op.create_index("idx_users_placeholder", "users", ["is_placeholder"])

    op.create_table(
        "raw_wager_stats",
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("external_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        *[_amount(tf) for tf in TIMEFRAMES],
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
        sa.UniqueConstraint("external_id"),
    )

    op.create_table(
        "wager_adjustments",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("external_id", sa.String(64), nullable=False),
        sa.Column("admin_id", sa.String(64), nullable=False),
        sa.Column("applied_to_timeframe", sa.String(10), nullable=False),
        *[_amount(f"{tf}_delta") for tf in TIMEFRAMES],
        sa.Column("adjustment_type", sa.String(10), nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("original_value", sa.Numeric(20, 4), nullable=False),
        sa.Column("new_value", sa.Numeric(20, 4), nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default="active"),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reverted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reverted_by", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("status IN ('active', 'reverted')", name="ck_wager_adjustments_status"),
        sa.CheckConstraint(
            "adjustment_type IN ('add', 'subtract', 'set')", name="ck_wager_adjustments_type"
        ),
    )
    op.create_index("idx_wager_adjustments_user", "wager_adjustments", ["user_id"])
    op.create_index("idx_wager_adjustments_external", "wager_adjustments", ["external_id"])
    op.create_index("idx_wager_adjustments_admin", "wager_adjustments", ["admin_id"])
    op.create_index("idx_wager_adjustments_timeframe", "wager_adjustments", ["applied_to_timeframe"])
    op.create_index("idx_wager_adjustments_status", "wager_adjustments", ["status"])
    op.create_index("idx_wager_adjustments_created", "wager_adjustments", ["created_at"])
    op.create_index("idx_wager_adjustments_user_status", "wager_adjustments", ["user_id", "status"])

    op.create_table(
        "computed_wager_stats",
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("external_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        *[_amount(f"raw_{tf}") for tf in TIMEFRAMES],
        *[_amount(f"total_{tf}_adjustment") for tf in TIMEFRAMES],
        *[_amount(f"final_{tf}") for tf in TIMEFRAMES],
        *[sa.Column(f"{tf}_rank", sa.Integer(), nullable=True) for tf in TIMEFRAMES],
        sa.Column("has_adjustments", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("adjustment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_api_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_adjustment_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("idx_computed_wager_stats_external", "computed_wager_stats", ["external_id"])
    for tf in TIMEFRAMES:
        op.create_index(f"idx_computed_wager_stats_{tf}_rank", "computed_wager_stats", [f"{tf}_rank"])
        op.create_index(f"idx_computed_wager_stats_final_{tf}", "computed_wager_stats", [f"final_{tf}"])

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("sync_type", sa.String(20), nullable=False),
        sa.Column("timeframe", sa.String(10), nullable=False),
        sa.Column("users_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("users_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("users_added", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("api_status", sa.String(10), nullable=True),
        sa.Column("api_response_time_ms", sa.Integer(), nullable=True),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_sync_logs_started", "sync_logs", ["started_at"])
    op.create_index("idx_sync_logs_timeframe_started", "sync_logs", ["timeframe", "started_at"])


def downgrade() -> None:
    op.drop_table("sync_logs")
    op.drop_table("computed_wager_stats")
    op.drop_table("wager_adjustments")
    op.drop_table("raw_wager_stats")
    op.drop_table("users")
