"""SQLAlchemy models for persistent storage.

This module defines the database schema for local users, raw wager
snapshots, the adjustment ledger, materialized computed stats and sync logs.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Wager amounts: magnitude below 10^16 with 4 decimal places.
AMOUNT_PRECISION = 20
AMOUNT_SCALE = 4
AMOUNT = Numeric(AMOUNT_PRECISION, AMOUNT_SCALE)
MAX_AMOUNT = Decimal(10) ** (AMOUNT_PRECISION - AMOUNT_SCALE)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UserModel(Base):
    """Local account. Placeholders are created by sync for unseen external ids."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    is_placeholder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    external_linked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_users_placeholder", "is_placeholder"),)


class RawWagerStatsModel(Base):
    """Wager amounts exactly as last reported by the external API."""

    __tablename__ = "raw_wager_stats"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    external_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)

    daily: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    weekly: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    monthly: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    all_time: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))

    last_sync_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class WagerAdjustmentModel(Base):
    """Admin-authored correction (append-mostly ledger entry).

    Only status, reverted_at, reverted_by and admin_notes change after insert.
    """

    __tablename__ = "wager_adjustments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    admin_id: Mapped[str] = mapped_column(String(64), nullable=False)

    applied_to_timeframe: Mapped[str] = mapped_column(String(10), nullable=False)
    daily_delta: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    weekly_delta: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    monthly_delta: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    all_time_delta: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))

    adjustment_type: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    original_value: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    new_value: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="active")

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    reverted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reverted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_wager_adjustments_user", "user_id"),
        Index("idx_wager_adjustments_external", "external_id"),
        Index("idx_wager_adjustments_admin", "admin_id"),
        Index("idx_wager_adjustments_timeframe", "applied_to_timeframe"),
        Index("idx_wager_adjustments_status", "status"),
        Index("idx_wager_adjustments_created", "created_at"),
        Index("idx_wager_adjustments_user_status", "user_id", "status"),
    )


class ComputedWagerStatsModel(Base):
    """Raw stats merged with active adjustments, plus per-timeframe ranks."""

    __tablename__ = "computed_wager_stats"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)

    raw_daily: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    raw_weekly: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    raw_monthly: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    raw_all_time: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))

    total_daily_adjustment: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    total_weekly_adjustment: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    total_monthly_adjustment: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    total_all_time_adjustment: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))

    final_daily: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    final_weekly: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    final_monthly: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    final_all_time: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))

    daily_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weekly_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    monthly_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    all_time_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)

    has_adjustments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    adjustment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_api_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_adjustment_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_computed_wager_stats_external", "external_id"),
        Index("idx_computed_wager_stats_daily_rank", "daily_rank"),
        Index("idx_computed_wager_stats_weekly_rank", "weekly_rank"),
        Index("idx_computed_wager_stats_monthly_rank", "monthly_rank"),
        Index("idx_computed_wager_stats_all_time_rank", "all_time_rank"),
        Index("idx_computed_wager_stats_final_daily", "final_daily"),
        Index("idx_computed_wager_stats_final_weekly", "final_weekly"),
        Index("idx_computed_wager_stats_final_monthly", "final_monthly"),
        Index("idx_computed_wager_stats_final_all_time", "final_all_time"),
    )


class SyncLogModel(Base):
    """One row per sync run (append-only once completed)."""

    __tablename__ = "sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    timeframe: Mapped[str] = mapped_column(String(10), nullable=False)

    users_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    users_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    users_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    api_status: Mapped[str | None] = mapped_column(String(10), nullable=True)
    api_response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_details: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_sync_logs_started", "started_at"),
        Index("idx_sync_logs_timeframe_started", "timeframe", "started_at"),
    )
