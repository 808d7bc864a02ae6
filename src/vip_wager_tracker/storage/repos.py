"""Repository pattern implementations for data access.

This module provides data access abstractions for local users, raw wager
stats, the adjustment ledger, computed stats and sync logs. Repositories
wrap a single ``AsyncSession``; transaction boundaries belong to the caller.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import aliased

from vip_wager_tracker.enums import AdjustmentStatus, Timeframe
from vip_wager_tracker.storage.models import (
    ComputedWagerStatsModel,
    RawWagerStatsModel,
    SyncLogModel,
    UserModel,
    WagerAdjustmentModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _insert_for(session: AsyncSession) -> Any:
    """Pick the dialect-specific INSERT construct supporting ON CONFLICT."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; all stored timestamps are UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class UserDTO:
    """Data transfer object for local users."""

    id: str
    username: str
    external_id: str | None
    is_placeholder: bool
    external_linked: bool
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        return cls(
            id=model.id,
            username=model.username,
            external_id=model.external_id,
            is_placeholder=model.is_placeholder,
            external_linked=model.external_linked,
            created_at=_utc(model.created_at),
        )


@dataclass
class RawWagerStatsDTO:
    """Data transfer object for raw wager stats."""

    user_id: str
    external_id: str
    username: str
    daily: Decimal
    weekly: Decimal
    monthly: Decimal
    all_time: Decimal
    last_sync_at: datetime

    def amount(self, timeframe: Timeframe) -> Decimal:
        value: Decimal = getattr(self, timeframe.value)
        return value

    @classmethod
    def from_model(cls, model: RawWagerStatsModel) -> RawWagerStatsDTO:
        return cls(
            user_id=model.user_id,
            external_id=model.external_id,
            username=model.username,
            daily=_to_decimal(model.daily),
            weekly=_to_decimal(model.weekly),
            monthly=_to_decimal(model.monthly),
            all_time=_to_decimal(model.all_time),
            last_sync_at=_utc(model.last_sync_at),
        )


@dataclass
class WagerAdjustmentDTO:
    """Data transfer object for ledger entries."""

    id: str
    user_id: str
    external_id: str
    admin_id: str
    applied_to_timeframe: Timeframe
    daily_delta: Decimal
    weekly_delta: Decimal
    monthly_delta: Decimal
    all_time_delta: Decimal
    adjustment_type: str
    reason: str
    original_value: Decimal
    new_value: Decimal
    status: AdjustmentStatus = AdjustmentStatus.ACTIVE
    ip_address: str | None = None
    user_agent: str | None = None
    admin_notes: str | None = None
    created_at: datetime | None = None
    reverted_at: datetime | None = None
    reverted_by: str | None = None

    def delta(self, timeframe: Timeframe) -> Decimal:
        value: Decimal = getattr(self, f"{timeframe.value}_delta")
        return value

    @property
    def is_active(self) -> bool:
        return self.status == AdjustmentStatus.ACTIVE

    @classmethod
    def from_model(cls, model: WagerAdjustmentModel) -> WagerAdjustmentDTO:
        return cls(
            id=model.id,
            user_id=model.user_id,
            external_id=model.external_id,
            admin_id=model.admin_id,
            applied_to_timeframe=Timeframe(model.applied_to_timeframe),
            daily_delta=_to_decimal(model.daily_delta),
            weekly_delta=_to_decimal(model.weekly_delta),
            monthly_delta=_to_decimal(model.monthly_delta),
            all_time_delta=_to_decimal(model.all_time_delta),
            adjustment_type=model.adjustment_type,
            reason=model.reason,
            original_value=_to_decimal(model.original_value),
            new_value=_to_decimal(model.new_value),
            status=AdjustmentStatus(model.status),
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            admin_notes=model.admin_notes,
            created_at=_utc(model.created_at),
            reverted_at=_utc(model.reverted_at),
            reverted_by=model.reverted_by,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["applied_to_timeframe"] = self.applied_to_timeframe.value
        data["status"] = self.status.value
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = str(value)
            elif isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


_COMPUTED_DECIMAL_FIELDS = tuple(
    f"{prefix}{tf.value}{suffix}"
    for tf in Timeframe
    for prefix, suffix in (("raw_", ""), ("total_", "_adjustment"), ("final_", ""))
)
_COMPUTED_DATETIME_FIELDS = ("last_api_sync", "last_adjustment_at", "computed_at")


@dataclass
class ComputedWagerStatsDTO:
    """Data transfer object for computed (raw + adjustments) wager stats."""

    user_id: str
    external_id: str
    username: str
    raw_daily: Decimal = Decimal(0)
    raw_weekly: Decimal = Decimal(0)
    raw_monthly: Decimal = Decimal(0)
    raw_all_time: Decimal = Decimal(0)
    total_daily_adjustment: Decimal = Decimal(0)
    total_weekly_adjustment: Decimal = Decimal(0)
    total_monthly_adjustment: Decimal = Decimal(0)
    total_all_time_adjustment: Decimal = Decimal(0)
    final_daily: Decimal = Decimal(0)
    final_weekly: Decimal = Decimal(0)
    final_monthly: Decimal = Decimal(0)
    final_all_time: Decimal = Decimal(0)
    daily_rank: int | None = None
    weekly_rank: int | None = None
    monthly_rank: int | None = None
    all_time_rank: int | None = None
    has_adjustments: bool = False
    adjustment_count: int = 0
    last_api_sync: datetime | None = None
    last_adjustment_at: datetime | None = None
    computed_at: datetime | None = None
    version: int = 1

    def raw(self, timeframe: Timeframe) -> Decimal:
        value: Decimal = getattr(self, f"raw_{timeframe.value}")
        return value

    def total_adjustment(self, timeframe: Timeframe) -> Decimal:
        value: Decimal = getattr(self, f"total_{timeframe.value}_adjustment")
        return value

    def final(self, timeframe: Timeframe) -> Decimal:
        value: Decimal = getattr(self, f"final_{timeframe.value}")
        return value

    def rank(self, timeframe: Timeframe) -> int | None:
        value: int | None = getattr(self, f"{timeframe.value}_rank")
        return value

    @classmethod
    def from_model(cls, model: ComputedWagerStatsModel) -> ComputedWagerStatsDTO:
        values: dict[str, Any] = {
            "user_id": model.user_id,
            "external_id": model.external_id,
            "username": model.username,
            "has_adjustments": model.has_adjustments,
            "adjustment_count": model.adjustment_count,
            "last_api_sync": _utc(model.last_api_sync),
            "last_adjustment_at": _utc(model.last_adjustment_at),
            "computed_at": _utc(model.computed_at),
            "version": model.version,
        }
        for name in _COMPUTED_DECIMAL_FIELDS:
            values[name] = _to_decimal(getattr(model, name))
        for tf in Timeframe:
            values[f"{tf.value}_rank"] = getattr(model, f"{tf.value}_rank")
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (used for the cache payload)."""
        data = asdict(self)
        for name in _COMPUTED_DECIMAL_FIELDS:
            data[name] = str(data[name])
        for name in _COMPUTED_DATETIME_FIELDS:
            value = data[name]
            data[name] = value.isoformat() if value is not None else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComputedWagerStatsDTO:
        values = dict(data)
        for name in _COMPUTED_DECIMAL_FIELDS:
            values[name] = Decimal(str(values.get(name, "0")))
        for name in _COMPUTED_DATETIME_FIELDS:
            value = values.get(name)
            values[name] = datetime.fromisoformat(value) if value else None
        return cls(**values)


@dataclass
class SyncLogDTO:
    """Data transfer object for sync logs."""

    id: str
    sync_type: str
    timeframe: str
    started_at: datetime
    users_processed: int = 0
    users_updated: int = 0
    users_added: int = 0
    errors: int = 0
    api_status: str | None = None
    api_response_time_ms: int | None = None
    error_details: str | None = None
    completed_at: datetime | None = None
    duration_seconds: float | None = None

    @classmethod
    def from_model(cls, model: SyncLogModel) -> SyncLogDTO:
        return cls(
            id=model.id,
            sync_type=model.sync_type,
            timeframe=model.timeframe,
            started_at=_utc(model.started_at),
            users_processed=model.users_processed,
            users_updated=model.users_updated,
            users_added=model.users_added,
            errors=model.errors,
            api_status=model.api_status,
            api_response_time_ms=model.api_response_time_ms,
            error_details=model.error_details,
            completed_at=_utc(model.completed_at),
            duration_seconds=model.duration_seconds,
        )


@dataclass
class AdjustmentSearchFilters:
    """Ledger search criteria. All filters are optional and AND-ed."""

    admin_id: str | None = None
    timeframe: Timeframe | None = None
    status: AdjustmentStatus | None = None
    external_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = 20
    offset: int = 0


@dataclass
class AdjustmentPage:
    """One page of ledger entries plus the unpaginated total."""

    adjustments: list[WagerAdjustmentDTO]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.adjustments) < self.total


@dataclass
class AdjustmentStats:
    total: int = 0
    active: int = 0
    reverted: int = 0
    users_affected: int = 0
    total_amount_adjusted: Decimal = Decimal(0)


@dataclass
class LinkingStats:
    total_users: int = 0
    linked_users: int = 0
    placeholder_users: int = 0
    users_with_raw_stats: int = 0
    users_with_active_adjustments: int = 0


@dataclass
class LeaderboardPageDTO:
    """Positive-final rows for one timeframe, ordered like the ranking."""

    timeframe: Timeframe
    rows: list[ComputedWagerStatsDTO] = field(default_factory=list)
    total: int = 0


class UserRepository:
    """Repository for local users."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, user_id: str) -> UserDTO | None:
        model = await self.session.get(UserModel, user_id)
        return UserDTO.from_model(model) if model else None

    async def get_by_external_id(self, external_id: str) -> UserDTO | None:
        result = await self.session.execute(
            select(UserModel).where(UserModel.external_id == external_id)
        )
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def create_placeholder(self, *, external_id: str, username: str) -> UserDTO:
        """Create a local account for an external id seen for the first time."""
        model = UserModel(
            id=str(uuid.uuid4()),
            username=username,
            external_id=external_id,
            is_placeholder=True,
            external_linked=True,
            created_at=datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        logger.info("Created placeholder user %s for external id %s", model.id, external_id)
        return UserDTO.from_model(model)

    async def linking_stats(self) -> LinkingStats:
        users = (
            await self.session.execute(
                select(
                    func.count(UserModel.id),
                    func.coalesce(func.sum(sa.case((UserModel.external_linked.is_(True), 1), else_=0)), 0),
                    func.coalesce(func.sum(sa.case((UserModel.is_placeholder.is_(True), 1), else_=0)), 0),
                )
            )
        ).one()
        raw_count = await self.session.scalar(select(func.count(RawWagerStatsModel.user_id)))
        adjusted = await self.session.scalar(
            select(func.count(func.distinct(WagerAdjustmentModel.user_id))).where(
                WagerAdjustmentModel.status == AdjustmentStatus.ACTIVE.value
            )
        )
        return LinkingStats(
            total_users=int(users[0] or 0),
            linked_users=int(users[1] or 0),
            placeholder_users=int(users[2] or 0),
            users_with_raw_stats=int(raw_count or 0),
            users_with_active_adjustments=int(adjusted or 0),
        )


class RawWagerStatsRepository:
    """Repository for raw stats as reported by the external API."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> RawWagerStatsDTO | None:
        result = await self.session.execute(
            select(RawWagerStatsModel).where(RawWagerStatsModel.user_id == user_id)
        )
        model = result.scalar_one_or_none()
        return RawWagerStatsDTO.from_model(model) if model else None

    async def upsert(self, dto: RawWagerStatsDTO) -> RawWagerStatsDTO:
        """Insert or overwrite the user's snapshot (keyed by user_id)."""
        values = {
            "user_id": dto.user_id,
            "external_id": dto.external_id,
            "username": dto.username,
            "daily": dto.daily,
            "weekly": dto.weekly,
            "monthly": dto.monthly,
            "all_time": dto.all_time,
            "last_sync_at": dto.last_sync_at,
        }
        stmt = _insert_for(self.session)(RawWagerStatsModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "external_id": stmt.excluded.external_id,
                "username": stmt.excluded.username,
                "daily": stmt.excluded.daily,
                "weekly": stmt.excluded.weekly,
                "monthly": stmt.excluded.monthly,
                "all_time": stmt.excluded.all_time,
                "last_sync_at": stmt.excluded.last_sync_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto


class WagerAdjustmentRepository:
    """Repository for the adjustment ledger.

    Deliberately exposes no general update: after insert, the only write is
    :meth:`mark_reverted`.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: WagerAdjustmentDTO) -> WagerAdjustmentDTO:
        model = WagerAdjustmentModel(
            id=dto.id,
            user_id=dto.user_id,
            external_id=dto.external_id,
            admin_id=dto.admin_id,
            applied_to_timeframe=dto.applied_to_timeframe.value,
            daily_delta=dto.daily_delta,
            weekly_delta=dto.weekly_delta,
            monthly_delta=dto.monthly_delta,
            all_time_delta=dto.all_time_delta,
            adjustment_type=dto.adjustment_type,
            reason=dto.reason,
            original_value=dto.original_value,
            new_value=dto.new_value,
            status=dto.status.value,
            ip_address=dto.ip_address,
            user_agent=dto.user_agent,
            admin_notes=dto.admin_notes,
            created_at=dto.created_at or datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        return WagerAdjustmentDTO.from_model(model)

    async def get_by_id(self, adjustment_id: str) -> WagerAdjustmentDTO | None:
        result = await self.session.execute(
            select(WagerAdjustmentModel).where(WagerAdjustmentModel.id == adjustment_id)
        )
        model = result.scalar_one_or_none()
        return WagerAdjustmentDTO.from_model(model) if model else None

    async def list_active_for_user(self, user_id: str) -> list[WagerAdjustmentDTO]:
        """Active entries in creation order."""
        result = await self.session.execute(
            select(WagerAdjustmentModel)
            .where(
                (WagerAdjustmentModel.user_id == user_id)
                & (WagerAdjustmentModel.status == AdjustmentStatus.ACTIVE.value)
            )
            .order_by(WagerAdjustmentModel.created_at.asc(), WagerAdjustmentModel.id.asc())
        )
        return [WagerAdjustmentDTO.from_model(m) for m in result.scalars().all()]

    async def mark_reverted(
        self,
        adjustment_id: str,
        *,
        reverted_by: str,
        admin_notes: str | None,
        reverted_at: datetime | None = None,
    ) -> bool:
        """Flip an active entry to reverted.

        Returns:
            False if the entry was not active (already reverted or missing).
        """
        result = await self.session.execute(
            update(WagerAdjustmentModel)
            .where(
                (WagerAdjustmentModel.id == adjustment_id)
                & (WagerAdjustmentModel.status == AdjustmentStatus.ACTIVE.value)
            )
            .values(
                status=AdjustmentStatus.REVERTED.value,
                reverted_at=reverted_at or datetime.now(UTC),
                reverted_by=reverted_by,
                admin_notes=admin_notes,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return bool(result.rowcount == 1)

    async def search(self, filters: AdjustmentSearchFilters) -> AdjustmentPage:
        conditions: list[Any] = []
        if filters.admin_id:
            conditions.append(WagerAdjustmentModel.admin_id == filters.admin_id)
        if filters.timeframe is not None:
            conditions.append(WagerAdjustmentModel.applied_to_timeframe == filters.timeframe.value)
        if filters.status is not None:
            conditions.append(WagerAdjustmentModel.status == filters.status.value)
        if filters.external_id:
            conditions.append(WagerAdjustmentModel.external_id == filters.external_id)
        if filters.start_date is not None:
            conditions.append(WagerAdjustmentModel.created_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(WagerAdjustmentModel.created_at <= filters.end_date)
        return await self._page(conditions, limit=filters.limit, offset=filters.offset)

    async def list_for_external_id(
        self, external_id: str, *, limit: int = 50, offset: int = 0
    ) -> AdjustmentPage:
        return await self._page(
            [WagerAdjustmentModel.external_id == external_id], limit=limit, offset=offset
        )

    async def _page(self, conditions: list[Any], *, limit: int, offset: int) -> AdjustmentPage:
        total = await self.session.scalar(
            select(func.count()).select_from(WagerAdjustmentModel).where(*conditions)
        )
        result = await self.session.execute(
            select(WagerAdjustmentModel)
            .where(*conditions)
            .order_by(WagerAdjustmentModel.created_at.desc(), WagerAdjustmentModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return AdjustmentPage(
            adjustments=[WagerAdjustmentDTO.from_model(m) for m in result.scalars().all()],
            total=int(total or 0),
            limit=limit,
            offset=offset,
        )

    async def stats(self, *, since: datetime) -> AdjustmentStats:
        """Aggregate ledger activity for entries created at or after ``since``."""
        window = WagerAdjustmentModel.created_at >= since
        counts = (
            await self.session.execute(
                select(
                    func.count(WagerAdjustmentModel.id),
                    func.coalesce(
                        func.sum(
                            sa.case(
                                (WagerAdjustmentModel.status == AdjustmentStatus.ACTIVE.value, 1),
                                else_=0,
                            )
                        ),
                        0,
                    ),
                    func.coalesce(
                        func.sum(
                            sa.case(
                                (WagerAdjustmentModel.status == AdjustmentStatus.REVERTED.value, 1),
                                else_=0,
                            )
                        ),
                        0,
                    ),
                    func.count(func.distinct(WagerAdjustmentModel.user_id)),
                ).where(window)
            )
        ).one()

        deltas = await self.session.execute(
            select(
                WagerAdjustmentModel.daily_delta,
                WagerAdjustmentModel.weekly_delta,
                WagerAdjustmentModel.monthly_delta,
                WagerAdjustmentModel.all_time_delta,
            ).where(window)
        )
        total_amount = sum(
            (abs(_to_decimal(value)) for row in deltas.all() for value in row),
            Decimal(0),
        )
        return AdjustmentStats(
            total=int(counts[0] or 0),
            active=int(counts[1] or 0),
            reverted=int(counts[2] or 0),
            users_affected=int(counts[3] or 0),
            total_amount_adjusted=total_amount,
        )


class ComputedWagerStatsRepository:
    """Repository for materialized computed stats and their ranks."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> ComputedWagerStatsDTO | None:
        result = await self.session.execute(
            select(ComputedWagerStatsModel).where(ComputedWagerStatsModel.user_id == user_id)
        )
        model = result.scalar_one_or_none()
        return ComputedWagerStatsDTO.from_model(model) if model else None

    async def upsert(self, dto: ComputedWagerStatsDTO) -> ComputedWagerStatsDTO:
        """Insert or overwrite the user's computed row.

        On conflict the stored ranks are kept, except that a timeframe whose
        new final value is 0 has its rank cleared.
        """
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "user_id": dto.user_id,
            "external_id": dto.external_id,
            "username": dto.username,
            "has_adjustments": dto.has_adjustments,
            "adjustment_count": dto.adjustment_count,
            "last_api_sync": dto.last_api_sync,
            "last_adjustment_at": dto.last_adjustment_at,
            "computed_at": dto.computed_at or now,
            "version": dto.version,
            "updated_at": now,
        }
        for name in _COMPUTED_DECIMAL_FIELDS:
            values[name] = getattr(dto, name)
        for tf in Timeframe:
            values[f"{tf.value}_rank"] = dto.rank(tf)

        stmt = _insert_for(self.session)(ComputedWagerStatsModel).values(**values)
        set_: dict[str, Any] = {
            name: getattr(stmt.excluded, name)
            for name in values
            if name != "user_id" and not name.endswith("_rank")
        }
        # Existing ranks belong to the ranking pass; only a zero final clears one.
        for tf in Timeframe:
            set_[f"{tf.value}_rank"] = sa.case(
                (getattr(stmt.excluded, f"final_{tf.value}") <= 0, sa.null()),
                else_=getattr(ComputedWagerStatsModel, f"{tf.value}_rank"),
            )
        stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=set_)
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def recalculate_ranks(self, timeframe: Timeframe) -> int:
        """Rewrite ``{timeframe}_rank`` for every row.

        Rows with a positive final value get 1..k ordered by final value
        descending, then earlier ``computed_at``, then ``user_id``. All other
        rows get NULL.

        Returns:
            Number of ranked rows (k).
        """
        final_col = getattr(ComputedWagerStatsModel, f"final_{timeframe.value}")
        rank_name = f"{timeframe.value}_rank"

        await self.session.execute(
            update(ComputedWagerStatsModel)
            .where(final_col <= 0)
            .values({rank_name: None})
            .execution_options(synchronize_session=False)
        )

        # Positions are computed and written by one statement. The target row
        # must still be positive when it is updated, so a row zeroed by a
        # concurrent writer keeps its cleared rank.
        source = aliased(ComputedWagerStatsModel, name="rank_source")
        ranked = (
            select(
                source.user_id.label("user_id"),
                func.row_number()
                .over(order_by=self._ranking_order(timeframe, source))
                .label("rank_position"),
            )
            .where(getattr(source, f"final_{timeframe.value}") > 0)
            .subquery("ranked")
        )
        table = ComputedWagerStatsModel.__table__
        result = await self.session.execute(
            update(table)
            .where(table.c.user_id == ranked.c.user_id)
            .where(table.c[f"final_{timeframe.value}"] > 0)
            .values({rank_name: ranked.c.rank_position})
        )
        await self.session.flush()
        return int(result.rowcount or 0)

    async def leaderboard(
        self, timeframe: Timeframe, *, limit: int, offset: int = 0
    ) -> LeaderboardPageDTO:
        final_col = getattr(ComputedWagerStatsModel, f"final_{timeframe.value}")
        total = await self.session.scalar(
            select(func.count()).select_from(ComputedWagerStatsModel).where(final_col > 0)
        )
        result = await self.session.execute(
            select(ComputedWagerStatsModel)
            .where(final_col > 0)
            .order_by(*self._ranking_order(timeframe))
            .limit(limit)
            .offset(offset)
        )
        return LeaderboardPageDTO(
            timeframe=timeframe,
            rows=[ComputedWagerStatsDTO.from_model(m) for m in result.scalars().all()],
            total=int(total or 0),
        )

    @staticmethod
    def _ranking_order(timeframe: Timeframe, model: Any = ComputedWagerStatsModel) -> tuple[Any, ...]:
        final_col = getattr(model, f"final_{timeframe.value}")
        return (
            final_col.desc(),
            model.computed_at.asc(),
            model.user_id.asc(),
        )


class SyncLogRepository:
    """Repository for sync run logs."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, *, sync_type: str, timeframe: str, started_at: datetime) -> SyncLogDTO:
        model = SyncLogModel(
            id=str(uuid.uuid4()),
            sync_type=sync_type,
            timeframe=timeframe,
            started_at=started_at,
            created_at=datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        return SyncLogDTO.from_model(model)

    async def complete(
        self,
        log_id: str,
        *,
        users_processed: int,
        users_updated: int,
        users_added: int,
        errors: int,
        api_status: str,
        api_response_time_ms: int | None,
        error_details: str | None,
        completed_at: datetime,
        duration_seconds: float,
    ) -> SyncLogDTO | None:
        model = await self.session.get(SyncLogModel, log_id)
        if model is None:
            return None
        model.users_processed = users_processed
        model.users_updated = users_updated
        model.users_added = users_added
        model.errors = errors
        model.api_status = api_status
        model.api_response_time_ms = api_response_time_ms
        model.error_details = error_details
        model.completed_at = completed_at
        model.duration_seconds = duration_seconds
        await self.session.flush()
        return SyncLogDTO.from_model(model)

    async def latest(self, *, timeframe: str | None = None) -> SyncLogDTO | None:
        stmt = select(SyncLogModel)
        if timeframe is not None:
            stmt = stmt.where(SyncLogModel.timeframe == timeframe)
        result = await self.session.execute(
            stmt.order_by(SyncLogModel.started_at.desc(), SyncLogModel.created_at.desc()).limit(1)
        )
        model = result.scalar_one_or_none()
        return SyncLogDTO.from_model(model) if model else None

    async def delete_older_than(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(SyncLogModel)
            .where(SyncLogModel.started_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return int(result.rowcount or 0)
