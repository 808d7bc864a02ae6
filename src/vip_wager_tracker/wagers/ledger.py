"""Admin adjustment ledger: create, revert, bulk and search.

Adjustments are stored as signed per-timeframe deltas. A ``set`` stores the
delta that moved the then-current final value to the requested target, so
the delta is frozen at creation time.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Literal

from vip_wager_tracker.enums import AdjustmentStatus, AdjustmentType, Timeframe
from vip_wager_tracker.errors import (
    AlreadyRevertedError,
    NotFoundError,
    RawStatsMissingError,
    ValidationError,
    WagerEngineError,
    error_to_dict,
)
from vip_wager_tracker.storage.models import AMOUNT_SCALE, MAX_AMOUNT
from vip_wager_tracker.storage.repos import (
    AdjustmentPage,
    AdjustmentSearchFilters,
    AdjustmentStats,
    ComputedWagerStatsDTO,
    ComputedWagerStatsRepository,
    UserRepository,
    WagerAdjustmentDTO,
    WagerAdjustmentRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vip_wager_tracker.storage.database import DatabaseManager
    from vip_wager_tracker.wagers.computer import StatsComputer

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500
_AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_SCALE)
MAX_PAGE_SIZE = 100
DEFAULT_SEARCH_LIMIT = 20
DEFAULT_USER_ADJUSTMENTS_LIMIT = 50

StatsWindow = Literal["day", "week", "month"]
_WINDOWS: dict[str, timedelta] = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


def compute_delta(
    adjustment_type: AdjustmentType, amount: Decimal, current_final: Decimal
) -> Decimal:
    """Signed delta for an adjustment against the current final value."""
    if adjustment_type == AdjustmentType.ADD:
        return amount
    if adjustment_type == AdjustmentType.SUBTRACT:
        return -abs(amount)
    return amount - current_final


@dataclass(frozen=True)
class CreateAdjustmentInput:
    """One admin adjustment request."""

    external_id: str
    adjustment_type: AdjustmentType | str
    applied_to_timeframe: Timeframe | str
    amount: Decimal | int | float | str
    reason: str
    admin_notes: str | None = None

    def validate(self) -> CreateAdjustmentInput:
        """Return a normalized copy (enum members, Decimal amount).

        Raises:
            ValidationError: If any field is malformed.
        """
        external_id = str(self.external_id or "").strip()
        if not external_id:
            raise ValidationError("external_id is required")

        try:
            adjustment_type = AdjustmentType(self.adjustment_type)
        except ValueError as e:
            raise ValidationError(f"Unknown adjustment type: {self.adjustment_type!r}") from e

        try:
            timeframe = Timeframe.parse(self.applied_to_timeframe)
        except ValueError as e:
            raise ValidationError(f"Unknown timeframe: {self.applied_to_timeframe!r}") from e

        if isinstance(self.amount, bool):
            raise ValidationError("amount must be a number")
        try:
            amount = Decimal(str(self.amount))
        except InvalidOperation as e:
            raise ValidationError(f"amount must be a number, got {self.amount!r}") from e
        if not amount.is_finite():
            raise ValidationError("amount must be finite")
        if abs(amount) >= MAX_AMOUNT:
            raise ValidationError(f"amount must be below {MAX_AMOUNT:f} in magnitude")
        if amount.quantize(_AMOUNT_QUANTUM) != amount:
            raise ValidationError(f"amount must have at most {AMOUNT_SCALE} decimal places")
        if adjustment_type == AdjustmentType.SET and amount < 0:
            raise ValidationError("set target must be non-negative")

        reason = (self.reason or "").strip()
        if not reason:
            raise ValidationError("reason is required")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"reason must be at most {MAX_REASON_LENGTH} characters")

        return replace(
            self,
            external_id=external_id,
            adjustment_type=adjustment_type,
            applied_to_timeframe=timeframe,
            amount=amount,
            reason=reason,
        )


@dataclass(frozen=True)
class AuditContext:
    """Request metadata recorded with every ledger write."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class AdjustmentOutcome:
    adjustment: WagerAdjustmentDTO
    stats: ComputedWagerStatsDTO


@dataclass
class BulkItemResult:
    """Outcome of one item in a bulk call."""

    index: int
    key: str
    success: bool
    outcome: AdjustmentOutcome | None = None
    error: dict[str, Any] | None = None


@dataclass
class BulkResult:
    items: list[BulkItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if not item.success)


def _validate_page(limit: int, offset: int) -> None:
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset must be >= 0")


def _append_revert_note(existing: str | None, reason: str) -> str:
    note = f"REVERTED: {reason}"
    return f"{existing}\n\n{note}" if existing else note


class AdjustmentLedger:
    """Admin-facing adjustment operations.

    Writes funnel through :meth:`StatsComputer.apply`, so the ledger write and
    the recompute commit together and the cache is refreshed afterwards.
    """

    def __init__(self, db: DatabaseManager, computer: StatsComputer) -> None:
        self._db = db
        self._computer = computer

    async def create_adjustment(
        self,
        data: CreateAdjustmentInput,
        admin_id: str,
        audit: AuditContext | None = None,
    ) -> AdjustmentOutcome:
        """Record an adjustment and recompute the user's stats.

        Raises:
            ValidationError: Malformed input.
            NotFoundError: No local user for the external id.
            RawStatsMissingError: The user has never been synced.
        """
        data = data.validate()
        audit = audit or AuditContext()
        timeframe = Timeframe.parse(data.applied_to_timeframe)
        adjustment_type = AdjustmentType(data.adjustment_type)
        amount = Decimal(str(data.amount))

        async with self._db.get_async_session() as session:
            user = await UserRepository(session).get_by_external_id(data.external_id)
        if user is None:
            raise NotFoundError(f"User with external id {data.external_id} not found")

        async def insert_adjustment(session: AsyncSession) -> WagerAdjustmentDTO:
            current = await ComputedWagerStatsRepository(session).get(user.id)
            if current is None:
                raise RawStatsMissingError(
                    f"User {data.external_id} has no synced wager stats; "
                    "raw stats are required before adjusting"
                )
            current_final = current.final(timeframe)
            delta = compute_delta(adjustment_type, amount, current_final)
            deltas = {f"{tf.value}_delta": Decimal(0) for tf in Timeframe}
            deltas[f"{timeframe.value}_delta"] = delta

            return await WagerAdjustmentRepository(session).insert(
                WagerAdjustmentDTO(
                    id=str(uuid.uuid4()),
                    user_id=user.id,
                    external_id=data.external_id,
                    admin_id=admin_id,
                    applied_to_timeframe=timeframe,
                    adjustment_type=adjustment_type.value,
                    reason=data.reason,
                    original_value=current_final,
                    new_value=max(Decimal(0), current_final + delta),
                    status=AdjustmentStatus.ACTIVE,
                    ip_address=audit.ip_address,
                    user_agent=audit.user_agent,
                    admin_notes=data.admin_notes,
                    created_at=datetime.now(UTC),
                    **deltas,
                )
            )

        adjustment, stats = await self._computer.apply(
            user.id, insert_adjustment, invalidate=True
        )
        logger.info(
            "Adjustment %s by %s: %s %s %s on %s (%s -> %s)",
            adjustment.id,
            admin_id,
            adjustment_type.value,
            amount,
            timeframe.value,
            data.external_id,
            adjustment.original_value,
            adjustment.new_value,
        )
        return AdjustmentOutcome(adjustment=adjustment, stats=stats)

    async def revert_adjustment(
        self, adjustment_id: str, reason: str, admin_id: str
    ) -> AdjustmentOutcome:
        """Revert an active adjustment and recompute the user's stats.

        The revert reason is appended to the existing admin notes.

        Raises:
            ValidationError: Empty reason.
            NotFoundError: Unknown adjustment id.
            AlreadyRevertedError: The adjustment is not active.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason is required")

        async with self._db.get_async_session() as session:
            existing = await WagerAdjustmentRepository(session).get_by_id(adjustment_id)
        if existing is None:
            raise NotFoundError(f"Adjustment {adjustment_id} not found")
        if not existing.is_active:
            raise AlreadyRevertedError(f"Adjustment {adjustment_id} is already reverted")

        async def mark_reverted(session: AsyncSession) -> WagerAdjustmentDTO:
            repo = WagerAdjustmentRepository(session)
            current = await repo.get_by_id(adjustment_id)
            if current is None:
                raise NotFoundError(f"Adjustment {adjustment_id} not found")
            notes = _append_revert_note(current.admin_notes, reason)
            reverted_at = datetime.now(UTC)
            reverted = await repo.mark_reverted(
                adjustment_id,
                reverted_by=admin_id,
                admin_notes=notes,
                reverted_at=reverted_at,
            )
            if not reverted:
                raise AlreadyRevertedError(f"Adjustment {adjustment_id} is already reverted")
            return replace(
                current,
                status=AdjustmentStatus.REVERTED,
                reverted_at=reverted_at,
                reverted_by=admin_id,
                admin_notes=notes,
            )

        adjustment, stats = await self._computer.apply(
            existing.user_id, mark_reverted, invalidate=True
        )
        logger.info("Adjustment %s reverted by %s: %s", adjustment_id, admin_id, reason)
        return AdjustmentOutcome(adjustment=adjustment, stats=stats)

    async def create_bulk_adjustments(
        self,
        items: Sequence[CreateAdjustmentInput],
        admin_id: str,
        audit: AuditContext | None = None,
    ) -> BulkResult:
        """Apply each item independently.

        Not transactional: items applied before a failure stay applied, and
        every item reports its own result.
        """
        result = BulkResult()
        for index, item in enumerate(items):
            try:
                outcome = await self.create_adjustment(item, admin_id, audit)
            except WagerEngineError as e:
                logger.warning("Bulk adjustment item %d (%s) failed: %s", index, item.external_id, e)
                result.items.append(
                    BulkItemResult(
                        index=index, key=str(item.external_id), success=False, error=error_to_dict(e)
                    )
                )
            except Exception as e:
                logger.exception("Bulk adjustment item %d (%s) failed unexpectedly", index, item.external_id)
                result.items.append(
                    BulkItemResult(
                        index=index, key=str(item.external_id), success=False, error=error_to_dict(e)
                    )
                )
            else:
                result.items.append(
                    BulkItemResult(index=index, key=str(item.external_id), success=True, outcome=outcome)
                )
        logger.info(
            "Bulk adjustments by %s: %d succeeded, %d failed",
            admin_id,
            result.succeeded,
            result.failed,
        )
        return result

    async def revert_adjustments(
        self, adjustment_ids: Sequence[str], reason: str, admin_id: str
    ) -> BulkResult:
        """Revert several adjustments; per-item results, not transactional."""
        result = BulkResult()
        for index, adjustment_id in enumerate(adjustment_ids):
            try:
                outcome = await self.revert_adjustment(adjustment_id, reason, admin_id)
            except WagerEngineError as e:
                logger.warning("Bulk revert of %s failed: %s", adjustment_id, e)
                result.items.append(
                    BulkItemResult(index=index, key=adjustment_id, success=False, error=error_to_dict(e))
                )
            except Exception as e:
                logger.exception("Bulk revert of %s failed unexpectedly", adjustment_id)
                result.items.append(
                    BulkItemResult(index=index, key=adjustment_id, success=False, error=error_to_dict(e))
                )
            else:
                result.items.append(
                    BulkItemResult(index=index, key=adjustment_id, success=True, outcome=outcome)
                )
        return result

    async def search_adjustments(self, filters: AdjustmentSearchFilters) -> AdjustmentPage:
        _validate_page(filters.limit, filters.offset)
        if (
            filters.start_date is not None
            and filters.end_date is not None
            and filters.start_date > filters.end_date
        ):
            raise ValidationError("start_date must not be after end_date")
        async with self._db.get_async_session() as session:
            return await WagerAdjustmentRepository(session).search(filters)

    async def get_user_adjustments(
        self,
        external_id: str,
        *,
        limit: int = DEFAULT_USER_ADJUSTMENTS_LIMIT,
        offset: int = 0,
    ) -> AdjustmentPage:
        """All adjustments for an external id, newest first."""
        _validate_page(limit, offset)
        async with self._db.get_async_session() as session:
            return await WagerAdjustmentRepository(session).list_for_external_id(
                external_id, limit=limit, offset=offset
            )

    async def get_adjustment_stats(self, window: StatsWindow = "day") -> AdjustmentStats:
        if window not in _WINDOWS:
            raise ValidationError(f"window must be one of {', '.join(_WINDOWS)}")
        since = datetime.now(UTC) - _WINDOWS[window]
        async with self._db.get_async_session() as session:
            return await WagerAdjustmentRepository(session).stats(since=since)
