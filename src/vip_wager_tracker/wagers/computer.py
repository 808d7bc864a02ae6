"""Computed stats: raw external amounts merged with active adjustments.

Every mutation that can change a user's computed stats (raw upsert during
sync, adjustment create, adjustment revert) goes through
:meth:`StatsComputer.apply`, which serializes work per user and runs the
mutation and the recomputation in one database transaction.

For each timeframe X::

    final_X = max(0, raw_X + sum(delta_X of active adjustments targeting X))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, TypeVar

from vip_wager_tracker.enums import AdjustmentType, SetAdjustmentPolicy, Timeframe
from vip_wager_tracker.errors import RawStatsMissingError
from vip_wager_tracker.storage.repos import (
    ComputedWagerStatsDTO,
    ComputedWagerStatsRepository,
    RawWagerStatsDTO,
    RawWagerStatsRepository,
    WagerAdjustmentDTO,
    WagerAdjustmentRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vip_wager_tracker.storage.database import DatabaseManager
    from vip_wager_tracker.wagers.cache import CacheCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T")

Mutation = Callable[["AsyncSession"], Awaitable[T]]

ZERO = Decimal(0)


async def _no_mutation(session: AsyncSession) -> None:
    return None


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class UserLockRegistry:
    """In-process mutex per user id. Entries are dropped when unused."""

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(user_id)
        if entry is None:
            entry = self._entries[user_id] = _LockEntry()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(user_id, None)


def total_adjustment(
    timeframe: Timeframe,
    raw_value: Decimal,
    adjustments: Sequence[WagerAdjustmentDTO],
    *,
    policy: SetAdjustmentPolicy = SetAdjustmentPolicy.FROZEN_DELTA,
) -> Decimal:
    """Sum of active deltas targeting ``timeframe``.

    Under ABSOLUTE_OVERRIDE the latest active ``set`` re-anchors the value to
    its target (``new_value - raw``) and only later entries stack on top.
    ``adjustments`` must be active entries in creation order.
    """
    targeting = [a for a in adjustments if a.applied_to_timeframe == timeframe]

    if policy == SetAdjustmentPolicy.ABSOLUTE_OVERRIDE:
        for index in range(len(targeting) - 1, -1, -1):
            if targeting[index].adjustment_type == AdjustmentType.SET.value:
                anchor = targeting[index].new_value - raw_value
                return anchor + sum((a.delta(timeframe) for a in targeting[index + 1 :]), ZERO)

    return sum((a.delta(timeframe) for a in targeting), ZERO)


def merge_stats(
    raw: RawWagerStatsDTO,
    adjustments: Sequence[WagerAdjustmentDTO],
    *,
    previous: ComputedWagerStatsDTO | None = None,
    policy: SetAdjustmentPolicy = SetAdjustmentPolicy.FROZEN_DELTA,
    computed_at: datetime | None = None,
) -> ComputedWagerStatsDTO:
    """Build the computed record for one user.

    Stored ranks are carried over from ``previous``; a timeframe whose final
    value drops to 0 loses its rank immediately.
    """
    stats = ComputedWagerStatsDTO(
        user_id=raw.user_id,
        external_id=raw.external_id,
        username=raw.username,
        has_adjustments=bool(adjustments),
        adjustment_count=len(adjustments),
        last_api_sync=raw.last_sync_at,
        last_adjustment_at=max(
            (a.created_at for a in adjustments if a.created_at is not None), default=None
        ),
        computed_at=computed_at or datetime.now(UTC),
        version=previous.version + 1 if previous else 1,
    )
    for tf in Timeframe:
        raw_value = raw.amount(tf)
        total = total_adjustment(tf, raw_value, adjustments, policy=policy)
        final = max(ZERO, raw_value + total)
        setattr(stats, f"raw_{tf.value}", raw_value)
        setattr(stats, f"total_{tf.value}_adjustment", total)
        setattr(stats, f"final_{tf.value}", final)
        previous_rank = previous.rank(tf) if previous else None
        setattr(stats, f"{tf.value}_rank", previous_rank if final > 0 else None)
    return stats


class StatsComputer:
    """Single authoritative recomputation path for computed stats."""

    def __init__(
        self,
        db: DatabaseManager,
        cache: CacheCoordinator,
        *,
        set_policy: SetAdjustmentPolicy = SetAdjustmentPolicy.FROZEN_DELTA,
        locks: UserLockRegistry | None = None,
    ) -> None:
        self._db = db
        self._cache = cache
        self._set_policy = set_policy
        self._locks = locks or UserLockRegistry()

    @property
    def set_policy(self) -> SetAdjustmentPolicy:
        return self._set_policy

    async def recompute(self, user_id: str) -> ComputedWagerStatsDTO:
        """Recompute and persist one user's stats, then refresh the cache.

        Raises:
            RawStatsMissingError: The user has never been synced.
        """
        _, stats = await self.apply(user_id, _no_mutation)
        return stats

    async def apply(
        self,
        user_id: str,
        mutation: Mutation[T],
        *,
        invalidate: bool = False,
    ) -> tuple[T, ComputedWagerStatsDTO]:
        """Run ``mutation`` and the recompute atomically for one user.

        The per-user lock is held until the cache has been written, so cache
        writes for a user happen in commit order. If the mutation or the
        recompute raises, the transaction is rolled back and the cache is
        left untouched.

        Args:
            user_id: Local user id.
            mutation: Coroutine function receiving the transaction's session.
            invalidate: Drop the user's cache entry and all leaderboard pages
                after commit (adjustment changes).

        Returns:
            The mutation's result and the new stats.
        """
        async with self._locks.hold(user_id):
            async with self._db.get_async_session() as session:
                result = await mutation(session)
                stats = await self.compute_in_session(session, user_id)

            if invalidate:
                await self._cache.invalidate(user_id)
            await self._cache.set(stats)

        logger.debug(
            "Recomputed stats for %s (v%d, %d active adjustments)",
            user_id,
            stats.version,
            stats.adjustment_count,
        )
        return result, stats

    async def compute_in_session(self, session: AsyncSession, user_id: str) -> ComputedWagerStatsDTO:
        raw = await RawWagerStatsRepository(session).get(user_id)
        if raw is None:
            raise RawStatsMissingError(
                f"Raw wager stats not found for user {user_id}; sync the user before adjusting"
            )
        adjustments = await WagerAdjustmentRepository(session).list_active_for_user(user_id)
        computed_repo = ComputedWagerStatsRepository(session)
        previous = await computed_repo.get(user_id)

        stats = merge_stats(raw, adjustments, previous=previous, policy=self._set_policy)
        await computed_repo.upsert(stats)
        return stats
