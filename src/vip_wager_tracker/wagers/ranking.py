"""Batch rank recomputation and leaderboard reads over computed stats."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from vip_wager_tracker.enums import ALL_TIMEFRAMES, Timeframe
from vip_wager_tracker.errors import ValidationError
from vip_wager_tracker.storage.repos import ComputedWagerStatsRepository

if TYPE_CHECKING:
    from vip_wager_tracker.storage.database import DatabaseManager
    from vip_wager_tracker.wagers.cache import CacheCoordinator

logger = logging.getLogger(__name__)

DEFAULT_LEADERBOARD_LIMIT = 100
MAX_LEADERBOARD_LIMIT = 1000


class RankingEngine:
    """Full re-sort of every computed row for one or all timeframes.

    Ranks are 1..k over rows with a positive final value, ordered by final
    value descending; ties go to the earlier ``computed_at``, then the lower
    ``user_id``. Rows at 0 are unranked. This is not triggered by single
    adjustments, so ranks can lag until the next sync or manual trigger.
    """

    def __init__(self, db: DatabaseManager, cache: CacheCoordinator) -> None:
        self._db = db
        self._cache = cache

    async def recalculate_all_rankings(
        self, timeframe: Timeframe | None = None
    ) -> dict[Timeframe, int]:
        """Recompute ranks and drop caches that embed them.

        Args:
            timeframe: Timeframe to rank, or None for all four.

        Returns:
            Number of ranked users per recomputed timeframe.
        """
        timeframes = (timeframe,) if timeframe is not None else ALL_TIMEFRAMES
        started = time.monotonic()
        ranked: dict[Timeframe, int] = {}

        async with self._db.get_async_session() as session:
            repo = ComputedWagerStatsRepository(session)
            for tf in timeframes:
                ranked[tf] = await repo.recalculate_ranks(tf)

        await self._cache.invalidate_leaderboards()
        await self._cache.invalidate_all_computed()

        logger.info(
            "Rankings recalculated in %.2fs: %s",
            time.monotonic() - started,
            ", ".join(f"{tf.value}={count}" for tf, count in ranked.items()),
        )
        return ranked

    async def get_leaderboard(
        self, timeframe: Timeframe, *, limit: int = DEFAULT_LEADERBOARD_LIMIT, offset: int = 0
    ) -> dict[str, Any]:
        """Positive-final rows in ranking order, served from cache when warm.

        Each row carries its stored rank, which may lag behind the order
        until the next recalculation.
        """
        if not 1 <= limit <= MAX_LEADERBOARD_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LEADERBOARD_LIMIT}")
        if offset < 0:
            raise ValidationError("offset must be >= 0")

        cached = await self._cache.get_leaderboard(timeframe, limit=limit, offset=offset)
        if cached is not None:
            return cached

        async with self._db.get_async_session() as session:
            page = await ComputedWagerStatsRepository(session).leaderboard(
                timeframe, limit=limit, offset=offset
            )

        payload: dict[str, Any] = {
            "timeframe": timeframe.value,
            "total": page.total,
            "limit": limit,
            "offset": offset,
            "entries": [
                {
                    "position": offset + index,
                    "rank": row.rank(timeframe),
                    "user_id": row.user_id,
                    "external_id": row.external_id,
                    "username": row.username,
                    "raw": str(row.raw(timeframe)),
                    "adjustment": str(row.total_adjustment(timeframe)),
                    "final": str(row.final(timeframe)),
                    "has_adjustments": row.has_adjustments,
                }
                for index, row in enumerate(page.rows, start=1)
            ],
        }
        await self._cache.set_leaderboard(timeframe, limit=limit, offset=offset, payload=payload)
        return payload
