"""Redis cache for computed wager stats and leaderboard pages.

The cache is an accelerator only. Every failure (connectivity, serialization)
becomes a :class:`CacheFailure`, which is logged and treated as a miss;
nothing here raises into the write path.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from vip_wager_tracker.enums import Timeframe
from vip_wager_tracker.errors import CacheFailure
from vip_wager_tracker.storage.repos import ComputedWagerStatsDTO, ComputedWagerStatsRepository

if TYPE_CHECKING:
    from vip_wager_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_COMPUTED_STATS_TTL = 300  # 5 minutes
DEFAULT_LEADERBOARD_TTL = 300
DEFAULT_SCAN_COUNT = 100

COMPUTED_STATS_PREFIX = "computed_wager_stats:"
LEADERBOARD_PREFIX = "leaderboard:"


def computed_stats_key(user_id: str) -> str:
    return f"{COMPUTED_STATS_PREFIX}{user_id}"


def leaderboard_key(timeframe: Timeframe, limit: int, offset: int) -> str:
    return f"{LEADERBOARD_PREFIX}{timeframe.value}:{limit}:{offset}"


class CacheCoordinator:
    """Read-through cache for computed stats with leaderboard invalidation.

    Redis and serialization problems are raised as :class:`CacheFailure`
    by the private helpers and caught at each public method.
    """

    def __init__(
        self,
        redis: Redis | None,
        db: DatabaseManager | None = None,
        *,
        ttl_seconds: int = DEFAULT_COMPUTED_STATS_TTL,
        leaderboard_ttl_seconds: int = DEFAULT_LEADERBOARD_TTL,
        scan_count: int = DEFAULT_SCAN_COUNT,
    ) -> None:
        """Initialize the coordinator.

        Args:
            redis: Async Redis client. ``None`` disables caching entirely.
            db: Database used to fill misses in :meth:`get`.
            ttl_seconds: TTL for computed-stats entries.
            leaderboard_ttl_seconds: TTL for cached leaderboard pages.
            scan_count: SCAN batch hint used for pattern deletes.
        """
        self._redis = redis
        self._db = db
        self._ttl = ttl_seconds
        self._leaderboard_ttl = leaderboard_ttl_seconds
        self._scan_count = scan_count

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def get(self, user_id: str) -> ComputedWagerStatsDTO | None:
        """Return computed stats for a user, filling the cache on a miss.

        The fill only writes when the key is still absent, so an entry
        written by a recompute that committed meanwhile is not replaced.
        """
        cached = await self.get_cached(user_id)
        if cached is not None:
            return cached
        if self._db is None:
            return None

        async with self._db.get_async_session() as session:
            stats = await ComputedWagerStatsRepository(session).get(user_id)
        if stats is not None:
            await self.set(stats, only_if_absent=True)
        return stats

    async def get_cached(self, user_id: str) -> ComputedWagerStatsDTO | None:
        if not self._redis:
            return None
        try:
            data = await self._read(computed_stats_key(user_id))
            return _stats_from_payload(data) if data is not None else None
        except CacheFailure as e:
            logger.warning("Failed to read cached computed stats for %s: %s", user_id, e)
            return None

    async def set(self, stats: ComputedWagerStatsDTO, *, only_if_absent: bool = False) -> None:
        """Cache ``stats``; with ``only_if_absent`` an existing entry wins."""
        if not self._redis:
            return
        try:
            await self._write(
                computed_stats_key(stats.user_id), stats.to_dict(), ttl=self._ttl, nx=only_if_absent
            )
        except CacheFailure as e:
            logger.warning("Failed to cache computed stats for %s: %s", stats.user_id, e)

    async def invalidate(self, user_id: str) -> None:
        """Drop a user's entry and every leaderboard page."""
        if not self._redis:
            return
        try:
            await self._delete(computed_stats_key(user_id))
        except CacheFailure as e:
            logger.warning("Failed to invalidate computed stats for %s: %s", user_id, e)
        await self.invalidate_leaderboards()

    async def invalidate_leaderboards(self) -> int:
        return await self._delete_pattern(f"{LEADERBOARD_PREFIX}*")

    async def invalidate_all_computed(self) -> int:
        """Drop every computed-stats entry (ranks changed in bulk)."""
        return await self._delete_pattern(f"{COMPUTED_STATS_PREFIX}*")

    async def get_leaderboard(
        self, timeframe: Timeframe, *, limit: int, offset: int
    ) -> dict[str, Any] | None:
        if not self._redis:
            return None
        try:
            payload = await self._read(leaderboard_key(timeframe, limit, offset))
        except CacheFailure as e:
            logger.warning("Failed to read cached %s leaderboard: %s", timeframe.value, e)
            return None
        return payload if isinstance(payload, dict) else None

    async def set_leaderboard(
        self, timeframe: Timeframe, *, limit: int, offset: int, payload: dict[str, Any]
    ) -> None:
        if not self._redis:
            return
        try:
            await self._write(
                leaderboard_key(timeframe, limit, offset), payload, ttl=self._leaderboard_ttl
            )
        except CacheFailure as e:
            logger.warning("Failed to cache %s leaderboard: %s", timeframe.value, e)

    async def _read(self, key: str) -> Any:
        client = self._client()
        try:
            cached = await client.get(key)
        except Exception as e:
            raise CacheFailure(f"GET {key} failed: {e}") from e
        if cached is None:
            return None
        try:
            return json.loads(cached if isinstance(cached, str) else cached.decode())
        except (ValueError, UnicodeDecodeError) as e:
            raise CacheFailure(f"Corrupt cache entry {key}: {e}") from e

    async def _write(self, key: str, payload: Any, *, ttl: int, nx: bool = False) -> None:
        client = self._client()
        try:
            value = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise CacheFailure(f"Cannot serialize cache entry {key}: {e}") from e
        try:
            await client.set(key, value, ex=ttl, nx=nx)
        except Exception as e:
            raise CacheFailure(f"SET {key} failed: {e}") from e

    async def _delete(self, *keys: Any) -> int:
        client = self._client()
        try:
            return int(await client.delete(*keys))
        except Exception as e:
            raise CacheFailure(f"DEL of {len(keys)} key(s) failed: {e}") from e

    async def _delete_pattern(self, pattern: str) -> int:
        if not self._redis:
            return 0
        deleted = 0
        try:
            cursor: int = 0
            while True:
                try:
                    cursor, keys = await self._redis.scan(
                        cursor=cursor, match=pattern, count=self._scan_count
                    )
                except Exception as e:
                    raise CacheFailure(f"SCAN {pattern} failed: {e}") from e
                if keys:
                    deleted += await self._delete(*keys)
                if int(cursor) == 0:
                    break
        except CacheFailure as e:
            logger.warning("Failed to delete cache keys matching %s: %s", pattern, e)
        return deleted

    def _client(self) -> Redis:
        if self._redis is None:
            raise CacheFailure("Redis client is not configured")
        return self._redis


def _stats_from_payload(data: Any) -> ComputedWagerStatsDTO:
    try:
        return ComputedWagerStatsDTO.from_dict(data)
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise CacheFailure(f"Cached computed stats have an unexpected shape: {e}") from e
