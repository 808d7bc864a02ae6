"""Wager engine facade.

This module provides the WagerEngine class that wires together the gateway,
storage, cache and wager services and exposes the administrative operations
consumed by the HTTP layer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from redis.asyncio import Redis

from vip_wager_tracker.config import Settings, get_settings
from vip_wager_tracker.enums import Timeframe
from vip_wager_tracker.errors import NotFoundError, RawStatsMissingError
from vip_wager_tracker.ingestor.circuit_breaker import CircuitBreaker
from vip_wager_tracker.ingestor.gateway import ExternalSyncGateway
from vip_wager_tracker.storage.database import DatabaseManager
from vip_wager_tracker.storage.repos import UserRepository
from vip_wager_tracker.sync.orchestrator import SyncOrchestrator
from vip_wager_tracker.wagers.cache import CacheCoordinator
from vip_wager_tracker.wagers.computer import StatsComputer
from vip_wager_tracker.wagers.ledger import AdjustmentLedger
from vip_wager_tracker.wagers.ranking import RankingEngine

if TYPE_CHECKING:
    from vip_wager_tracker.ingestor.models import LeaderboardEntry
    from vip_wager_tracker.storage.repos import (
        AdjustmentPage,
        AdjustmentSearchFilters,
        AdjustmentStats,
        ComputedWagerStatsDTO,
        LinkingStats,
        SyncLogDTO,
    )
    from vip_wager_tracker.sync.orchestrator import SyncResult
    from vip_wager_tracker.wagers.ledger import (
        AdjustmentOutcome,
        AuditContext,
        BulkResult,
        CreateAdjustmentInput,
        StatsWindow,
    )

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EngineState(str, Enum):
    """Engine lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class EngineStats:
    """Statistics for the periodic sync loop."""

    started_at: datetime | None = None
    syncs_completed: int = 0
    syncs_failed: int = 0
    last_sync_at: datetime | None = None
    last_error: str | None = None


class WagerEngine:
    """Wires the wager services together and exposes admin operations.

    Example:
        ```python
        from vip_wager_tracker.engine import WagerEngine

        async with WagerEngine() as engine:
            result = await engine.sync_all_users(Timeframe.MONTHLY)
            print(result.users_processed, result.errors)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db: DatabaseManager | None = None,
        redis: Redis | None = None,
        gateway: ExternalSyncGateway | None = None,
        use_redis: bool = True,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            db: Pre-built database manager (the engine will not dispose it).
            redis: Pre-built Redis client (the engine will not close it).
            gateway: Pre-built gateway (the engine will not close it).
            use_redis: Set False to run without a cache.
        """
        self._settings = settings or get_settings()
        self._state = EngineState.STOPPED
        self._stats = EngineStats()

        self._db = db
        self._owns_db = db is None
        self._redis = redis
        self._owns_redis = redis is None and use_redis
        self._gateway = gateway
        self._owns_gateway = gateway is None

        # Services (initialized in start())
        self._cache: CacheCoordinator | None = None
        self._computer: StatsComputer | None = None
        self._ranking: RankingEngine | None = None
        self._ledger: AdjustmentLedger | None = None
        self._orchestrator: SyncOrchestrator | None = None

        self._stop_event: asyncio.Event | None = None
        self._sync_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def stats(self) -> EngineStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == EngineState.RUNNING

    async def start(self) -> None:
        """Initialize all components.

        Raises:
            RuntimeError: If the engine is already running.
        """
        if self._state != EngineState.STOPPED:
            raise RuntimeError(f"Cannot start engine in state {self._state}")

        self._state = EngineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting wager engine...")

        try:
            self._initialize_components()
            self._stats.started_at = datetime.now(UTC)
            self._state = EngineState.RUNNING
            logger.info("Wager engine started")
        except Exception as e:
            self._state = EngineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start wager engine: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the periodic sync loop and release owned resources."""
        if self._state == EngineState.STOPPED:
            return

        self._state = EngineState.STOPPING
        logger.info("Stopping wager engine...")

        if self._stop_event:
            self._stop_event.set()
        if self._sync_task is not None:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None

        await self._cleanup()
        self._state = EngineState.STOPPED
        logger.info("Wager engine stopped")

    def _initialize_components(self) -> None:
        settings = self._settings

        if self._db is None:
            logger.debug("Initializing database manager...")
            self._db = DatabaseManager(settings.database.url)

        if self._redis is None and self._owns_redis:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._gateway is None:
            api = settings.external_api
            breaker = CircuitBreaker(
                failure_threshold=settings.circuit_breaker.failure_threshold,
                cooldown_seconds=settings.circuit_breaker.cooldown_seconds,
            )
            self._gateway = ExternalSyncGateway(
                base_url=api.url,
                api_token=api.token.get_secret_value() if api.token else None,
                timeout_seconds=api.timeout_seconds,
                breaker=breaker,
                user_agent=api.user_agent,
            )

        wager = settings.wager
        self._cache = CacheCoordinator(
            self._redis,
            self._db,
            ttl_seconds=wager.computed_stats_cache_ttl_seconds,
            leaderboard_ttl_seconds=wager.leaderboard_cache_ttl_seconds,
        )
        self._computer = StatsComputer(self._db, self._cache, set_policy=wager.set_adjustment_policy)
        self._ranking = RankingEngine(self._db, self._cache)
        self._ledger = AdjustmentLedger(self._db, self._computer)
        self._orchestrator = SyncOrchestrator(
            self._db,
            self._gateway,
            self._computer,
            self._ranking,
            page_size=settings.external_api.page_size,
            single_user_page_size=settings.external_api.single_user_page_size,
            page_delay_seconds=settings.external_api.page_delay_seconds,
        )

    async def _cleanup(self) -> None:
        if self._gateway is not None and self._owns_gateway:
            await self._gateway.aclose()
            self._gateway = None
        if self._redis is not None and self._owns_redis:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning("Error closing Redis connection: %s", e)
            self._redis = None
        if self._db is not None and self._owns_db:
            await self._db.dispose()
            self._db = None

    async def init_schema(self) -> None:
        await self._require(self._db).init_schema()

    def _require(self, component: T | None) -> T:
        if self._state != EngineState.RUNNING or component is None:
            raise RuntimeError("Wager engine is not running")
        return component

    # Adjustments

    async def create_adjustment(
        self, data: CreateAdjustmentInput, admin_id: str, audit: AuditContext | None = None
    ) -> AdjustmentOutcome:
        return await self._require(self._ledger).create_adjustment(data, admin_id, audit)

    async def create_bulk_adjustments(
        self,
        items: Sequence[CreateAdjustmentInput],
        admin_id: str,
        audit: AuditContext | None = None,
    ) -> BulkResult:
        return await self._require(self._ledger).create_bulk_adjustments(items, admin_id, audit)

    async def revert_adjustment(
        self, adjustment_id: str, reason: str, admin_id: str
    ) -> AdjustmentOutcome:
        return await self._require(self._ledger).revert_adjustment(adjustment_id, reason, admin_id)

    async def revert_adjustments(
        self, adjustment_ids: Sequence[str], reason: str, admin_id: str
    ) -> BulkResult:
        return await self._require(self._ledger).revert_adjustments(adjustment_ids, reason, admin_id)

    async def search_adjustments(self, filters: AdjustmentSearchFilters) -> AdjustmentPage:
        return await self._require(self._ledger).search_adjustments(filters)

    async def get_user_adjustments(
        self, external_id: str, *, limit: int = 50, offset: int = 0
    ) -> AdjustmentPage:
        return await self._require(self._ledger).get_user_adjustments(
            external_id, limit=limit, offset=offset
        )

    async def get_adjustment_stats(self, window: StatsWindow = "day") -> AdjustmentStats:
        return await self._require(self._ledger).get_adjustment_stats(window)

    # Computed stats and rankings

    async def get_computed_stats(self, external_id: str) -> ComputedWagerStatsDTO:
        """Computed stats for an external id (read-through cache).

        Raises:
            NotFoundError: Unknown external id.
            RawStatsMissingError: The user has never been synced.
        """
        db = self._require(self._db)
        cache = self._require(self._cache)
        async with db.get_async_session() as session:
            user = await UserRepository(session).get_by_external_id(external_id)
        if user is None:
            raise NotFoundError(f"User with external id {external_id} not found")
        stats = await cache.get(user.id)
        if stats is None:
            raise RawStatsMissingError(f"No computed wager stats for {external_id}")
        return stats

    async def get_leaderboard(
        self, timeframe: Timeframe | str, *, limit: int = 100, offset: int = 0
    ) -> dict[str, Any]:
        return await self._require(self._ranking).get_leaderboard(
            Timeframe.parse(timeframe), limit=limit, offset=offset
        )

    async def recalculate_rankings(
        self, timeframe: Timeframe | str | None = None
    ) -> dict[Timeframe, int]:
        tf = Timeframe.parse(timeframe) if timeframe is not None else None
        return await self._require(self._ranking).recalculate_all_rankings(tf)

    async def get_linking_stats(self) -> LinkingStats:
        db = self._require(self._db)
        async with db.get_async_session() as session:
            return await UserRepository(session).linking_stats()

    # Sync

    async def sync_all_users(self, timeframe: Timeframe | str | None = None) -> SyncResult:
        tf = Timeframe.parse(timeframe) if timeframe else self._settings.wager.default_sync_timeframe
        return await self._require(self._orchestrator).sync_all_users(tf)

    async def sync_user(
        self, external_id: str, timeframe: Timeframe | str | None = None
    ) -> LeaderboardEntry | None:
        tf = Timeframe.parse(timeframe) if timeframe else self._settings.wager.default_sync_timeframe
        return await self._require(self._orchestrator).sync_user(external_id, tf)

    async def get_latest_sync_status(
        self, timeframe: Timeframe | str | None = None
    ) -> SyncLogDTO | None:
        tf = Timeframe.parse(timeframe) if timeframe else None
        return await self._require(self._orchestrator).get_latest_sync_status(tf)

    async def cleanup_old_sync_logs(self, older_than_days: int | None = None) -> int:
        days = older_than_days or self._settings.wager.sync_log_retention_days
        return await self._require(self._orchestrator).cleanup_old_sync_logs(days)

    # Circuit breaker

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        return self._require(self._gateway).breaker.snapshot().to_dict()

    def reset_circuit_breaker(self) -> dict[str, Any]:
        breaker = self._require(self._gateway).breaker
        breaker.reset()
        logger.info("Circuit breaker '%s' reset manually", breaker.name)
        return breaker.snapshot().to_dict()

    # Periodic sync

    async def _run_sync_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.wager.sync_interval_seconds
        while not self._stop_event.is_set():
            try:
                result = await self.sync_all_users()
                await self.cleanup_old_sync_logs()
                self._stats.syncs_completed += 1
                self._stats.last_sync_at = datetime.now(UTC)
                if result.errors:
                    logger.warning("Scheduled sync finished with %d error(s)", result.errors)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._stats.syncs_failed += 1
                self._stats.last_error = str(e)
                logger.error("Scheduled sync failed: %s", e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass

    async def run(self) -> None:
        """Start the engine and sync periodically until stopped.

        Example:
            ```python
            engine = WagerEngine()
            try:
                await engine.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()
        self._sync_task = asyncio.create_task(self._run_sync_loop())

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> WagerEngine:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
