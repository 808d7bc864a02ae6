"""Sync orchestration: external leaderboard -> raw stats -> computed stats.

A full sync pages serially through the external API with a fixed delay
between pages, processes every decoded entry independently, records a sync
log and finally recalculates rankings for the synced timeframe.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from vip_wager_tracker.enums import ApiStatus, SyncType, Timeframe
from vip_wager_tracker.errors import PartialSyncFailure, ValidationError
from vip_wager_tracker.storage.repos import (
    RawWagerStatsDTO,
    RawWagerStatsRepository,
    SyncLogDTO,
    SyncLogRepository,
    UserRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vip_wager_tracker.ingestor.gateway import ExternalSyncGateway
    from vip_wager_tracker.ingestor.models import LeaderboardEntry
    from vip_wager_tracker.storage.database import DatabaseManager
    from vip_wager_tracker.wagers.computer import StatsComputer
    from vip_wager_tracker.wagers.ranking import RankingEngine

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
DEFAULT_SINGLE_USER_PAGE_SIZE = 1000
DEFAULT_PAGE_DELAY_SECONDS = 0.1
MAX_ERROR_DETAILS = 100


@dataclass
class SyncResult:
    """Summary of one sync run (mirrors the persisted sync log)."""

    log_id: str
    sync_type: SyncType
    timeframe: Timeframe
    api_status: ApiStatus
    users_processed: int = 0
    users_updated: int = 0
    users_added: int = 0
    errors: int = 0
    pages_fetched: int = 0
    duration_seconds: float = 0.0
    error_details: list[dict[str, Any]] = field(default_factory=list)
    rankings: dict[Timeframe, int] = field(default_factory=dict)

    def raise_for_errors(self) -> None:
        """Raise :class:`PartialSyncFailure` if any entry failed."""
        if self.errors:
            raise PartialSyncFailure(
                f"Sync {self.log_id} completed with {self.errors} error(s)",
                errors=self.error_details,
            )


@dataclass
class _Counters:
    processed: int = 0
    updated: int = 0
    added: int = 0
    errors: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def record_error(self, detail: dict[str, Any]) -> None:
        self.errors += 1
        if len(self.details) < MAX_ERROR_DETAILS:
            self.details.append(detail)


class SyncOrchestrator:
    """Drives full and single-user syncs."""

    def __init__(
        self,
        db: DatabaseManager,
        gateway: ExternalSyncGateway,
        computer: StatsComputer,
        ranking: RankingEngine,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        single_user_page_size: int = DEFAULT_SINGLE_USER_PAGE_SIZE,
        page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._db = db
        self._gateway = gateway
        self._computer = computer
        self._ranking = ranking
        self._page_size = page_size
        self._single_user_page_size = single_user_page_size
        self._page_delay = page_delay_seconds
        self._sleep = sleep

    async def sync_all_users(self, timeframe: Timeframe = Timeframe.MONTHLY) -> SyncResult:
        """Sync every user on the external leaderboard.

        Per-entry failures (decode or processing) are counted and logged;
        the run continues. A failed page fetch aborts the run, marks the log
        ``failure`` and re-raises.
        """
        started_at = datetime.now(UTC)
        started = time.monotonic()
        log = await self._create_log(SyncType.FULL, timeframe, started_at)
        counters = _Counters()
        pages_fetched = 0
        logger.info("Full sync %s started (timeframe=%s)", log.id, timeframe.value)

        page = 1
        while True:
            try:
                result = await self._gateway.fetch_page(timeframe, limit=self._page_size, page=page)
            except Exception as e:
                counters.record_error({"page": page, "error": str(e), "type": type(e).__name__})
                await self._complete_log(
                    log, counters, ApiStatus.FAILURE, time.monotonic() - started
                )
                logger.error("Full sync %s failed fetching page %d: %s", log.id, page, e)
                raise
            pages_fetched += 1

            for failure in result.failures:
                logger.warning(
                    "Skipping undecodable record %d on page %d: %s", failure.index, page, failure.reason
                )
                counters.record_error({"page": page, **failure.to_dict()})

            for entry in result.entries:
                try:
                    added = await self._process_entry(entry)
                except Exception as e:
                    logger.exception("Error processing external user %s", entry.external_id)
                    counters.record_error(
                        {"page": page, "external_id": entry.external_id, "error": str(e)}
                    )
                    continue
                counters.processed += 1
                if added:
                    counters.added += 1
                else:
                    counters.updated += 1

            if page >= result.total_pages:
                break
            page += 1
            await self._sleep(self._page_delay)

        api_status = ApiStatus.PARTIAL if counters.errors else ApiStatus.SUCCESS
        duration = time.monotonic() - started
        await self._complete_log(log, counters, api_status, duration)
        logger.info(
            "Full sync %s finished in %.2fs: pages=%d processed=%d updated=%d added=%d errors=%d",
            log.id,
            duration,
            pages_fetched,
            counters.processed,
            counters.updated,
            counters.added,
            counters.errors,
        )

        rankings = await self._ranking.recalculate_all_rankings(timeframe)
        return SyncResult(
            log_id=log.id,
            sync_type=SyncType.FULL,
            timeframe=timeframe,
            api_status=api_status,
            users_processed=counters.processed,
            users_updated=counters.updated,
            users_added=counters.added,
            errors=counters.errors,
            pages_fetched=pages_fetched,
            duration_seconds=duration,
            error_details=counters.details,
            rankings=rankings,
        )

    async def sync_user(
        self, external_id: str, timeframe: Timeframe = Timeframe.MONTHLY
    ) -> LeaderboardEntry | None:
        """Sync one user from a single large page.

        Returns:
            The external entry, or None if the user is not on that page or
            their record could not be decoded. Undecodable records on the
            page are counted as errors and make the log ``partial``.
        """
        external_id = str(external_id).strip()
        if not external_id:
            raise ValidationError("external_id is required")

        started_at = datetime.now(UTC)
        started = time.monotonic()
        log = await self._create_log(SyncType.USER_SPECIFIC, timeframe, started_at)
        counters = _Counters()

        try:
            result = await self._gateway.fetch_page(
                timeframe, limit=self._single_user_page_size, page=1
            )
        except Exception as e:
            counters.record_error({"external_id": external_id, "error": str(e), "type": type(e).__name__})
            await self._complete_log(log, counters, ApiStatus.FAILURE, time.monotonic() - started)
            raise

        for failure in result.failures:
            logger.warning("Skipping undecodable record %d: %s", failure.index, failure.reason)
            counters.record_error({"page": 1, **failure.to_dict()})

        entry = next((e for e in result.entries if e.external_id == external_id), None)
        if entry is None:
            api_status = ApiStatus.PARTIAL if counters.errors else ApiStatus.SUCCESS
            await self._complete_log(log, counters, api_status, time.monotonic() - started)
            if any(f.external_id == external_id for f in result.failures):
                logger.warning(
                    "External user %s is on the %s leaderboard but could not be decoded",
                    external_id,
                    timeframe.value,
                )
            else:
                logger.info("External user %s not found in %s leaderboard", external_id, timeframe.value)
            return None

        try:
            added = await self._process_entry(entry, invalidate=True)
        except Exception as e:
            counters.record_error({"external_id": external_id, "error": str(e)})
            await self._complete_log(log, counters, ApiStatus.PARTIAL, time.monotonic() - started)
            raise

        counters.processed = 1
        if added:
            counters.added = 1
        else:
            counters.updated = 1
        api_status = ApiStatus.PARTIAL if counters.errors else ApiStatus.SUCCESS
        await self._complete_log(log, counters, api_status, time.monotonic() - started)
        return entry

    async def get_latest_sync_status(self, timeframe: Timeframe | None = None) -> SyncLogDTO | None:
        async with self._db.get_async_session() as session:
            return await SyncLogRepository(session).latest(
                timeframe=timeframe.value if timeframe is not None else None
            )

    async def cleanup_old_sync_logs(self, older_than_days: int = 30) -> int:
        """Delete sync logs started more than ``older_than_days`` ago."""
        if older_than_days < 1:
            raise ValidationError("older_than_days must be >= 1")
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days)
        async with self._db.get_async_session() as session:
            deleted = await SyncLogRepository(session).delete_older_than(cutoff)
        logger.info("Deleted %d sync logs older than %d days", deleted, older_than_days)
        return deleted

    async def _process_entry(self, entry: LeaderboardEntry, *, invalidate: bool = False) -> bool:
        """Upsert raw stats for an entry and recompute.

        Returns:
            True if a placeholder user had to be created.
        """
        added = False
        async with self._db.get_async_session() as session:
            users = UserRepository(session)
            user = await users.get_by_external_id(entry.external_id)
            if user is None:
                user = await users.create_placeholder(
                    external_id=entry.external_id,
                    username=entry.username or f"user_{entry.external_id}",
                )
                added = True

        raw = RawWagerStatsDTO(
            user_id=user.id,
            external_id=entry.external_id,
            username=entry.username or user.username,
            daily=entry.wagered.daily,
            weekly=entry.wagered.weekly,
            monthly=entry.wagered.monthly,
            all_time=entry.wagered.all_time,
            last_sync_at=datetime.now(UTC),
        )

        async def upsert_raw(session: AsyncSession) -> RawWagerStatsDTO:
            return await RawWagerStatsRepository(session).upsert(raw)

        await self._computer.apply(user.id, upsert_raw, invalidate=invalidate)
        return added

    async def _create_log(
        self, sync_type: SyncType, timeframe: Timeframe, started_at: datetime
    ) -> SyncLogDTO:
        async with self._db.get_async_session() as session:
            return await SyncLogRepository(session).create(
                sync_type=sync_type.value, timeframe=timeframe.value, started_at=started_at
            )

    async def _complete_log(
        self,
        log: SyncLogDTO,
        counters: _Counters,
        api_status: ApiStatus,
        duration_seconds: float,
    ) -> None:
        async with self._db.get_async_session() as session:
            await SyncLogRepository(session).complete(
                log.id,
                users_processed=counters.processed,
                users_updated=counters.updated,
                users_added=counters.added,
                errors=counters.errors,
                api_status=api_status.value,
                api_response_time_ms=self._gateway.last_response_time_ms,
                error_details=json.dumps(counters.details) if counters.details else None,
                completed_at=datetime.now(UTC),
                duration_seconds=round(duration_seconds, 3),
            )
