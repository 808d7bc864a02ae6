"""Tests for the sync orchestrator."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from vip_wager_tracker.enums import ApiStatus, SyncType, Timeframe
from vip_wager_tracker.errors import (
    ExternalAPIError,
    ExternalAPIUnavailableError,
    PartialSyncFailure,
    ValidationError,
)
from vip_wager_tracker.ingestor.circuit_breaker import CircuitBreaker
from vip_wager_tracker.ingestor.gateway import ExternalSyncGateway
from vip_wager_tracker.storage.repos import (
    ComputedWagerStatsDTO,
    ComputedWagerStatsRepository,
    RawWagerStatsRepository,
    SyncLogRepository,
    UserRepository,
)
from vip_wager_tracker.sync.orchestrator import SyncOrchestrator
from vip_wager_tracker.wagers.ledger import AdjustmentLedger, CreateAdjustmentInput

API_URL = "https://api.example.test/leaderboard"


def _record(uid: str, all_time: object = 100, **extra: object) -> dict:
    wagered = {"today": 1, "this_week": 2, "this_month": 3, "all_time": all_time}
    wagered.update(extra)
    return {"uid": uid, "name": f"player {uid}", "wagered": wagered}


def paged_handler(pages: list[list[dict]]) -> Callable[[httpx.Request], httpx.Response]:
    """Serve ``pages`` as a paginated leaderboard, honouring ``page``."""

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": pages[page - 1],
                "metadata": {"totalPages": len(pages), "currentPage": page},
            },
        )

    return handler


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def make_orchestrator(db, computer, ranking, sleep):
    def _make(handler, *, breaker: CircuitBreaker | None = None) -> SyncOrchestrator:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gateway = ExternalSyncGateway(base_url=API_URL, api_token="t", http_client=client, breaker=breaker)
        return SyncOrchestrator(
            db,
            gateway,
            computer,
            ranking,
            page_size=2,
            single_user_page_size=1000,
            page_delay_seconds=0.1,
            sleep=sleep,
        )

    return _make


async def _latest_log(db):
    async with db.get_async_session() as session:
        return await SyncLogRepository(session).latest()


class TestSyncAllUsers:
    """Tests for SyncOrchestrator.sync_all_users."""

    @pytest.mark.asyncio
    async def test_full_sync_pages_and_ranks(self, make_orchestrator, db, sleep: AsyncMock) -> None:
        orchestrator = make_orchestrator(
            paged_handler([[_record("a", 300), _record("b", 100)], [_record("c", 200)]])
        )

        result = await orchestrator.sync_all_users(Timeframe.ALL_TIME)

        assert result.api_status == ApiStatus.SUCCESS
        assert result.sync_type == SyncType.FULL
        assert result.pages_fetched == 2
        assert result.users_processed == 3
        assert result.users_added == 3
        assert result.users_updated == 0
        assert result.errors == 0
        assert result.rankings == {Timeframe.ALL_TIME: 3}
        sleep.assert_awaited_once_with(0.1)

        async with db.get_async_session() as session:
            user = await UserRepository(session).get_by_external_id("c")
            assert user.is_placeholder is True
            assert user.username == "player c"
            stats = await ComputedWagerStatsRepository(session).get(user.id)
        assert stats.final_all_time == Decimal(200)
        assert stats.all_time_rank == 2

        log = await _latest_log(db)
        assert log.id == result.log_id
        assert log.api_status == "success"
        assert log.users_processed == 3
        assert log.completed_at is not None
        assert log.api_response_time_ms is not None

    @pytest.mark.asyncio
    async def test_string_total_pages_fetches_every_page(self, make_orchestrator) -> None:
        pages = [[_record("a")], [_record("b")], [_record("c")]]

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            return httpx.Response(
                200,
                json={"success": True, "data": pages[page - 1], "metadata": {"totalPages": "3"}},
            )

        result = await make_orchestrator(handler).sync_all_users(Timeframe.ALL_TIME)

        assert result.pages_fetched == 3
        assert result.users_processed == 3
        assert result.api_status == ApiStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_invalid_total_pages_fails_the_run(self, make_orchestrator, db) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"success": True, "data": [_record("a")], "metadata": {"totalPages": "many"}},
            )

        with pytest.raises(ExternalAPIError):
            await make_orchestrator(handler).sync_all_users(Timeframe.ALL_TIME)

        log = await _latest_log(db)
        assert log.api_status == "failure"

    @pytest.mark.asyncio
    async def test_second_sync_updates(self, make_orchestrator, db) -> None:
        await make_orchestrator(paged_handler([[_record("a", 100)]])).sync_all_users(Timeframe.ALL_TIME)

        result = await make_orchestrator(paged_handler([[_record("a", 150)]])).sync_all_users(
            Timeframe.ALL_TIME
        )

        assert result.users_added == 0
        assert result.users_updated == 1
        async with db.get_async_session() as session:
            user = await UserRepository(session).get_by_external_id("a")
            raw = await RawWagerStatsRepository(session).get(user.id)
        assert raw.all_time == Decimal(150)

    @pytest.mark.asyncio
    async def test_unchanged_resync_is_idempotent(self, make_orchestrator, db) -> None:
        snapshot = [[_record("a", 300, today=7), _record("b", 50)]]
        await make_orchestrator(paged_handler(snapshot)).sync_all_users(Timeframe.ALL_TIME)

        async def computed() -> ComputedWagerStatsDTO:
            async with db.get_async_session() as session:
                user = await UserRepository(session).get_by_external_id("a")
                return await ComputedWagerStatsRepository(session).get(user.id)

        first = await computed()
        await make_orchestrator(paged_handler(snapshot)).sync_all_users(Timeframe.ALL_TIME)
        second = await computed()

        for tf in Timeframe:
            assert second.final(tf) == first.final(tf)
            assert second.rank(tf) == first.rank(tf)
        assert second.version == first.version + 1
        assert second.computed_at >= first.computed_at

    @pytest.mark.asyncio
    async def test_resync_keeps_frozen_set_delta(
        self, make_orchestrator, ledger: AdjustmentLedger, db
    ) -> None:
        await make_orchestrator(paged_handler([[_record("a", 1000)]])).sync_all_users(Timeframe.ALL_TIME)
        await ledger.create_adjustment(
            CreateAdjustmentInput(
                external_id="a",
                adjustment_type="set",
                applied_to_timeframe="all_time",
                amount=500,
                reason="cap",
            ),
            admin_id="admin-1",
        )

        await make_orchestrator(paged_handler([[_record("a", 1200)]])).sync_all_users(Timeframe.ALL_TIME)

        async with db.get_async_session() as session:
            user = await UserRepository(session).get_by_external_id("a")
            stats = await ComputedWagerStatsRepository(session).get(user.id)
        assert stats.raw_all_time == Decimal(1200)
        assert stats.total_all_time_adjustment == Decimal(-500)
        assert stats.final_all_time == Decimal(700)

    @pytest.mark.asyncio
    async def test_undecodable_records_are_counted(self, make_orchestrator, db) -> None:
        orchestrator = make_orchestrator(
            paged_handler([[_record("a"), {"name": "no id"}], [_record("b", all_time="bad")]])
        )

        result = await orchestrator.sync_all_users(Timeframe.ALL_TIME)

        assert result.api_status == ApiStatus.PARTIAL
        assert result.users_processed == 1
        assert result.errors == 2
        assert {d["page"] for d in result.error_details} == {1, 2}
        async with db.get_async_session() as session:
            assert await UserRepository(session).get_by_external_id("b") is None

        with pytest.raises(PartialSyncFailure) as exc_info:
            result.raise_for_errors()
        assert len(exc_info.value.errors) == 2

        log = await _latest_log(db)
        assert log.api_status == "partial"
        assert len(json.loads(log.error_details)) == 2

    @pytest.mark.asyncio
    async def test_entry_processing_error_continues(self, make_orchestrator, monkeypatch) -> None:
        orchestrator = make_orchestrator(paged_handler([[_record("a"), _record("boom"), _record("c")]]))
        original = orchestrator._process_entry

        async def flaky(entry, *, invalidate=False):
            if entry.external_id == "boom":
                raise RuntimeError("db hiccup")
            return await original(entry, invalidate=invalidate)

        monkeypatch.setattr(orchestrator, "_process_entry", flaky)

        result = await orchestrator.sync_all_users(Timeframe.ALL_TIME)

        assert result.users_processed == 2
        assert result.errors == 1
        assert result.error_details[0]["external_id"] == "boom"
        assert result.api_status == ApiStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_fetch_failure_marks_log_failed(self, make_orchestrator, db) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return paged_handler([[_record("a")], [_record("b")]])(request)
            return httpx.Response(503)

        orchestrator = make_orchestrator(handler)

        with pytest.raises(ExternalAPIUnavailableError):
            await orchestrator.sync_all_users(Timeframe.ALL_TIME)

        log = await _latest_log(db)
        assert log.api_status == "failure"
        assert log.users_processed == 1
        assert log.errors == 1
        assert log.completed_at is not None

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, make_orchestrator, db) -> None:
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=120)
        breaker.record_failure()
        handler_calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal handler_calls
            handler_calls += 1
            return httpx.Response(200, json=[])

        orchestrator = make_orchestrator(handler, breaker=breaker)

        with pytest.raises(ExternalAPIUnavailableError) as exc_info:
            await orchestrator.sync_all_users()
        assert exc_info.value.retry_after is not None
        assert handler_calls == 0
        assert (await _latest_log(db)).api_status == "failure"


class TestSyncUser:
    """Tests for SyncOrchestrator.sync_user."""

    @pytest.mark.asyncio
    async def test_sync_user_found(self, make_orchestrator, db, mock_redis) -> None:
        seen: list[httpx.Request] = []
        base = paged_handler([[_record("x", 10), _record("target", 42)]])

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return base(request)

        mock_redis.store["leaderboard:all_time:100:0"] = "{}"
        orchestrator = make_orchestrator(handler)

        entry = await orchestrator.sync_user("target", Timeframe.ALL_TIME)

        assert entry is not None
        assert entry.wagered.all_time == Decimal(42)
        assert seen[0].url.params["limit"] == "1000"
        assert seen[0].url.params["page"] == "1"
        assert "leaderboard:all_time:100:0" not in mock_redis.store

        async with db.get_async_session() as session:
            assert await UserRepository(session).get_by_external_id("x") is None
            user = await UserRepository(session).get_by_external_id("target")
        assert user is not None

        log = await _latest_log(db)
        assert log.sync_type == "user_specific"
        assert log.users_added == 1

    @pytest.mark.asyncio
    async def test_sync_user_not_on_page(self, make_orchestrator, db) -> None:
        orchestrator = make_orchestrator(paged_handler([[_record("x")]]))

        assert await orchestrator.sync_user("missing") is None
        log = await _latest_log(db)
        assert log.api_status == "success"
        assert log.users_processed == 0

    @pytest.mark.asyncio
    async def test_sync_user_undecodable_target_is_partial(self, make_orchestrator, db) -> None:
        bad = {"uid": "target", "wagered": {"today": "abc", "this_week": 1, "this_month": 1, "all_time": 1}}
        orchestrator = make_orchestrator(paged_handler([[_record("x"), bad]]))

        assert await orchestrator.sync_user("target", Timeframe.ALL_TIME) is None

        log = await _latest_log(db)
        assert log.api_status == "partial"
        assert log.errors == 1
        assert log.users_processed == 0
        details = json.loads(log.error_details)
        assert details[0]["external_id"] == "target"
        async with db.get_async_session() as session:
            assert await UserRepository(session).get_by_external_id("target") is None

    @pytest.mark.asyncio
    async def test_sync_user_counts_other_undecodable_records(self, make_orchestrator, db) -> None:
        orchestrator = make_orchestrator(paged_handler([[{"name": "no id"}, _record("target", 9)]]))

        entry = await orchestrator.sync_user("target", Timeframe.ALL_TIME)

        assert entry is not None
        log = await _latest_log(db)
        assert log.api_status == "partial"
        assert log.errors == 1
        assert log.users_processed == 1

    @pytest.mark.asyncio
    async def test_sync_user_requires_id(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(paged_handler([[]]))
        with pytest.raises(ValidationError):
            await orchestrator.sync_user("  ")


class TestSyncLogs:
    """Latest status and retention cleanup."""

    @pytest.mark.asyncio
    async def test_latest_sync_status_by_timeframe(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(paged_handler([[_record("a")]]))
        await orchestrator.sync_all_users(Timeframe.DAILY)

        assert (await orchestrator.get_latest_sync_status(Timeframe.DAILY)).timeframe == "daily"
        assert await orchestrator.get_latest_sync_status(Timeframe.WEEKLY) is None
        assert await orchestrator.get_latest_sync_status() is not None

    @pytest.mark.asyncio
    async def test_cleanup_old_sync_logs(self, make_orchestrator, db) -> None:
        async with db.get_async_session() as session:
            repo = SyncLogRepository(session)
            await repo.create(
                sync_type="full", timeframe="monthly", started_at=datetime.now(UTC) - timedelta(days=45)
            )
            await repo.create(sync_type="full", timeframe="monthly", started_at=datetime.now(UTC))
        orchestrator = make_orchestrator(paged_handler([[]]))

        assert await orchestrator.cleanup_old_sync_logs(30) == 1
        with pytest.raises(ValidationError):
            await orchestrator.cleanup_old_sync_logs(0)
