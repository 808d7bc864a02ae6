"""Tests for the external API circuit breaker."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from vip_wager_tracker.errors import ExternalAPIUnavailableError
from vip_wager_tracker.ingestor.circuit_breaker import CircuitBreaker


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(name="test", failure_threshold=5, cooldown_seconds=120, clock=clock)


class TestCircuitBreakerInit:
    def test_defaults(self) -> None:
        breaker = CircuitBreaker()
        assert breaker.name == "external_api"
        assert breaker.is_open is False
        assert breaker.failures == 0
        assert breaker.retry_after() is None

    def test_rejects_zero_threshold(self) -> None:
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)


class TestCircuitBreakerTransitions:
    """Open/close behaviour."""

    def test_opens_after_threshold(self, breaker: CircuitBreaker) -> None:
        for _ in range(4):
            breaker.record_failure()
        assert breaker.is_open is False

        breaker.record_failure()
        assert breaker.is_open is True
        assert breaker.failures == 5

    def test_success_resets_failure_count(self, breaker: CircuitBreaker) -> None:
        for _ in range(4):
            breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.failures == 1
        assert breaker.is_open is False

    def test_closed_circuit_gate_allows_calls(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        breaker.before_call()
        for _ in range(4):
            breaker.record_failure()

        breaker.before_call()

        assert breaker.is_open is False
        assert breaker.failures == 4

    def test_open_circuit_fails_fast(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        for _ in range(5):
            breaker.record_failure()
        clock.advance(30)

        with pytest.raises(ExternalAPIUnavailableError) as exc_info:
            breaker.before_call()

        assert exc_info.value.retry_after == 90
        assert exc_info.value.http_status == 503

    def test_cooldown_elapsed_resets(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        for _ in range(5):
            breaker.record_failure()
        clock.advance(120)

        breaker.before_call()

        assert breaker.is_open is False
        assert breaker.failures == 0

    def test_manual_reset(self, breaker: CircuitBreaker) -> None:
        for _ in range(5):
            breaker.record_failure()
        breaker.reset()

        state = breaker.snapshot()
        assert state.open is False
        assert state.failures == 0
        assert state.retry_after is None

    def test_snapshot_reports_retry_after(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        for _ in range(5):
            breaker.record_failure()
        clock.advance(20.5)

        assert breaker.snapshot().to_dict() == {
            "name": "test",
            "failures": 5,
            "open": True,
            "retry_after": 100.0,
        }


class TestCircuitBreakerCall:
    """Tests for CircuitBreaker.call."""

    @pytest.mark.asyncio
    async def test_call_success(self, breaker: CircuitBreaker) -> None:
        func = AsyncMock(return_value="ok")

        assert await breaker.call(func, 1, key="v") == "ok"
        func.assert_awaited_once_with(1, key="v")
        assert breaker.failures == 0

    @pytest.mark.asyncio
    async def test_call_failure_counts_and_reraises(self, breaker: CircuitBreaker) -> None:
        func = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await breaker.call(func)
        assert breaker.failures == 1

    @pytest.mark.asyncio
    async def test_open_circuit_skips_call(self, breaker: CircuitBreaker) -> None:
        failing = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(5):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        trial_call = AsyncMock(return_value="ok")
        with pytest.raises(ExternalAPIUnavailableError):
            await breaker.call(trial_call)
        trial_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_call_after_cooldown_reaches_func(
        self, breaker: CircuitBreaker, clock: FakeClock
    ) -> None:
        failing = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(5):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)
        clock.advance(121)

        trial_call = AsyncMock(return_value="ok")
        assert await breaker.call(trial_call) == "ok"
        trial_call.assert_awaited_once()
        assert breaker.is_open is False
