"""Circuit breaker for the affiliate leaderboard API.

The breaker is a plain object owned by the gateway that uses it, so its
state is explicit and can be inspected or reset by an administrator.

States:
- CLOSED: calls pass through; consecutive failures are counted.
- OPEN: after ``failure_threshold`` consecutive failures every call fails
  fast with :class:`ExternalAPIUnavailableError` and a ``retry_after``.

There is no single-trial half-open state: once the cooldown has elapsed the
breaker resets itself completely and the next call goes to the network.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, ParamSpec, TypeVar

from vip_wager_tracker.errors import ExternalAPIUnavailableError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_COOLDOWN_SECONDS = 120.0


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time view of a breaker."""

    name: str
    failures: int
    last_failure_at: float | None
    open: bool
    retry_after: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "failures": self.failures,
            "open": self.open,
            "retry_after": self.retry_after,
        }


class CircuitBreaker:
    """Consecutive-failure circuit breaker with a fixed cooldown."""

    def __init__(
        self,
        *,
        name: str = "external_api",
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the breaker.

        Args:
            name: Name used in logs and status reports.
            failure_threshold: Consecutive failures that open the circuit.
            cooldown_seconds: How long the circuit stays open.
            clock: Monotonic clock, injectable for tests.
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self._failure_threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock

        self._failures = 0
        self._last_failure_at: float | None = None
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def failures(self) -> int:
        return self._failures

    def retry_after(self) -> float | None:
        """Seconds until the cooldown elapses, or None if closed."""
        if not self._open or self._last_failure_at is None:
            return None
        remaining = self._cooldown - (self._clock() - self._last_failure_at)
        return float(max(0, math.ceil(remaining)))

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            name=self.name,
            failures=self._failures,
            last_failure_at=self._last_failure_at,
            open=self._open,
            retry_after=self.retry_after(),
        )

    def before_call(self) -> None:
        """Gate a call.

        Raises:
            ExternalAPIUnavailableError: If the circuit is open and still
                cooling down. No network call must be made in that case.
        """
        last_failure_at = self._last_failure_at
        if not self._open or last_failure_at is None:
            return
        elapsed = self._clock() - last_failure_at
        if elapsed < self._cooldown:
            retry_after = float(math.ceil(self._cooldown - elapsed))
            raise ExternalAPIUnavailableError(
                f"External API temporarily unavailable (circuit '{self.name}' open), "
                f"retry after {retry_after:.0f}s",
                retry_after=retry_after,
            )
        logger.info("Circuit breaker '%s' cooldown elapsed; resetting", self.name)
        self.reset()

    def record_success(self) -> None:
        self._failures = 0

    def record_failure(self) -> None:
        self._failures += 1
        self._last_failure_at = self._clock()
        if self._failures >= self._failure_threshold and not self._open:
            self._open = True
            logger.warning(
                "Circuit breaker '%s' opened after %d consecutive failures (cooldown %.0fs)",
                self.name,
                self._failures,
                self._cooldown,
            )

    def reset(self) -> None:
        """Close the circuit and forget previous failures."""
        self._open = False
        self._failures = 0
        self._last_failure_at = None

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Run ``func`` under breaker protection.

        Any exception raised by ``func`` counts as a failure and is re-raised.
        """
        self.before_call()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result
