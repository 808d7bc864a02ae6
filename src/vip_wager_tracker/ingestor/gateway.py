"""HTTP gateway to the affiliate leaderboard API."""

from __future__ import annotations

import asyncio
import logging
import time
from types import TracebackType

import httpx

from vip_wager_tracker.config import DEFAULT_GOATED_API_URL
from vip_wager_tracker.enums import Timeframe
from vip_wager_tracker.errors import (
    ExternalAPIError,
    ExternalAPITimeoutError,
    ExternalAPIUnavailableError,
)
from vip_wager_tracker.ingestor.circuit_breaker import CircuitBreaker
from vip_wager_tracker.ingestor.models import LeaderboardPage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_USER_AGENT = "vip-wager-tracker/0.1"


class ExternalSyncGateway:
    """Fetches leaderboard pages under a timeout and a circuit breaker.

    Example:
        >>> async with ExternalSyncGateway(api_token="...") as gateway:
        ...     page = await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)
        ...     print(page.total_pages, len(page.entries))
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_GOATED_API_URL,
        api_token: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        breaker: CircuitBreaker | None = None,
        http_client: httpx.AsyncClient | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        """Initialize the gateway.

        Args:
            base_url: Leaderboard endpoint.
            api_token: Bearer token.
            timeout_seconds: Upper bound for one request, body included.
            breaker: Circuit breaker guarding the endpoint. A fresh one is
                created when omitted.
            http_client: Optional shared client; the gateway only closes
                clients it created itself.
            user_agent: User-Agent header value.
        """
        self._base_url = base_url
        self._api_token = api_token
        self._timeout = timeout_seconds
        self._breaker = breaker or CircuitBreaker()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._user_agent = user_agent
        self.last_response_time_ms: int | None = None

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def __aenter__(self) -> ExternalSyncGateway:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_page(self, timeframe: Timeframe, *, limit: int, page: int) -> LeaderboardPage:
        """Fetch and decode one leaderboard page.

        Raises:
            ExternalAPIUnavailableError: Circuit open, 5xx or transport error.
            ExternalAPITimeoutError: The request exceeded the timeout.
            ExternalAPIError: 4xx or an unusable response body.
        """
        return await self._breaker.call(self._fetch_page, timeframe, limit, page)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
        }
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def _fetch_page(self, timeframe: Timeframe, limit: int, page: int) -> LeaderboardPage:
        params = {"timeframe": timeframe.value, "limit": limit, "page": page}
        started = time.monotonic()
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.get(
                    self._base_url,
                    params=params,
                    headers=self._headers(),
                    timeout=self._timeout,
                )
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.warning("Leaderboard request timed out after %.0fs (page %d)", self._timeout, page)
            raise ExternalAPITimeoutError(
                f"External API request timed out after {self._timeout:.0f} seconds"
            ) from e
        except httpx.RequestError as e:
            logger.warning("Leaderboard request failed (page %d): %s", page, e)
            raise ExternalAPIUnavailableError(f"External API request failed: {e}") from e

        self.last_response_time_ms = int((time.monotonic() - started) * 1000)
        logger.debug(
            "GET %s timeframe=%s page=%d -> %d in %dms",
            self._base_url,
            timeframe.value,
            page,
            response.status_code,
            self.last_response_time_ms,
        )

        if response.status_code >= 500:
            raise ExternalAPIUnavailableError(
                f"External API error: {response.status_code} {response.reason_phrase}"
            )
        if response.status_code >= 400:
            raise ExternalAPIError(
                f"External API request failed: {response.status_code} {response.reason_phrase}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalAPIError(f"External API returned invalid JSON for page {page}") from e

        return LeaderboardPage.from_response(payload, page=page)
