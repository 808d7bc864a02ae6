"""Tests for the leaderboard HTTP gateway."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from vip_wager_tracker.enums import Timeframe
from vip_wager_tracker.errors import (
    ExternalAPIError,
    ExternalAPITimeoutError,
    ExternalAPIUnavailableError,
)
from vip_wager_tracker.ingestor.circuit_breaker import CircuitBreaker
from vip_wager_tracker.ingestor.gateway import ExternalSyncGateway

API_URL = "https://api.example.test/leaderboard"

Handler = Callable[[httpx.Request], httpx.Response]


def _payload(*uids: str, total_pages: int = 1) -> dict:
    return {
        "success": True,
        "data": [
            {"uid": uid, "name": uid.upper(), "wagered": {"today": 1, "this_week": 2, "this_month": 3, "all_time": 4}}
            for uid in uids
        ],
        "metadata": {"totalPages": total_pages, "totalUsers": len(uids)},
    }


def make_gateway(handler: Handler, *, breaker: CircuitBreaker | None = None) -> ExternalSyncGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ExternalSyncGateway(
        base_url=API_URL,
        api_token="secret-token",
        breaker=breaker or CircuitBreaker(failure_threshold=5, cooldown_seconds=120),
        http_client=client,
    )


class TestFetchPage:
    """Tests for ExternalSyncGateway.fetch_page."""

    @pytest.mark.asyncio
    async def test_fetch_page_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_payload("a", "b", total_pages=3))

        gateway = make_gateway(handler)
        page = await gateway.fetch_page(Timeframe.WEEKLY, limit=50, page=2)

        assert page.page == 2
        assert page.total_pages == 3
        assert [e.external_id for e in page.entries] == ["a", "b"]
        assert gateway.last_response_time_ms is not None

        request = seen[0]
        assert request.url.params["timeframe"] == "weekly"
        assert request.url.params["limit"] == "50"
        assert request.url.params["page"] == "2"
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_no_token_omits_authorization(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_payload("a"))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gateway = ExternalSyncGateway(base_url=API_URL, http_client=client)
        await gateway.fetch_page(Timeframe.DAILY, limit=10, page=1)

        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self) -> None:
        gateway = make_gateway(lambda request: httpx.Response(503))

        with pytest.raises(ExternalAPIUnavailableError):
            await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)
        assert gateway.breaker.failures == 1

    @pytest.mark.asyncio
    async def test_client_error_is_external_api_error(self) -> None:
        gateway = make_gateway(lambda request: httpx.Response(401))

        with pytest.raises(ExternalAPIError) as exc_info:
            await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)
        assert not isinstance(exc_info.value, ExternalAPIUnavailableError)
        assert exc_info.value.http_status == 502

    @pytest.mark.asyncio
    async def test_invalid_json_is_external_api_error(self) -> None:
        gateway = make_gateway(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(ExternalAPIError):
            await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        gateway = make_gateway(handler)

        with pytest.raises(ExternalAPITimeoutError) as exc_info:
            await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)
        assert exc_info.value.http_status == 504

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(handler)

        with pytest.raises(ExternalAPIUnavailableError):
            await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)


class TestGatewayCircuitBreaker:
    """The gateway stops calling the network once the circuit opens."""

    @pytest.mark.asyncio
    async def test_open_circuit_makes_no_request(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        gateway = make_gateway(handler)
        for _ in range(5):
            with pytest.raises(ExternalAPIUnavailableError):
                await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)
        assert calls == 5
        assert gateway.breaker.is_open is True

        with pytest.raises(ExternalAPIUnavailableError) as exc_info:
            await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)
        assert calls == 5
        assert exc_info.value.retry_after is not None

    @pytest.mark.asyncio
    async def test_success_after_reset(self) -> None:
        responses = iter([httpx.Response(500)] * 5 + [httpx.Response(200, json=_payload("a"))])
        gateway = make_gateway(lambda request: next(responses))

        for _ in range(5):
            with pytest.raises(ExternalAPIUnavailableError):
                await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)
        gateway.breaker.reset()

        page = await gateway.fetch_page(Timeframe.MONTHLY, limit=50, page=1)
        assert len(page.entries) == 1


class TestGatewayLifecycle:
    @pytest.mark.asyncio
    async def test_shared_client_not_closed(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[])))
        async with ExternalSyncGateway(base_url=API_URL, http_client=client):
            pass

        assert client.is_closed is False
        await client.aclose()
