"""
Tests for the pump.fun market data client.

Tests:
- Merging frontend-v3 and advanced-v2 payloads
- SOL -> USD volume conversion
- Partial and total API failure
- Circuit breaker and retry classification
"""

import asyncio

import httpx
import pytest

from src.fetchers.base import (
    CircuitBreaker,
    CircuitState,
    is_client_error,
    is_retryable_error,
)
from src.fetchers.pump import MarketData, PumpClient, parse_market_data

MINT = "P" * 44

FRONTEND = "https://frontend.test"
ADVANCED = "https://advanced.test"


def make_client(routes: dict):
    """PumpClient whose HTTP calls are answered from `routes` (url -> (status, json))."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        calls.append(url)
        status, body = routes.get(url, (404, {"error": "not found"}))
        return httpx.Response(status, json=body)

    client = PumpClient(
        frontend_base=FRONTEND,
        advanced_base=ADVANCED,
        transport=httpx.MockTransport(handler),
    )
    return client, calls


class TestParseMarketData:

    def test_both_sources(self):
        data = parse_market_data(
            {"usd_market_cap": 5000, "market_cap": 50, "complete": True},
            {"volume": "2", "num_holders_v2": 12, "marketcap": 999},
        )

        assert data == MarketData(market_cap=5000.0, volume=200.0, holders=12, graduated=True)

    def test_volume_stays_in_sol_without_rate(self):
        data = parse_market_data(None, {"volume": 3, "num_holders": "7", "marketcap": "1234.5"})

        assert data.volume == 3.0
        assert data.holders == 7
        assert data.market_cap == 1234.5
        assert data.graduated is False

    def test_price_from_supply(self):
        data = parse_market_data(
            {"usd_market_cap": 5000, "market_cap": 50, "total_supply": 1_000_000_000_000_000},
            None,
        )

        assert data.price_usd == pytest.approx(5e-6)

    def test_price_zero_without_supply(self):
        data = parse_market_data({"usd_market_cap": 5000, "market_cap": 50}, None)

        assert data.price_usd == 0.0

    def test_nothing_returns_none(self):
        assert parse_market_data(None, None) is None

    def test_garbage_numbers_become_zero(self):
        data = parse_market_data({"usd_market_cap": "n/a", "market_cap": None}, None)

        assert data.market_cap == 0.0


class TestPumpClient:

    def test_fetch_merges_both_apis(self):
        async def run():
            client, calls = make_client({
                f"{FRONTEND}/coins/{MINT}": (200, {"usd_market_cap": 8000, "market_cap": 40, "complete": False}),
                f"{ADVANCED}/coins/metadata/{MINT}": (200, {"volume": 1.5, "num_holders_v2": 21}),
            })
            async with client:
                data = await client.fetch_market_data(MINT)

            assert data.market_cap == 8000.0
            assert data.volume == 300.0
            assert data.holders == 21
            assert len(calls) == 2

        asyncio.run(run())

    def test_one_api_down_still_returns_data(self):
        async def run():
            client, _ = make_client({
                f"{ADVANCED}/coins/metadata/{MINT}": (200, {"volume": 4, "num_holders": 5, "marketcap": 700}),
            })
            async with client:
                data = await client.fetch_market_data(MINT)

            assert data.market_cap == 700.0
            assert data.volume == 4.0

        asyncio.run(run())

    def test_unknown_coin_returns_none(self):
        async def run():
            client, _ = make_client({})
            async with client:
                assert await client.fetch_market_data(MINT) is None

            # 404s do not count against API health
            assert client.frontend.circuit_breaker.state == CircuitState.CLOSED

        asyncio.run(run())


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3)
        for _ in range(3):
            assert breaker.can_execute()
            breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert not breaker.can_execute()

    def test_half_open_after_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.0, half_open_max_calls=1)
        breaker.record_failure()

        assert breaker.can_execute()
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_admits_max_trial_calls(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.0, half_open_max_calls=3)
        breaker.record_failure()

        admitted = sum(breaker.can_execute() for _ in range(6))

        assert admitted == 3
        assert breaker.state == CircuitState.HALF_OPEN


class TestErrorClassification:

    def _status_error(self, status: int) -> httpx.HTTPStatusError:
        request = httpx.Request("GET", "https://x.test")
        return httpx.HTTPStatusError("err", request=request, response=httpx.Response(status, request=request))

    @pytest.mark.parametrize("status,retryable,client_error", [
        (404, False, True),
        (422, False, True),
        (429, True, False),
        (500, True, False),
        (503, True, False),
    ])
    def test_status_codes(self, status, retryable, client_error):
        error = self._status_error(status)

        assert is_retryable_error(error) is retryable
        assert is_client_error(error) is client_error

    def test_connect_error_retryable(self):
        assert is_retryable_error(httpx.ConnectError("refused"))
        assert not is_retryable_error(ValueError("bad json"))
