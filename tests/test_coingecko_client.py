"""Unit tests for the CoinGecko client.

These tests are network-isolated and use httpx MockTransport.
"""

from __future__ import annotations

import httpx
import pytest

from src.core.errors import RateLimitedError, UpstreamUnavailableError
from src.services.coingecko_client import CoinGeckoClient

COIN_PAYLOAD = {
    "id": "uniswap",
    "symbol": "uni",
    "name": "Uniswap",
    "market_data": {
        "fully_diluted_valuation": {"usd": 8_500_000_000},
        "market_cap": {"usd": 6_000_000_000},
        "current_price": {"usd": 8.5},
        "circulating_supply": 600_000_000,
        "total_supply": 1_000_000_000,
    },
}


def _client(handler, api_key: str | None = None) -> CoinGeckoClient:
    return CoinGeckoClient(
        api_key,
        request_spacing_seconds=0,
        rate_limit_backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_fetch_token_valuation_parses_market_data() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "api.coingecko.com"
        assert request.url.path == "/api/v3/coins/uniswap"
        assert request.url.params["market_data"] == "true"
        assert "x-cg-pro-api-key" not in request.headers
        return httpx.Response(200, json=COIN_PAYLOAD)

    token = await _client(handler).fetch_token_valuation("uniswap")

    assert token.fdv == 8_500_000_000
    assert token.market_cap == 6_000_000_000
    assert token.price == 8.5
    assert token.total_supply == 1_000_000_000
    assert token.symbol == "uni"


@pytest.mark.asyncio
async def test_api_key_switches_to_pro_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "pro-api.coingecko.com"
        assert request.headers["x-cg-pro-api-key"] == "pro-key"
        return httpx.Response(200, json=COIN_PAYLOAD)

    token = await _client(handler, api_key="pro-key").fetch_token_valuation("uniswap")

    assert token.fdv == 8_500_000_000


@pytest.mark.asyncio
async def test_rate_limit_is_retried_once() -> None:
    calls = 0

    def handler(_: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(429, json={"status": "rate limited"})
        return httpx.Response(200, json=COIN_PAYLOAD)

    token = await _client(handler).fetch_token_valuation("uniswap")

    assert calls == 2
    assert token.fdv == 8_500_000_000


@pytest.mark.asyncio
async def test_repeated_rate_limit_gives_up_after_one_retry() -> None:
    calls = 0

    def handler(_: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(429, json={})

    with pytest.raises(RateLimitedError):
        await _client(handler).fetch_token_valuation("uniswap")
    assert calls == 2


@pytest.mark.asyncio
async def test_other_errors_are_not_retried() -> None:
    calls = 0

    def handler(_: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404, json={"error": "coin not found"})

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await _client(handler).fetch_token_valuation("nope")
    assert calls == 1
    assert excinfo.value.status_code == 404
    assert not isinstance(excinfo.value, RateLimitedError)


@pytest.mark.asyncio
async def test_missing_market_data_is_upstream_failure() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "uniswap"})

    with pytest.raises(UpstreamUnavailableError):
        await _client(handler).fetch_token_valuation("uniswap")
