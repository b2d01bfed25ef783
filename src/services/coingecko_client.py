"""CoinGecko API client.

Fetches DeFi token valuation (FDV, market cap) for one coin id.

Endpoint:
  GET https://api.coingecko.com/api/v3/coins/{id}  (pro-api.coingecko.com with a key)

The free tier allows roughly 10-30 calls per minute, so every request is
preceded by a short spacing delay. An HTTP 429 is retried once after a fixed
backoff; any other non-success status is an upstream failure.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.core.errors import RateLimitedError, UpstreamUnavailableError
from src.core.log import get_logger
from src.core.retry import RetryPolicy, constant_backoff


@dataclass(frozen=True)
class DeFiTokenValuation:
    coin_id: str
    symbol: str | None
    name: str | None
    fdv: float | None
    market_cap: float | None
    price: float | None
    circulating_supply: float | None
    total_supply: float | None
    raw: dict[str, Any] = field(default_factory=dict)


def _usd(market_data: dict[str, Any], key: str) -> float | None:
    value = (market_data.get(key) or {}).get("usd")
    return float(value) if value is not None else None


class CoinGeckoClient:
    """Async client for the CoinGecko coins endpoint."""

    BASE_URL = "https://api.coingecko.com/api/v3"
    PRO_URL = "https://pro-api.coingecko.com/api/v3"
    PROVIDER = "coingecko"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        timeout_seconds: float = 30.0,
        request_spacing_seconds: float | None = None,
        rate_limit_backoff_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a new client.

        Args:
            api_key: Optional pro API key; switches base URL and adds the auth header.
            timeout_seconds: Request timeout.
            request_spacing_seconds: Delay before each request. Defaults to 0.1s
                with a key and 2.5s without.
            rate_limit_backoff_seconds: Fixed wait before retrying after HTTP 429.
            transport: Optional httpx transport override (used for unit tests).
        """
        self._api_key = api_key
        self._base_url = self.PRO_URL if api_key else self.BASE_URL
        self._timeout = httpx.Timeout(timeout_seconds)
        if request_spacing_seconds is None:
            request_spacing_seconds = 0.1 if api_key else 2.5
        self._spacing = request_spacing_seconds
        self._transport = transport
        self.rate_limit_policy = RetryPolicy(
            max_attempts=2,
            base_delay=rate_limit_backoff_seconds,
            backoff=constant_backoff,
            retry_on=(RateLimitedError,),
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-cg-pro-api-key"] = self._api_key
        return headers

    async def _fetch_once(self, coin_id: str) -> DeFiTokenValuation:
        if self._spacing:
            await asyncio.sleep(self._spacing)

        params = {
            "localization": "false",
            "tickers": "false",
            "market_data": "true",
            "community_data": "false",
            "developer_data": "false",
            "sparkline": "false",
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.get(f"{self._base_url}/coins/{coin_id}", params=params, headers=self._headers())

        if response.status_code == 429:
            get_logger(__name__).warning(f"CoinGecko rate limited for {coin_id}")
            raise RateLimitedError(self.PROVIDER, f"rate limited for {coin_id}", status_code=429)
        if response.status_code != 200:
            raise UpstreamUnavailableError(self.PROVIDER, f"error for {coin_id}", status_code=response.status_code)

        data = response.json() or {}
        market_data = data.get("market_data")
        if not isinstance(market_data, dict):
            raise UpstreamUnavailableError(self.PROVIDER, f"no market data for {coin_id}")

        circulating = market_data.get("circulating_supply")
        total = market_data.get("total_supply")
        return DeFiTokenValuation(
            coin_id=data.get("id") or coin_id,
            symbol=data.get("symbol"),
            name=data.get("name"),
            fdv=_usd(market_data, "fully_diluted_valuation"),
            market_cap=_usd(market_data, "market_cap"),
            price=_usd(market_data, "current_price"),
            circulating_supply=float(circulating) if circulating is not None else None,
            total_supply=float(total) if total is not None else None,
            raw=data,
        )

    async def fetch_token_valuation(self, coin_id: str) -> DeFiTokenValuation:
        """Fetch valuation data for `coin_id`, retrying once on HTTP 429.

        Raises:
            RateLimitedError: If still rate limited after the retry.
            UpstreamUnavailableError: For other non-success responses or missing market data.
            httpx.RequestError: For network errors.
        """
        return await self.rate_limit_policy.run(
            lambda: self._fetch_once(coin_id), description=f"CoinGecko {coin_id}"
        )
