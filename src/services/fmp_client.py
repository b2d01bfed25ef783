"""Financial Modeling Prep (FMP) API client.

Fetches TradFi fundamentals: market cap, TTM revenue / net income and the
provider's own P/E and P/S ratios.

Endpoints (stable API):
  GET https://financialmodelingprep.com/stable/quote?symbol=TICKER
  GET https://financialmodelingprep.com/stable/income-statement?symbol=TICKER&period=annual&limit=4
  GET https://financialmodelingprep.com/stable/key-metrics-ttm?symbol=TICKER
  GET https://financialmodelingprep.com/stable/ratios-ttm?symbol=TICKER

The quote is required. The other three are best-effort: key metrics and TTM
ratios are not available for every ticker.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.core.errors import ConfigurationError, UpstreamUnavailableError
from src.core.log import get_logger


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class TradFiFundamentals:
    """Normalized FMP record for one ticker.

    Ratios are kept per source so the normalizer can apply its priority order
    (ratios-ttm, then key-metrics-ttm, then a computed fallback).
    """

    ticker: str
    name: str | None
    market_cap: float | None
    ttm_revenue: float | None
    ttm_net_income: float | None
    pe_ratio_ttm: float | None = None
    ps_ratio_ttm: float | None = None
    pe_ratio_key_metrics: float | None = None
    ps_ratio_key_metrics: float | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class FmpClient:
    """Async client for the FMP stable API."""

    BASE_URL = "https://financialmodelingprep.com/stable"
    PROVIDER = "fmp"

    def __init__(
        self,
        api_key: str | None,
        *,
        timeout_seconds: float = 30.0,
        debug: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a new client.

        Args:
            api_key: FMP API key. Fetches raise ConfigurationError without one.
            timeout_seconds: Request timeout.
            debug: Log which feed each ratio came from.
            transport: Optional httpx transport override (used for unit tests).
        """
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout_seconds)
        self._debug = debug
        self._transport = transport

    async def _get(self, client: httpx.AsyncClient, path: str, params: dict[str, Any]) -> httpx.Response:
        return await client.get(f"{self.BASE_URL}/{path}", params={**params, "apikey": self._api_key})

    async def _fetch_quote(self, client: httpx.AsyncClient, ticker: str) -> dict[str, Any]:
        response = await self._get(client, "quote", {"symbol": ticker})
        if response.status_code != 200:
            raise UpstreamUnavailableError(self.PROVIDER, f"quote error for {ticker}", status_code=response.status_code)

        data = response.json()
        # The stable API may return either a list or a single object.
        if isinstance(data, list):
            if not data:
                raise UpstreamUnavailableError(self.PROVIDER, f"quote empty for {ticker}")
            data = data[0]
        if not isinstance(data, dict) or not data.get("symbol"):
            raise UpstreamUnavailableError(self.PROVIDER, f"quote unexpected format for {ticker}")
        return data

    async def _fetch_income_statements(self, client: httpx.AsyncClient, ticker: str) -> list[dict[str, Any]] | None:
        logger = get_logger(__name__)
        response = await self._get(client, "income-statement", {"symbol": ticker, "period": "annual", "limit": 4})
        if response.status_code != 200:
            logger.error(f"FMP income statement error for {ticker}: {response.status_code}")
            return None
        data = response.json()
        if not isinstance(data, list) or not data:
            logger.error(f"FMP income statement empty for {ticker}")
            return None
        return [row for row in data if isinstance(row, dict)]

    async def _fetch_first_object(self, client: httpx.AsyncClient, path: str, ticker: str) -> dict[str, Any] | None:
        response = await self._get(client, path, {"symbol": ticker})
        if response.status_code != 200:
            return None
        data = response.json()
        if isinstance(data, list):
            data = data[0] if data else None
        return data if isinstance(data, dict) else None

    async def fetch_fundamentals(self, ticker: str) -> TradFiFundamentals:
        """Fetch quote, income statements, key metrics and TTM ratios concurrently.

        Raises:
            ConfigurationError: If no API key is configured.
            UpstreamUnavailableError: If the quote is missing or unusable.
            httpx.RequestError: For network errors.
        """
        if not self._api_key:
            raise ConfigurationError("FMP_API_KEY not configured")

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            results = await asyncio.gather(
                self._fetch_quote(client, ticker),
                self._fetch_income_statements(client, ticker),
                self._fetch_first_object(client, "key-metrics-ttm", ticker),
                self._fetch_first_object(client, "ratios-ttm", ticker),
                return_exceptions=True,
            )

        quote, income, key_metrics, ratios = results
        if isinstance(quote, BaseException):
            raise quote
        # Optional feeds degrade to "absent" on any error.
        income, key_metrics, ratios = (None if isinstance(r, BaseException) else r for r in (income, key_metrics, ratios))

        latest_income = (income or [None])[0] or {}
        key_metrics = key_metrics or {}
        ratios = ratios or {}

        record = TradFiFundamentals(
            ticker=ticker,
            name=quote.get("name"),
            market_cap=_as_float(quote.get("marketCap")),
            ttm_revenue=_as_float(latest_income.get("revenue")),
            ttm_net_income=_as_float(latest_income.get("netIncome")),
            pe_ratio_ttm=_as_float(ratios.get("priceToEarningsRatioTTM")),
            ps_ratio_ttm=_as_float(ratios.get("priceToSalesRatioTTM")),
            pe_ratio_key_metrics=_as_float(key_metrics.get("peRatio")),
            ps_ratio_key_metrics=_as_float(key_metrics.get("priceToSalesRatio")),
            raw={"quote": quote, "income": income, "keyMetricsTTM": key_metrics or None, "ratiosTTM": ratios or None},
        )

        if self._debug:
            get_logger(__name__).info(
                f"[FMP DEBUG] {ticker}: marketCap={record.market_cap} "
                f"ratios-ttm P/E={record.pe_ratio_ttm} P/S={record.ps_ratio_ttm} "
                f"key-metrics P/E={record.pe_ratio_key_metrics} P/S={record.ps_ratio_key_metrics} "
                f"revenue={record.ttm_revenue} netIncome={record.ttm_net_income}"
            )
        return record
