"""DeFi Llama API client.

This module provides a small wrapper around the DeFi Llama fees summary
endpoint. We keep this client thin and focused so it is easy to test and reuse
in Prefect flows.

Endpoints (keyless):
  GET https://api.llama.fi/summary/fees/{slug}?dataType=dailyFees
  GET https://api.llama.fi/summary/fees/{slug}?dataType=dailyRevenue

Both return a summary object with `total24h`, `total7d`, `total30d`,
`totalAllTime`. Fees are what users pay; revenue is the part the protocol
keeps. For protocols that route every fee to LPs, revenue is 0 or missing.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.core.errors import UpstreamUnavailableError
from src.core.log import get_logger

DAYS_PER_YEAR = 365


@dataclass(frozen=True)
class DeFiFeesRevenue:
    protocol: str
    display_name: str
    fees_24h: float | None
    fees_7d: float | None
    fees_30d: float | None
    fees_all_time: float | None
    revenue_24h: float | None
    revenue_7d: float | None
    revenue_30d: float | None
    annualized_fees: float | None
    annualized_revenue: float | None
    raw: dict[str, Any] = field(default_factory=dict)


def _num(payload: dict[str, Any] | None, key: str) -> float | None:
    if not payload:
        return None
    value = payload.get(key)
    return float(value) if value is not None else None


def annualize(daily: float | None) -> float | None:
    return daily * DAYS_PER_YEAR if daily is not None else None


def parse_fees_and_revenue(
    slug: str, fees_payload: dict[str, Any], revenue_payload: dict[str, Any] | None
) -> DeFiFeesRevenue:
    """Build a DeFiFeesRevenue record from the two summary payloads."""
    fees_24h = _num(fees_payload, "total24h")
    revenue_24h = _num(revenue_payload, "total24h")
    return DeFiFeesRevenue(
        protocol=slug,
        display_name=fees_payload.get("displayName") or fees_payload.get("name") or slug,
        fees_24h=fees_24h,
        fees_7d=_num(fees_payload, "total7d"),
        fees_30d=_num(fees_payload, "total30d"),
        fees_all_time=_num(fees_payload, "totalAllTime"),
        revenue_24h=revenue_24h,
        revenue_7d=_num(revenue_payload, "total7d"),
        revenue_30d=_num(revenue_payload, "total30d"),
        annualized_fees=annualize(fees_24h),
        annualized_revenue=annualize(revenue_24h),
        raw={"fees": fees_payload, "revenue": revenue_payload},
    )


class DefiLlamaClient:
    """Async client for the DeFi Llama fees summary endpoint."""

    BASE_URL = "https://api.llama.fi"
    PROVIDER = "defillama"

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a new client.

        Args:
            timeout_seconds: Request timeout.
            transport: Optional httpx transport override (used for unit tests).
        """
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    async def get_fees_and_revenue(self, slug: str) -> DeFiFeesRevenue:
        """Fetch daily fees and daily revenue for a protocol concurrently.

        Returns:
            A DeFiFeesRevenue record. Revenue fields are None when the revenue
            request fails; that is not treated as an error.

        Raises:
            UpstreamUnavailableError: If the fees request returns a non-success status.
            httpx.RequestError: For network errors.
        """
        url = f"{self.BASE_URL}/summary/fees/{slug}"
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            fees_response, revenue_response = await asyncio.gather(
                client.get(url, params={"dataType": "dailyFees"}),
                client.get(url, params={"dataType": "dailyRevenue"}),
                return_exceptions=True,
            )

        if isinstance(fees_response, BaseException):
            raise fees_response
        if isinstance(revenue_response, BaseException):
            get_logger(__name__).info(f"DefiLlama revenue request failed for {slug}: {revenue_response}")
            revenue_response = None

        if fees_response.status_code != 200:
            raise UpstreamUnavailableError(self.PROVIDER, f"fees error for {slug}", status_code=fees_response.status_code)
        fees_payload = fees_response.json() or {}
        if not isinstance(fees_payload, dict):
            raise UpstreamUnavailableError(self.PROVIDER, f"fees unexpected format for {slug}")

        revenue_payload: dict[str, Any] | None = None
        if revenue_response is not None and revenue_response.status_code == 200:
            body = revenue_response.json()
            revenue_payload = body if isinstance(body, dict) else None
        elif revenue_response is not None:
            get_logger(__name__).info(f"DefiLlama revenue unavailable for {slug}: {revenue_response.status_code}")

        return parse_fees_and_revenue(slug, fees_payload, revenue_payload)
