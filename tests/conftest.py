"""Pytest configuration.

This project uses a `src/` package layout without an installed wheel.
For local test runs, we add the repository root to `sys.path` so imports like
`from src...` work under `pytest`.

Credential env vars are pinned to empty strings before `src.core.config` is
imported so settings never fall through to Prefect Secret lookups.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable

import httpx
import pytest
import pytest_asyncio


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

for _key in ("DATABASE_URL", "FMP_API_KEY", "COINGECKO_API_KEY", "ALERT_WEBHOOK_URL", "CRON_SECRET"):
    os.environ.setdefault(_key, "")

from src.core.catalog import PAIRS, get_all_entities  # noqa: E402
from src.pipelines.flows.fetch_metrics import ProviderClients  # noqa: E402
from src.services.coingecko_client import CoinGeckoClient  # noqa: E402
from src.services.defillama_client import DefiLlamaClient  # noqa: E402
from src.services.fmp_client import FmpClient  # noqa: E402
from src.services.snapshot_store import SnapshotStore  # noqa: E402


@pytest_asyncio.fixture
async def store(tmp_path):
    """A fresh on-disk SQLite store with the schema created."""
    s = SnapshotStore(f"sqlite:///{tmp_path / 'metrics.db'}")
    await s.open()
    await s.initialize_schema()
    try:
        yield s
    finally:
        await s.close()


@pytest_asyncio.fixture
async def catalog_store(store):
    """`store` with every catalog entity and pair upserted."""
    for entity in get_all_entities():
        await store.upsert_entity(entity)
    for pair in PAIRS:
        await store.upsert_pair(pair)
    return store


# Daily DefiLlama figures; uniswap routes every fee to LPs.
DAILY_FEES = 1_000_000.0
DAILY_REVENUE = {"uniswap": 0.0}
DEFAULT_DAILY_REVENUE = 200_000.0


def default_provider_response(request: httpx.Request) -> httpx.Response:
    """Canned successful responses for FMP, CoinGecko and DefiLlama."""
    host = request.url.host
    path = request.url.path

    if host == "financialmodelingprep.com":
        symbol = request.url.params.get("symbol")
        if path.endswith("/quote"):
            return httpx.Response(200, json=[{"symbol": symbol, "name": symbol, "marketCap": 42_000_000_000}])
        if path.endswith("/income-statement"):
            return httpx.Response(200, json=[{"revenue": 6_500_000_000, "netIncome": 1_500_000_000}])
        if path.endswith("/key-metrics-ttm"):
            return httpx.Response(200, json=[])
        if path.endswith("/ratios-ttm"):
            return httpx.Response(200, json=[{"priceToEarningsRatioTTM": 28.0, "priceToSalesRatioTTM": 6.5}])

    if host in ("api.coingecko.com", "pro-api.coingecko.com"):
        coin_id = path.rsplit("/", 1)[-1]
        return httpx.Response(
            200,
            json={
                "id": coin_id,
                "symbol": coin_id[:3],
                "name": coin_id,
                "market_data": {
                    "fully_diluted_valuation": {"usd": 8_500_000_000},
                    "market_cap": {"usd": 6_000_000_000},
                    "current_price": {"usd": 10.0},
                },
            },
        )

    if host == "api.llama.fi":
        slug = path.rsplit("/", 1)[-1]
        if request.url.params.get("dataType") == "dailyRevenue":
            return httpx.Response(200, json={"name": slug, "total24h": DAILY_REVENUE.get(slug, DEFAULT_DAILY_REVENUE)})
        return httpx.Response(200, json={"name": slug, "total24h": DAILY_FEES})

    return httpx.Response(404, json={"error": f"unexpected request {request.url}"})


@pytest.fixture
def provider_response() -> Callable[[httpx.Request], httpx.Response]:
    """The default handler, for tests that override a single route."""
    return default_provider_response


@pytest.fixture
def make_providers() -> Callable[..., ProviderClients]:
    """Build provider clients that share one MockTransport and never sleep."""

    def _make(handler=default_provider_response, *, fmp_api_key: str | None = "test-key") -> ProviderClients:
        transport = httpx.MockTransport(handler)
        return ProviderClients(
            fmp=FmpClient(fmp_api_key, transport=transport),
            coingecko=CoinGeckoClient(
                request_spacing_seconds=0,
                rate_limit_backoff_seconds=0,
                transport=transport,
            ),
            defillama=DefiLlamaClient(transport=transport),
        )

    return _make
