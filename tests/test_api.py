"""Read API tests using httpx ASGITransport against a seeded SQLite store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from src.api.main import create_app
from src.core.config import settings
from src.pipelines.flows.seed import seed_mock_metrics

SEEDED_AT = datetime(2024, 3, 1, 6, 0, tzinfo=timezone.utc)


def _client(app, **transport_kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app, **transport_kwargs), base_url="http://test")


@pytest_asyncio.fixture
async def seeded_store(catalog_store):
    await seed_mock_metrics(catalog_store, captured_at=SEEDED_AT - timedelta(days=7))
    await seed_mock_metrics(catalog_store, captured_at=SEEDED_AT)
    return catalog_store


@pytest.mark.asyncio
async def test_latest_returns_all_pairs_with_camel_case_keys(seeded_store) -> None:
    async with _client(create_app(seeded_store)) as client:
        response = await client.get("/api/latest")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    pairs = body["data"]["pairs"]
    assert [p["pairId"] for p in pairs] == list(range(1, 11))
    assert datetime.fromisoformat(body["data"]["lastUpdated"]) == SEEDED_AT

    first = pairs[0]
    assert first["tradfi"]["entityId"] == "nasdaq"
    assert first["defi"]["equityValue"] == 8_500_000_000
    assert first["peSpread"] == pytest.approx(8_500_000_000 / 800_000_000 - 42_000_000_000 / 6_500_000_000)


@pytest.mark.asyncio
async def test_latest_category_filter(seeded_store) -> None:
    async with _client(create_app(seeded_store)) as client:
        response = await client.get("/api/latest", params={"category": "lending"})

    assert [p["pairId"] for p in response.json()["data"]["pairs"]] == [2]


@pytest.mark.asyncio
async def test_pairs_by_id_includes_metadata_and_metrics(seeded_store) -> None:
    async with _client(create_app(seeded_store)) as client:
        response = await client.get("/api/pairs", params={"id": 3})

    assert response.status_code == 200
    (pair,) = response.json()["data"]["pairs"]
    assert pair["theme"] == "Asset Management"
    assert pair["tradfi"]["ticker"] == "BLK"
    assert pair["defi"]["defiLlamaId"] == "lido"
    assert pair["defi"]["metrics"]["equityValue"] == 2_800_000_000


@pytest.mark.asyncio
async def test_pairs_without_snapshots_have_null_metrics(catalog_store) -> None:
    async with _client(create_app(catalog_store)) as client:
        response = await client.get("/api/pairs")

    pairs = response.json()["data"]["pairs"]
    assert len(pairs) == 10
    assert all(p["tradfi"]["metrics"] is None and p["defi"]["metrics"] is None for p in pairs)


@pytest.mark.asyncio
async def test_history_returns_ascending_series(seeded_store) -> None:
    async with _client(create_app(seeded_store)) as client:
        response = await client.get("/api/history", params={"entity": "uniswap", "metric": "ps_ratio", "limit": 5})

    assert response.status_code == 200
    series = response.json()["data"]["series"]
    assert series["entityId"] == "uniswap"
    assert series["metricType"] == "ps_ratio"
    assert [p["date"] for p in series["data"]] == ["2024-02-23", "2024-03-01"]
    assert series["data"][-1]["value"] == pytest.approx(8_500_000_000 / 1_200_000_000)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path, params",
    [
        ("/api/history", {"entity": "uniswap", "metric": "market_cap"}),
        ("/api/history", {"entity": "uniswap", "metric": "pe_ratio", "limit": 261}),
        ("/api/history", {"entity": "uniswap", "metric": "pe_ratio", "limit": 0}),
        ("/api/history", {"metric": "pe_ratio"}),
        ("/api/pairs", {"id": 11}),
        ("/api/pairs", {"id": "abc"}),
        ("/api/pair-history", {"id": 0}),
    ],
)
async def test_malformed_parameters_return_400(catalog_store, path, params) -> None:
    async with _client(create_app(catalog_store)) as client:
        response = await client.get(path, params=params)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"].startswith("Invalid parameters: ")


@pytest.mark.asyncio
async def test_pair_history_has_spread_series(seeded_store) -> None:
    async with _client(create_app(seeded_store)) as client:
        response = await client.get("/api/pair-history", params={"id": 1})

    history = response.json()["data"]["history"]
    assert history["pairId"] == 1
    assert history["tradfiName"] == "Nasdaq"
    assert len(history["peHistory"]["tradfi"]) == 2
    assert len(history["spreadHistory"]) == 2


@pytest.mark.asyncio
async def test_internal_error_returns_generic_500(catalog_store, monkeypatch) -> None:
    async def broken():
        raise RuntimeError("boom")

    monkeypatch.setattr(catalog_store, "get_all_pairs", broken)

    async with _client(create_app(catalog_store), raise_app_exceptions=False) as client:
        response = await client.get("/api/latest")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error"}


@pytest.mark.asyncio
async def test_cron_requires_bearer_secret(store, make_providers, monkeypatch) -> None:
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")

    async with _client(create_app(store, providers=make_providers())) as client:
        missing = await client.get("/api/cron/fetch-metrics")
        wrong = await client.get("/api/cron/fetch-metrics", headers={"Authorization": "Bearer nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert missing.json()["error"] == "Unauthorized"


@pytest.mark.asyncio
async def test_cron_runs_a_fetch_cycle(store, make_providers, monkeypatch) -> None:
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    monkeypatch.setattr(settings, "FETCH_INTER_ENTITY_DELAY_SECONDS", 0.0)

    async with _client(create_app(store, providers=make_providers())) as client:
        response = await client.get("/api/cron/fetch-metrics", headers={"Authorization": "Bearer s3cret"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Fetched 20/20 entities"
    assert body["failures"] == []
    assert len(await store.get_all_pairs()) == 10
    assert (await store.get_latest_metrics("jupiter")).fees == 365_000_000
