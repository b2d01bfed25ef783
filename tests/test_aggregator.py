"""Comparison and history aggregator tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from src.schemas.metrics import HistoricalDataPoint, MetricType, StoredPair
from src.services.aggregator import MetricsAggregator, clamp_history_limit, spread, spread_series

D1 = datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)
D2 = D1 + timedelta(days=7)
D3 = D2 + timedelta(days=7)


async def _write(store, entity_id: str, captured_at: datetime, **values: float | None) -> None:
    snapshot_id = await store.insert_snapshot(entity_id, captured_at, "test", values)
    await store.insert_metrics(snapshot_id, [(MetricType(k), v) for k, v in values.items()])


def _ratios(pe: float | None, ps: float | None) -> dict[str, float | None]:
    return {"equity_value": 1_000_000_000.0, "pe_ratio": pe, "ps_ratio": ps}


@pytest.mark.asyncio
async def test_pair_without_tradfi_snapshot_is_excluded(catalog_store) -> None:
    await _write(catalog_store, "nasdaq", D1, **_ratios(28.0, 6.5))
    await _write(catalog_store, "uniswap", D1, **_ratios(None, 7.08))
    await _write(catalog_store, "aave", D1, **_ratios(12.8, 8.0))

    comparisons = await MetricsAggregator(catalog_store).get_all_pair_comparisons()

    assert [c.pair_id for c in comparisons] == [1]
    assert comparisons[0].theme == "Market Infrastructure"


@pytest.mark.asyncio
async def test_spreads_propagate_nulls(catalog_store) -> None:
    await _write(catalog_store, "nasdaq", D1, **_ratios(28.0, 6.5))
    await _write(catalog_store, "uniswap", D1, **_ratios(None, 7.08))

    (comparison,) = await MetricsAggregator(catalog_store).get_all_pair_comparisons()

    assert comparison.pe_spread is None
    assert comparison.ps_spread == 7.08 - 6.5
    assert comparison.tradfi.entity_id == "nasdaq"
    assert comparison.defi.entity_id == "uniswap"


@pytest.mark.asyncio
async def test_comparisons_are_ordered_by_pair_id(catalog_store) -> None:
    for entity_id in ("cboe", "jupiter", "blackrock", "lido"):
        await _write(catalog_store, entity_id, D1, **_ratios(10.0, 5.0))

    comparisons = await MetricsAggregator(catalog_store).get_all_pair_comparisons()

    assert [c.pair_id for c in comparisons] == [3, 10]
    assert all(c.pe_spread == 0.0 for c in comparisons)


@pytest.mark.asyncio
async def test_category_filter_is_case_insensitive_on_either_side(catalog_store) -> None:
    for entity_id in ("nasdaq", "uniswap", "jpmorgan", "aave"):
        await _write(catalog_store, entity_id, D1, **_ratios(10.0, 5.0))
    aggregator = MetricsAggregator(catalog_store)

    assert [c.pair_id for c in await aggregator.get_all_pair_comparisons("lending")] == [2]
    assert [c.pair_id for c in await aggregator.get_all_pair_comparisons("BANK")] == [2]
    assert [c.pair_id for c in await aggregator.get_all_pair_comparisons("Exchange")] == [1]
    assert await aggregator.get_all_pair_comparisons("Perps DEX") == []
    assert len(await aggregator.get_all_pair_comparisons(None)) == 2


@pytest.mark.asyncio
async def test_pair_history_spread_only_on_shared_dates(catalog_store) -> None:
    await _write(catalog_store, "nasdaq", D1, pe_ratio=20.0, equity_value=40e9)
    await _write(catalog_store, "nasdaq", D2, pe_ratio=22.0, equity_value=42e9)
    await _write(catalog_store, "uniswap", D2, pe_ratio=30.0, equity_value=8e9)
    await _write(catalog_store, "uniswap", D3, pe_ratio=35.0, equity_value=9e9)

    history = await MetricsAggregator(catalog_store).get_pair_historical_data("nasdaq", "uniswap")

    assert history.pair_id == 1
    assert (history.tradfi_name, history.defi_name) == ("Nasdaq", "Uniswap")
    assert [p.date for p in history.pe_history.tradfi] == ["2024-01-01", "2024-01-08"]
    assert [p.date for p in history.pe_history.defi] == ["2024-01-08", "2024-01-15"]
    assert [p.value for p in history.equity_history.defi] == [8e9, 9e9]
    assert [(p.date, p.value) for p in history.spread_history] == [("2024-01-08", 8.0)]


@pytest.mark.asyncio
async def test_historical_series_uses_default_and_cap(catalog_store) -> None:
    for week in range(3):
        await _write(catalog_store, "pendle", D1 + timedelta(weeks=week), ps_ratio=9.0 + week)
    aggregator = MetricsAggregator(catalog_store)

    series = await aggregator.get_historical_metrics("pendle", MetricType.PS_RATIO, limit=1000)
    assert series.entity_id == "pendle"
    assert series.metric_type is MetricType.PS_RATIO
    assert [p.value for p in series.data] == [9.0, 10.0, 11.0]

    latest_two = await aggregator.get_historical_metrics("pendle", MetricType.PS_RATIO, limit=2)
    assert [p.value for p in latest_two.data] == [10.0, 11.0]


@pytest.mark.asyncio
async def test_pair_details_include_nullable_metrics(catalog_store) -> None:
    await _write(catalog_store, "blackrock", D1, **_ratios(20.0, 7.0))
    aggregator = MetricsAggregator(catalog_store)

    (details,) = await aggregator.get_pair_details(3)

    assert details.theme == "Asset Management"
    assert details.tradfi.ticker == "BLK"
    assert details.tradfi.metrics.pe_ratio == 20.0
    assert details.defi.coingecko_id == "lido-dao"
    assert details.defi.defi_llama_id == "lido"
    assert details.defi.metrics is None

    assert await aggregator.get_pair_details(99) == []
    assert [p.id for p in await aggregator.get_pair_details()] == list(range(1, 11))


@pytest.mark.asyncio
async def test_read_failures_degrade_to_absent_data() -> None:
    class BrokenStore:
        async def get_all_pairs(self):
            return [StoredPair(id=1, theme="Market Infrastructure", tradfi_id="nasdaq", defi_id="uniswap")]

        async def get_latest_metrics(self, entity_id):
            raise OperationalError("SELECT ...", {}, Exception("database is locked"))

        async def get_last_update_time(self):
            raise OperationalError("SELECT ...", {}, Exception("database is locked"))

    class NoPairsStore(BrokenStore):
        async def get_all_pairs(self):
            raise OperationalError("SELECT ...", {}, Exception("database is locked"))

    aggregator = MetricsAggregator(BrokenStore())

    assert await aggregator.get_all_pair_comparisons() == []
    assert await aggregator.get_last_update_time() is None
    assert await MetricsAggregator(NoPairsStore()).get_all_pair_comparisons() == []


@pytest.mark.asyncio
async def test_pair_history_spread_uses_last_snapshot_of_the_day(catalog_store) -> None:
    await _write(catalog_store, "nasdaq", D1, pe_ratio=20.0)
    await _write(catalog_store, "nasdaq", D1 + timedelta(hours=6), pe_ratio=21.0)
    await _write(catalog_store, "uniswap", D1, pe_ratio=30.0)
    await _write(catalog_store, "uniswap", D1 + timedelta(hours=12), pe_ratio=36.0)

    history = await MetricsAggregator(catalog_store).get_pair_historical_data("nasdaq", "uniswap")

    assert [(p.date, p.value) for p in history.pe_history.tradfi] == [("2024-01-01", 20.0), ("2024-01-01", 21.0)]
    assert [p.value for p in history.pe_history.defi] == [30.0, 36.0]
    assert [(p.date, p.value) for p in history.spread_history] == [("2024-01-01", 15.0)]


def test_spread_helpers() -> None:
    assert spread(30.0, 20.0) == 10.0
    assert spread(None, 20.0) is None
    assert spread(30.0, None) is None

    defi = [HistoricalDataPoint(date="2024-01-08", value=1.0), HistoricalDataPoint(date="2024-01-08", value=3.0)]
    tradfi = [HistoricalDataPoint(date="2024-01-08", value=2.0)]
    assert [(p.date, p.value) for p in spread_series(defi, tradfi)] == [("2024-01-08", 1.0)]


def test_clamp_history_limit() -> None:
    assert clamp_history_limit(None) == 52
    assert clamp_history_limit(10) == 10
    assert clamp_history_limit(1000) == 260
    with pytest.raises(ValueError):
        clamp_history_limit(0)
