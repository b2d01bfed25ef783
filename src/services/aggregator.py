"""Comparison & history aggregator.

Read-only views over the snapshot store. Read failures for one entity degrade
to "no data" instead of propagating to the API layer.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from src.core.catalog import PAIRS, EntitySpec, PairSpec, get_entity_by_id, get_pair_by_id
from src.core.log import get_logger
from src.schemas.metrics import (
    DEFAULT_HISTORY_LIMIT,
    MAX_HISTORY_LIMIT,
    EntityMetrics,
    HistoricalDataPoint,
    HistoricalSeries,
    MetricType,
    PairComparison,
    PairHistoricalData,
    PairSide,
    PairWithMetrics,
    SideHistory,
    StoredPair,
)
from src.services.snapshot_store import SnapshotStore


def spread(defi_value: float | None, tradfi_value: float | None) -> float | None:
    """DeFi minus TradFi, or None unless both values are present."""
    if defi_value is None or tradfi_value is None:
        return None
    return defi_value - tradfi_value


def clamp_history_limit(limit: int | None) -> int:
    """Apply the default window and the hard cap.

    Raises:
        ValueError: limit is below 1.
    """
    if limit is None:
        return DEFAULT_HISTORY_LIMIT
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    return min(limit, MAX_HISTORY_LIMIT)


def spread_series(
    defi_points: list[HistoricalDataPoint], tradfi_points: list[HistoricalDataPoint]
) -> list[HistoricalDataPoint]:
    """Pointwise DeFi minus TradFi for dates present on both sides, oldest first.

    When a side has several points on one date the last one wins.
    """
    defi_by_date = {p.date: p.value for p in defi_points}
    tradfi_by_date = {p.date: p.value for p in tradfi_points}
    dates = sorted(defi_by_date.keys() | tradfi_by_date.keys())
    return [
        HistoricalDataPoint(date=d, value=defi_by_date[d] - tradfi_by_date[d])
        for d in dates
        if d in defi_by_date and d in tradfi_by_date
    ]


def _side(entity: EntitySpec, metrics: EntityMetrics | None) -> PairSide:
    return PairSide(
        id=entity.id,
        name=entity.name,
        type=entity.type.value,
        category=entity.category.value,
        ticker=entity.ticker,
        coingecko_id=entity.coingecko_id,
        defi_llama_id=entity.defillama_id,
        metrics=metrics,
    )


class MetricsAggregator:
    def __init__(self, store: SnapshotStore) -> None:
        self.store = store

    async def _pairs(self) -> list[StoredPair]:
        try:
            return await self.store.get_all_pairs()
        except SQLAlchemyError as exc:
            get_logger(__name__).error(f"Failed to read pairs: {exc}")
            return []

    async def _latest(self, entity_id: str) -> EntityMetrics | None:
        try:
            return await self.store.get_latest_metrics(entity_id)
        except SQLAlchemyError as exc:
            get_logger(__name__).error(f"Failed to read latest metrics for {entity_id}: {exc}")
            return None

    async def _history(self, entity_id: str, metric_type: MetricType, limit: int) -> list[HistoricalDataPoint]:
        try:
            return await self.store.get_historical_metrics(entity_id, metric_type, limit)
        except SQLAlchemyError as exc:
            get_logger(__name__).error(f"Failed to read {metric_type.value} history for {entity_id}: {exc}")
            return []

    async def get_all_pair_comparisons(self, category: str | None = None) -> list[PairComparison]:
        """Latest-metrics comparison for every stored pair, ordered by pair id.

        A pair is included only when both sides have a latest-metrics record;
        a side that was never fetched successfully drops the whole pair.
        `category` is a case-insensitive exact match against either side.
        """
        wanted = category.strip().lower() if category else None
        comparisons: list[PairComparison] = []
        for pair in await self._pairs():
            tradfi = await self._latest(pair.tradfi_id)
            defi = await self._latest(pair.defi_id)
            if tradfi is None or defi is None:
                continue
            if wanted and wanted not in (tradfi.category.lower(), defi.category.lower()):
                continue
            comparisons.append(
                PairComparison(
                    pair_id=pair.id,
                    theme=pair.theme,
                    tradfi=tradfi,
                    defi=defi,
                    pe_spread=spread(defi.pe_ratio, tradfi.pe_ratio),
                    ps_spread=spread(defi.ps_ratio, tradfi.ps_ratio),
                )
            )
        return comparisons

    async def get_historical_metrics(
        self, entity_id: str, metric_type: MetricType, limit: int | None = DEFAULT_HISTORY_LIMIT
    ) -> HistoricalSeries:
        metric_type = MetricType(metric_type)
        points = await self._history(entity_id, metric_type, clamp_history_limit(limit))
        return HistoricalSeries(entity_id=entity_id, metric_type=metric_type, data=points)

    async def get_pair_historical_data(
        self, tradfi_id: str, defi_id: str, limit: int | None = DEFAULT_HISTORY_LIMIT
    ) -> PairHistoricalData:
        limit = clamp_history_limit(limit)
        tradfi_pe = await self._history(tradfi_id, MetricType.PE_RATIO, limit)
        defi_pe = await self._history(defi_id, MetricType.PE_RATIO, limit)
        tradfi_equity = await self._history(tradfi_id, MetricType.EQUITY_VALUE, limit)
        defi_equity = await self._history(defi_id, MetricType.EQUITY_VALUE, limit)

        pair = next((p for p in PAIRS if p.tradfi.id == tradfi_id and p.defi.id == defi_id), None)
        tradfi = get_entity_by_id(tradfi_id)
        defi = get_entity_by_id(defi_id)
        return PairHistoricalData(
            pair_id=pair.id if pair else None,
            theme=pair.theme if pair else None,
            tradfi_name=tradfi.name if tradfi else None,
            defi_name=defi.name if defi else None,
            pe_history=SideHistory(tradfi=tradfi_pe, defi=defi_pe),
            equity_history=SideHistory(tradfi=tradfi_equity, defi=defi_equity),
            spread_history=spread_series(defi_pe, tradfi_pe),
        )

    async def get_pair_details(self, pair_id: int | None = None) -> list[PairWithMetrics]:
        """Catalog pairs with each side's metadata and nullable latest metrics.

        With `pair_id`, returns a one-element list, or an empty list for an
        unknown id.
        """
        pairs: list[PairSpec]
        if pair_id is None:
            pairs = list(PAIRS)
        else:
            found = get_pair_by_id(pair_id)
            pairs = [found] if found else []

        out: list[PairWithMetrics] = []
        for pair in pairs:
            out.append(
                PairWithMetrics(
                    id=pair.id,
                    theme=pair.theme,
                    tradfi=_side(pair.tradfi, await self._latest(pair.tradfi.id)),
                    defi=_side(pair.defi, await self._latest(pair.defi.id)),
                )
            )
        return out

    async def get_last_update_time(self) -> datetime | None:
        try:
            return await self.store.get_last_update_time()
        except SQLAlchemyError as exc:
            get_logger(__name__).error(f"Failed to read last update time: {exc}")
            return None
