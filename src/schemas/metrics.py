"""Read models returned by the store, the aggregator and the HTTP API.

All models serialize with camelCase keys (`peRatio`, `capturedAt`, ...) and
accept snake_case names when constructed in Python.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class MetricType(str, Enum):
    EQUITY_VALUE = "equity_value"
    REVENUE = "revenue"
    FEES = "fees"
    PE_RATIO = "pe_ratio"
    PS_RATIO = "ps_ratio"


METRIC_TYPES: tuple[str, ...] = tuple(m.value for m in MetricType)

# History windows: ~1 year and ~5 years of weekly points.
DEFAULT_HISTORY_LIMIT = 52
MAX_HISTORY_LIMIT = 260


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EntityMetrics(CamelModel):
    entity_id: str
    name: str
    type: str
    category: str
    captured_at: datetime
    equity_value: Optional[float] = None
    revenue: Optional[float] = None
    fees: Optional[float] = None
    pe_ratio: Optional[float] = None
    ps_ratio: Optional[float] = None

    def value_of(self, metric_type: MetricType) -> Optional[float]:
        return getattr(self, metric_type.value)


class PairComparison(CamelModel):
    pair_id: int
    theme: str
    tradfi: EntityMetrics
    defi: EntityMetrics
    # DeFi minus TradFi; None unless both sides have the ratio.
    pe_spread: Optional[float] = None
    ps_spread: Optional[float] = None


class HistoricalDataPoint(CamelModel):
    date: str
    value: float


class HistoricalSeries(CamelModel):
    entity_id: str
    metric_type: MetricType
    data: list[HistoricalDataPoint]


class SideHistory(CamelModel):
    tradfi: list[HistoricalDataPoint]
    defi: list[HistoricalDataPoint]


class PairHistoricalData(CamelModel):
    pair_id: Optional[int] = None
    theme: Optional[str] = None
    tradfi_name: Optional[str] = None
    defi_name: Optional[str] = None
    pe_history: SideHistory
    equity_history: SideHistory
    spread_history: list[HistoricalDataPoint]


class PairSide(CamelModel):
    id: str
    name: str
    type: str
    category: str
    ticker: Optional[str] = None
    coingecko_id: Optional[str] = None
    defi_llama_id: Optional[str] = None
    metrics: Optional[EntityMetrics] = None


class PairWithMetrics(CamelModel):
    id: int
    theme: str
    tradfi: PairSide
    defi: PairSide


class StoredPair(CamelModel):
    id: int
    theme: str
    tradfi_id: str
    defi_id: str


class SnapshotInfo(CamelModel):
    id: str
    captured_at: datetime
    source: str


# --- API envelopes ---------------------------------------------------------

T = TypeVar("T")


class ApiResponse(CamelModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None


class LatestMetricsData(CamelModel):
    pairs: list[PairComparison]
    last_updated: str


class PairsData(CamelModel):
    pairs: list[PairWithMetrics]
    last_updated: str


class HistoryData(CamelModel):
    series: HistoricalSeries
    last_updated: str


class PairHistoryData(CamelModel):
    history: PairHistoricalData
    last_updated: str


class FetchFailure(CamelModel):
    entity_id: str
    name: str
    error: Optional[str] = None


class FetchCycleResponse(CamelModel):
    success: bool
    message: str
    duration: str
    timestamp: str
    success_count: int
    failure_count: int
    failures: list[FetchFailure]
