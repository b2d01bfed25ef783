"""Metric normalizer.

Turns provider records for one entity into the canonical metric set
`{equity_value, revenue, fees, pe_ratio, ps_ratio}`.

TradFi:
- equity_value = market cap (required)
- revenue = fees = TTM revenue (fees is a revenue proxy for TradFi)
- P/E, P/S from ratios-ttm, else key-metrics-ttm, else market cap divided by
  TTM net income / TTM revenue

DeFi:
- equity_value = FDV, else market cap
- fees = annualized total fees (what users pay)
- revenue = annualized protocol revenue times the entity's revenue multiplier
- P/E = equity / revenue and P/S = equity / fees

Every ratio goes through `safe_ratio`, so a protocol that routes all fees to
LPs (revenue 0) reports P/E = None, never 0 or infinity.

All functions here are pure.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from src.core.catalog import REVENUE_ADJUSTMENTS, EntitySpec, EntityType, revenue_multiplier
from src.core.errors import ConfigurationError, UpstreamUnavailableError
from src.schemas.metrics import MetricType
from src.services.coingecko_client import DeFiTokenValuation
from src.services.defillama_client import DeFiFeesRevenue
from src.services.fmp_client import TradFiFundamentals


def _finite(value: float | None) -> float | None:
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def safe_ratio(numerator: float | None, denominator: float | None) -> float | None:
    """Return numerator / denominator, or None when the ratio is meaningless.

    None when either side is missing or non-finite, when the denominator is not
    strictly positive, or when the numerator is not strictly positive. The
    result is always a finite positive float or None.
    """
    numerator = _finite(numerator)
    denominator = _finite(denominator)
    if numerator is None or denominator is None:
        return None
    if denominator <= 0 or numerator <= 0:
        return None
    result = numerator / denominator
    return result if math.isfinite(result) else None


def _first_positive(*candidates: float | None) -> float | None:
    for candidate in candidates:
        value = _finite(candidate)
        if value is not None and value > 0:
            return value
    return None


@dataclass(frozen=True)
class MetricSet:
    equity_value: float | None = None
    revenue: float | None = None
    fees: float | None = None
    pe_ratio: float | None = None
    ps_ratio: float | None = None

    def as_dict(self) -> dict[str, float | None]:
        return asdict(self)

    def metric_rows(self) -> list[tuple[MetricType, float | None]]:
        """One (type, value) pair per canonical metric type, in enum order."""
        return [(metric_type, getattr(self, metric_type.value)) for metric_type in MetricType]


def source_for(entity: EntitySpec) -> str:
    return "fmp" if entity.type is EntityType.TRADFI else "coingecko+defillama"


def normalize_tradfi(entity: EntitySpec, fundamentals: TradFiFundamentals | None) -> MetricSet:
    """Canonical metrics for a TradFi entity.

    Raises:
        ConfigurationError: The entity has no ticker.
        UpstreamUnavailableError: No fundamentals record or no market cap.
    """
    if not entity.ticker:
        raise ConfigurationError(f"No ticker defined for {entity.id}")
    if fundamentals is None:
        raise UpstreamUnavailableError("fmp", f"returned no data for {entity.ticker}")

    market_cap = _finite(fundamentals.market_cap)
    if market_cap is None:
        raise UpstreamUnavailableError("fmp", f"quote has no market cap for {entity.ticker}")

    revenue = _finite(fundamentals.ttm_revenue)
    net_income = _finite(fundamentals.ttm_net_income)

    pe_ratio = _first_positive(fundamentals.pe_ratio_ttm, fundamentals.pe_ratio_key_metrics)
    if pe_ratio is None:
        pe_ratio = safe_ratio(market_cap, net_income)

    ps_ratio = _first_positive(fundamentals.ps_ratio_ttm, fundamentals.ps_ratio_key_metrics)
    if ps_ratio is None:
        ps_ratio = safe_ratio(market_cap, revenue)

    return MetricSet(
        equity_value=market_cap,
        revenue=revenue,
        fees=revenue,
        pe_ratio=pe_ratio,
        ps_ratio=ps_ratio,
    )


def adjusted_revenue(
    entity_id: str, raw_revenue: float | None, adjustments: Mapping[str, float] = REVENUE_ADJUSTMENTS
) -> float | None:
    """Apply the entity's revenue multiplier (1.0 when none is configured)."""
    raw_revenue = _finite(raw_revenue)
    if raw_revenue is None:
        return None
    return raw_revenue * revenue_multiplier(entity_id, adjustments)


def normalize_defi(
    entity: EntitySpec,
    token: DeFiTokenValuation | None,
    fees: DeFiFeesRevenue | None,
    *,
    adjustments: Mapping[str, float] = REVENUE_ADJUSTMENTS,
) -> MetricSet:
    """Canonical metrics for a DeFi entity.

    Either sub-record may be None; the fields it would have provided become None.

    Raises:
        ConfigurationError: The entity has neither a CoinGecko nor a DefiLlama id.
        UpstreamUnavailableError: Both sub-records are None.
    """
    if not (entity.coingecko_id or entity.defillama_id):
        raise ConfigurationError(f"No CoinGecko or DefiLlama id defined for {entity.id}")
    if token is None and fees is None:
        raise UpstreamUnavailableError("coingecko+defillama", f"both providers returned no data for {entity.id}")

    equity_value = None
    if token is not None:
        equity_value = _finite(token.fdv)
        if equity_value is None:
            equity_value = _finite(token.market_cap)

    annualized_fees = _finite(fees.annualized_fees) if fees is not None else None
    revenue = adjusted_revenue(entity.id, fees.annualized_revenue, adjustments) if fees is not None else None

    return MetricSet(
        equity_value=equity_value,
        revenue=revenue,
        fees=annualized_fees,
        pe_ratio=safe_ratio(equity_value, revenue),
        ps_ratio=safe_ratio(equity_value, annualized_fees),
    )


@dataclass(frozen=True)
class ProviderPayload:
    """Fresh provider records for one entity, as fetched by the driver."""

    fundamentals: TradFiFundamentals | None = None
    token: DeFiTokenValuation | None = None
    fees: DeFiFeesRevenue | None = None

    def raw(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.fundamentals is not None:
            out["fmp"] = self.fundamentals.raw
        if self.token is not None:
            out["coingecko"] = self.token.raw
        if self.fees is not None:
            out["defillama"] = self.fees.raw
        return out


def normalize(
    entity: EntitySpec, payload: ProviderPayload, *, adjustments: Mapping[str, float] = REVENUE_ADJUSTMENTS
) -> MetricSet:
    if entity.type is EntityType.TRADFI:
        return normalize_tradfi(entity, payload.fundamentals)
    return normalize_defi(entity, payload.token, payload.fees, adjustments=adjustments)
