"""TradFi vs DeFi pairs catalog.

Static metadata for the ten comparison pairs. The catalog is synced into the
`entities` and `pairs` tables at the start of every fetch cycle and by the seed
flow.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from .errors import ConfigurationError


class EntityType(str, Enum):
    TRADFI = "tradfi"
    DEFI = "defi"


class Category(str, Enum):
    EXCHANGE = "Exchange"
    BANK = "Bank"
    LENDING = "Lending"
    ASSET_MANAGEMENT = "Asset Management"
    LIQUID_STAKING = "Liquid Staking"
    ALT_ASSET_MANAGEMENT = "Alt Asset Management"
    RWA_TOKENIZATION = "RWA/Tokenization"
    BROKERAGE = "Brokerage"
    PERPS_DEX = "Perps DEX"
    CUSTODY_BANK = "Custody/Bank"
    STABLECOIN_ISSUER = "Stablecoin Issuer"
    DERIVATIVES = "Derivatives"
    STABLE_SWAP = "Stable Swap"
    RATES_TRADING = "Rates Trading"
    BOND_TRADING = "Bond Trading"
    YIELD_TRADING = "Yield Trading"
    OPTIONS_EXCHANGE = "Options Exchange"
    SYNTHS = "Synths"
    DEX_AGGREGATOR = "DEX Aggregator"


@dataclass(frozen=True)
class EntitySpec:
    id: str
    name: str
    type: EntityType
    category: Category
    # TradFi only
    ticker: str | None = None
    # DeFi only
    coingecko_id: str | None = None
    defillama_id: str | None = None

    def validate(self) -> None:
        if self.type is EntityType.TRADFI and not self.ticker:
            raise ConfigurationError(f"tradfi entity {self.id!r} has no ticker")
        if self.type is EntityType.DEFI and not (self.coingecko_id or self.defillama_id):
            raise ConfigurationError(f"defi entity {self.id!r} has neither a CoinGecko nor a DefiLlama id")


@dataclass(frozen=True)
class PairSpec:
    id: int
    theme: str
    tradfi: EntitySpec
    defi: EntitySpec


def _tradfi(id: str, name: str, category: Category, ticker: str) -> EntitySpec:
    return EntitySpec(id=id, name=name, type=EntityType.TRADFI, category=category, ticker=ticker)


def _defi(id: str, name: str, category: Category, coingecko_id: str, defillama_id: str) -> EntitySpec:
    return EntitySpec(
        id=id,
        name=name,
        type=EntityType.DEFI,
        category=category,
        coingecko_id=coingecko_id,
        defillama_id=defillama_id,
    )


PAIRS: tuple[PairSpec, ...] = (
    PairSpec(
        id=1,
        theme="Market Infrastructure",
        tradfi=_tradfi("nasdaq", "Nasdaq", Category.EXCHANGE, "NDAQ"),
        defi=_defi("uniswap", "Uniswap", Category.EXCHANGE, "uniswap", "uniswap"),
    ),
    PairSpec(
        id=2,
        theme="Money Markets",
        tradfi=_tradfi("jpmorgan", "JPMorgan", Category.BANK, "JPM"),
        defi=_defi("aave", "Aave", Category.LENDING, "aave", "aave"),
    ),
    PairSpec(
        id=3,
        theme="Asset Management",
        tradfi=_tradfi("blackrock", "BlackRock", Category.ASSET_MANAGEMENT, "BLK"),
        defi=_defi("lido", "Lido", Category.LIQUID_STAKING, "lido-dao", "lido"),
    ),
    PairSpec(
        id=4,
        theme="Private Credit",
        tradfi=_tradfi("apollo", "Apollo Global", Category.ALT_ASSET_MANAGEMENT, "APO"),
        defi=_defi("ondo", "Ondo Finance", Category.RWA_TOKENIZATION, "ondo-finance", "ondo-finance"),
    ),
    PairSpec(
        id=5,
        theme="Prime Brokerage",
        tradfi=_tradfi("ibkr", "Interactive Brokers", Category.BROKERAGE, "IBKR"),
        defi=_defi("hyperliquid", "Hyperliquid", Category.PERPS_DEX, "hyperliquid", "hyperliquid"),
    ),
    PairSpec(
        id=6,
        theme="Treasury & Issuance",
        tradfi=_tradfi("statestreet", "State Street", Category.CUSTODY_BANK, "STT"),
        # MKR migrated to SKY; valuation comes from the SKY token.
        defi=_defi("makerdao", "Sky (Maker)", Category.STABLECOIN_ISSUER, "sky", "makerdao"),
    ),
    PairSpec(
        id=7,
        theme="Derivatives",
        tradfi=_tradfi("cme", "CME Group", Category.DERIVATIVES, "CME"),
        defi=_defi("gmx", "GMX", Category.PERPS_DEX, "gmx", "gmx"),
    ),
    PairSpec(
        id=8,
        theme="Deep Liquidity",
        tradfi=_tradfi("tradeweb", "Tradeweb", Category.RATES_TRADING, "TW"),
        defi=_defi("curve", "Curve", Category.STABLE_SWAP, "curve-dao-token", "curve-dex"),
    ),
    PairSpec(
        id=9,
        theme="Fixed Income",
        tradfi=_tradfi("marketaxess", "MarketAxess", Category.BOND_TRADING, "MKTX"),
        defi=_defi("pendle", "Pendle", Category.YIELD_TRADING, "pendle", "pendle"),
    ),
    PairSpec(
        id=10,
        theme="Trade Execution",
        tradfi=_tradfi("cboe", "Cboe Global", Category.OPTIONS_EXCHANGE, "CBOE"),
        defi=_defi("jupiter", "Jupiter", Category.DEX_AGGREGATOR, "jupiter-exchange-solana", "jupiter"),
    ),
)


def get_all_entities() -> list[EntitySpec]:
    """All entities as a flat list: tradfi then defi, in pair order."""
    return [entity for pair in PAIRS for entity in (pair.tradfi, pair.defi)]


def get_categories() -> list[str]:
    """Unique categories in first-seen catalog order."""
    seen: dict[str, None] = {}
    for entity in get_all_entities():
        seen.setdefault(entity.category.value, None)
    return list(seen)


def get_pair_by_id(pair_id: int) -> PairSpec | None:
    return next((pair for pair in PAIRS if pair.id == pair_id), None)


def get_entity_by_id(entity_id: str) -> EntitySpec | None:
    return next((entity for entity in get_all_entities() if entity.id == entity_id), None)


# Multiplier applied to a protocol's reported annualized revenue. Some
# protocols report close to 100% of fees as revenue although the protocol only
# retains a share (GMX keeps ~30%, the rest goes to liquidity providers).
DEFAULT_REVENUE_MULTIPLIER = 1.0

_REVENUE_ADJUSTMENTS: dict[str, float] = {
    "gmx": 0.30,
}


def validate_revenue_adjustments(
    adjustments: Mapping[str, float], entities: list[EntitySpec] | None = None
) -> dict[str, float]:
    """Check every key is a known DeFi entity and every multiplier is in (0, 1].

    Raises:
        ConfigurationError: on an unknown key or an out-of-range multiplier.
    """
    defi_ids = {e.id for e in (entities if entities is not None else get_all_entities()) if e.type is EntityType.DEFI}
    for entity_id, multiplier in adjustments.items():
        if entity_id not in defi_ids:
            raise ConfigurationError(f"revenue adjustment for unknown defi entity {entity_id!r}")
        if not 0 < multiplier <= 1:
            raise ConfigurationError(f"revenue multiplier for {entity_id!r} must be in (0, 1], got {multiplier}")
    return dict(adjustments)


REVENUE_ADJUSTMENTS: Mapping[str, float] = validate_revenue_adjustments(_REVENUE_ADJUSTMENTS)


def revenue_multiplier(entity_id: str, adjustments: Mapping[str, float] = REVENUE_ADJUSTMENTS) -> float:
    return adjustments.get(entity_id, DEFAULT_REVENUE_MULTIPLIER)


def _check_catalog() -> None:
    ids = [p.id for p in PAIRS]
    if sorted(ids) != list(range(1, len(PAIRS) + 1)):
        raise ConfigurationError(f"pair ids must be dense 1..{len(PAIRS)}, got {ids}")
    entity_ids = []
    for entity in get_all_entities():
        entity.validate()
        entity_ids.append(entity.id)
    if len(set(entity_ids)) != len(entity_ids):
        raise ConfigurationError("entity ids must be unique across the catalog")


_check_catalog()
