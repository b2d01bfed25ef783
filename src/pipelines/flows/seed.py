"""Prefect flow: initialize the schema and seed the catalog.

Usage:
    python -m src.pipelines.flows.seed            # entities and pairs only
    python -m src.pipelines.flows.seed --mock     # also add mock metrics
    python -m src.pipelines.flows.seed --reset    # drop all tables first
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Iterable

from prefect import flow

from src.core.catalog import PAIRS, get_all_entities
from src.core.log import get_logger
from src.services.normalizer import MetricSet, safe_ratio
from src.services.snapshot_store import SnapshotStore

MOCK_SOURCE = "mock"

# Approximate real-world figures (equity value, annual revenue, annual fees),
# for development only.
MOCK_FIGURES: dict[str, tuple[float, float, float]] = {
    # TradFi
    "nasdaq": (42_000_000_000, 6_500_000_000, 3_200_000_000),
    "jpmorgan": (580_000_000_000, 130_000_000_000, 45_000_000_000),
    "blackrock": (130_000_000_000, 18_000_000_000, 12_000_000_000),
    "apollo": (75_000_000_000, 25_000_000_000, 8_000_000_000),
    "ibkr": (45_000_000_000, 4_500_000_000, 2_800_000_000),
    "statestreet": (26_000_000_000, 12_000_000_000, 6_000_000_000),
    "cme": (85_000_000_000, 5_600_000_000, 4_200_000_000),
    "tradeweb": (25_000_000_000, 1_400_000_000, 900_000_000),
    "marketaxess": (10_000_000_000, 750_000_000, 450_000_000),
    "cboe": (20_000_000_000, 4_000_000_000, 2_500_000_000),
    # DeFi (FDV and annualized figures)
    "uniswap": (8_500_000_000, 800_000_000, 1_200_000_000),
    "aave": (3_200_000_000, 250_000_000, 400_000_000),
    "lido": (2_800_000_000, 120_000_000, 150_000_000),
    "ondo": (4_500_000_000, 45_000_000, 30_000_000),
    "hyperliquid": (12_000_000_000, 350_000_000, 500_000_000),
    "makerdao": (2_000_000_000, 280_000_000, 180_000_000),
    "gmx": (450_000_000, 85_000_000, 120_000_000),
    "curve": (350_000_000, 25_000_000, 45_000_000),
    "pendle": (650_000_000, 55_000_000, 70_000_000),
    "jupiter": (1_200_000_000, 90_000_000, 140_000_000),
}


def mock_metric_set(equity_value: float, revenue: float, fees: float) -> MetricSet:
    return MetricSet(
        equity_value=equity_value,
        revenue=revenue,
        fees=fees,
        pe_ratio=safe_ratio(equity_value, revenue),
        ps_ratio=safe_ratio(equity_value, fees),
    )


async def seed_catalog(store: SnapshotStore) -> tuple[int, int]:
    """Upsert every catalog entity and pair. Returns (entities, pairs)."""
    logger = get_logger(__name__)
    entities = get_all_entities()
    for entity in entities:
        await store.upsert_entity(entity)
        logger.info(f"  - {entity.name} ({entity.type.value})")
    for pair in PAIRS:
        await store.upsert_pair(pair)
        logger.info(f"  - #{pair.id}: {pair.tradfi.name} vs {pair.defi.name}")
    return len(entities), len(PAIRS)


async def seed_mock_metrics(store: SnapshotStore, *, captured_at: datetime | None = None) -> int:
    """Write one mock snapshot with five metrics per catalog entity."""
    logger = get_logger(__name__)
    captured_at = captured_at or datetime.now(timezone.utc)
    for entity_id, (equity_value, revenue, fees) in MOCK_FIGURES.items():
        metrics = mock_metric_set(equity_value, revenue, fees)
        snapshot_id = await store.insert_snapshot(entity_id, captured_at, MOCK_SOURCE, metrics.as_dict())
        await store.insert_metrics(snapshot_id, metrics.metric_rows())
        pe = f"{metrics.pe_ratio:.1f}" if metrics.pe_ratio is not None else "N/A"
        ps = f"{metrics.ps_ratio:.1f}" if metrics.ps_ratio is not None else "N/A"
        logger.info(f"  - {entity_id}: P/E={pe}, P/S={ps}")
    return len(MOCK_FIGURES)


async def seed_database(store: SnapshotStore, *, reset: bool = False, mock: bool = False) -> None:
    logger = get_logger(__name__)
    if reset:
        logger.info("Dropping existing tables...")
        await store.drop_all_tables()

    logger.info("Initializing schema...")
    await store.initialize_schema()

    logger.info("Seeding entities and pairs...")
    await seed_catalog(store)

    if mock:
        logger.info("Seeding mock metrics...")
        await seed_mock_metrics(store)

    logger.info("Database seeded successfully")


@flow(name="seed-valuation-catalog", log_prints=True)
async def seed_flow(*, reset: bool = False, mock: bool = False) -> None:
    async with SnapshotStore() as store:
        await seed_database(store, reset=reset, mock=mock)


def _parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Initialize the schema and seed the pairs catalog")
    p.add_argument("--reset", action="store_true", help="Drop all tables before seeding.")
    p.add_argument("--mock", action="store_true", help="Add mock metrics for development.")
    return p.parse_args(list(argv) if argv is not None else None)


async def _run(reset: bool, mock: bool) -> None:
    async with SnapshotStore() as store:
        await seed_database(store, reset=reset, mock=mock)


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(argv)
    asyncio.run(_run(reset=args.reset, mock=args.mock))
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stdout)
    raise SystemExit(main())
