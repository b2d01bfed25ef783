"""Prefect flow: fetch TradFi and DeFi valuation metrics.

This module implements the fetch cycle:
- Sync the static catalog (entities + pairs) into the store
- For each entity, fetch provider data (FMP for TradFi; CoinGecko + DefiLlama
  for DeFi, concurrently), normalize it, and append a snapshot with its metrics
- Report per-entity failures and send a webhook alert when any entity failed

Entities are processed one at a time with a fixed delay between them to stay
under provider rate limits. The whole cycle runs against a deadline; entities
not reached in time are reported as failed and picked up by the next run.

The flow is designed to run daily. It can also be run as a script:

    python -m src.pipelines.flows.fetch_metrics [--dry-run] [--date=2024-01-31]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from prefect import flow
from sqlalchemy.exc import SQLAlchemyError

from src.core.catalog import PAIRS, EntitySpec, EntityType, get_all_entities
from src.core.config import settings
from src.core.errors import PersistenceError, UpstreamUnavailableError
from src.core.log import get_logger
from src.core.retry import RetryPolicy
from src.schemas.metrics import FetchCycleResponse, FetchFailure
from src.services.alerts import WebhookAlertNotifier
from src.services.coingecko_client import CoinGeckoClient
from src.services.defillama_client import DefiLlamaClient
from src.services.fmp_client import FmpClient
from src.services.normalizer import MetricSet, ProviderPayload, normalize, source_for
from src.services.snapshot_store import SnapshotStore

DEADLINE_EXCEEDED = "deadline exceeded"


def format_currency(value: float | None) -> str:
    """Compact USD string for log lines: $1.2T, $3.4B, $5.6M, $789."""
    if value is None:
        return "N/A"
    if value >= 1e12:
        return f"${value / 1e12:.1f}T"
    if value >= 1e9:
        return f"${value / 1e9:.1f}B"
    if value >= 1e6:
        return f"${value / 1e6:.1f}M"
    return f"${value:.0f}"


def _fmt_ratio(value: float | None) -> str:
    return f"{value:.1f}" if value is not None else "N/A"


@dataclass
class ProviderClients:
    fmp: FmpClient
    coingecko: CoinGeckoClient
    defillama: DefiLlamaClient

    @classmethod
    def from_settings(cls) -> "ProviderClients":
        return cls(
            fmp=FmpClient(
                settings.FMP_API_KEY,
                timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
                debug=settings.FMP_DEBUG,
            ),
            coingecko=CoinGeckoClient(
                settings.COINGECKO_API_KEY,
                timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
                rate_limit_backoff_seconds=settings.COINGECKO_RATE_LIMIT_BACKOFF_SECONDS,
            ),
            defillama=DefiLlamaClient(timeout_seconds=settings.HTTP_TIMEOUT_SECONDS),
        )


def default_persistence_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.DB_RETRY_ATTEMPTS,
        base_delay=settings.DB_RETRY_BASE_DELAY_SECONDS,
        retry_on=(SQLAlchemyError, OSError),
    )


def default_notifier() -> WebhookAlertNotifier | None:
    if not settings.ALERT_WEBHOOK_URL:
        return None
    return WebhookAlertNotifier(settings.ALERT_WEBHOOK_URL)


@dataclass
class EntityFetchResult:
    entity_id: str
    name: str
    type: EntityType
    success: bool
    error: str | None = None
    metrics: MetricSet | None = None
    snapshot_id: str | None = None

    def as_failure(self) -> dict[str, Any]:
        return {"entity_id": self.entity_id, "name": self.name, "error": self.error}


@dataclass
class FetchCycleResult:
    started_at: datetime
    captured_at: datetime
    duration_seconds: float
    dry_run: bool
    results: list[EntityFetchResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return len(self.results) - self.success_count

    @property
    def success(self) -> bool:
        return self.failure_count == 0

    @property
    def failures(self) -> list[dict[str, Any]]:
        return [r.as_failure() for r in self.results if not r.success]

    @property
    def message(self) -> str:
        return f"Fetched {self.success_count}/{len(self.results)} entities"

    def to_response(self) -> FetchCycleResponse:
        return FetchCycleResponse(
            success=self.success,
            message=self.message,
            duration=f"{self.duration_seconds:.1f}s",
            timestamp=self.started_at.isoformat(),
            success_count=self.success_count,
            failure_count=self.failure_count,
            failures=[FetchFailure(**f) for f in self.failures],
        )


async def fetch_entity_payload(entity: EntitySpec, providers: ProviderClients) -> ProviderPayload:
    """Fetch fresh provider records for one entity.

    TradFi entities raise on any FMP failure. For DeFi entities the CoinGecko
    and DefiLlama requests run concurrently and a failure of one of them is
    logged and leaves that side empty; only a failure of both raises.
    """
    logger = get_logger(__name__)

    if entity.type is EntityType.TRADFI:
        if not entity.ticker:
            return ProviderPayload()
        return ProviderPayload(fundamentals=await providers.fmp.fetch_fundamentals(entity.ticker))

    async def _none() -> None:
        return None

    token, fees = await asyncio.gather(
        providers.coingecko.fetch_token_valuation(entity.coingecko_id) if entity.coingecko_id else _none(),
        providers.defillama.get_fees_and_revenue(entity.defillama_id) if entity.defillama_id else _none(),
        return_exceptions=True,
    )

    errors: list[str] = []
    if isinstance(token, BaseException):
        logger.warning(f"CoinGecko fetch failed for {entity.id}: {token}")
        errors.append(str(token))
        token = None
    if isinstance(fees, BaseException):
        logger.warning(f"DefiLlama fetch failed for {entity.id}: {fees}")
        errors.append(str(fees))
        fees = None

    if token is None and fees is None and errors:
        raise UpstreamUnavailableError(
            "coingecko+defillama", f"both providers failed for {entity.id}: " + "; ".join(errors)
        )
    return ProviderPayload(token=token, fees=fees)


async def persist_entity_metrics(
    store: SnapshotStore,
    entity: EntitySpec,
    metrics: MetricSet,
    *,
    captured_at: datetime,
    raw: dict[str, Any],
    retry_policy: RetryPolicy,
) -> str:
    """Write one snapshot and then its metric rows, each under `retry_policy`.

    When the metrics write fails after the snapshot was written, the snapshot
    stays in place without metrics and the error is raised.

    Raises:
        PersistenceError: A write still failed after the last attempt.
    """
    try:
        snapshot_id = await retry_policy.run(
            lambda: store.insert_snapshot(entity.id, captured_at, source_for(entity), raw),
            description=f"insert snapshot for {entity.id}",
        )
        await retry_policy.run(
            lambda: store.insert_metrics(snapshot_id, metrics.metric_rows()),
            description=f"insert metrics for {entity.id}",
        )
    except (SQLAlchemyError, OSError) as exc:
        raise PersistenceError(f"failed to persist {entity.id}: {exc}") from exc
    return snapshot_id


async def process_entity(
    entity: EntitySpec,
    *,
    store: SnapshotStore,
    providers: ProviderClients,
    captured_at: datetime,
    dry_run: bool,
    retry_policy: RetryPolicy,
) -> EntityFetchResult:
    payload = await fetch_entity_payload(entity, providers)
    metrics = normalize(entity, payload)

    snapshot_id = None
    if not dry_run:
        snapshot_id = await persist_entity_metrics(
            store,
            entity,
            metrics,
            captured_at=captured_at,
            raw={"metrics": metrics.as_dict(), "providers": payload.raw()},
            retry_policy=retry_policy,
        )
    return EntityFetchResult(
        entity_id=entity.id,
        name=entity.name,
        type=entity.type,
        success=True,
        metrics=metrics,
        snapshot_id=snapshot_id,
    )


async def sync_catalog(store: SnapshotStore, retry_policy: RetryPolicy) -> None:
    """Create missing tables and upsert every catalog entity and pair."""
    await retry_policy.run(store.initialize_schema, description="initialize schema")
    for entity in get_all_entities():
        await retry_policy.run(lambda e=entity: store.upsert_entity(e), description=f"upsert entity {entity.id}")
    for pair in PAIRS:
        await retry_policy.run(lambda p=pair: store.upsert_pair(p), description=f"upsert pair {pair.id}")


def _failed(entity: EntitySpec, error: str) -> EntityFetchResult:
    return EntityFetchResult(entity_id=entity.id, name=entity.name, type=entity.type, success=False, error=error)


async def run_fetch_cycle(
    *,
    store: SnapshotStore,
    providers: ProviderClients,
    entities: Sequence[EntitySpec] | None = None,
    captured_at: datetime | None = None,
    dry_run: bool = False,
    inter_entity_delay: float | None = None,
    deadline_seconds: float | None = None,
    retry_policy: RetryPolicy | None = None,
    notifier: WebhookAlertNotifier | None = None,
) -> FetchCycleResult:
    """Run one fetch cycle over `entities` (default: the whole catalog).

    Per-entity failures are collected, never raised. With `dry_run`, providers
    are still called and normalized but nothing is written and no alert is sent.
    """
    logger = get_logger(__name__)
    entities = list(entities) if entities is not None else get_all_entities()
    delay = settings.FETCH_INTER_ENTITY_DELAY_SECONDS if inter_entity_delay is None else inter_entity_delay
    deadline = settings.FETCH_DEADLINE_SECONDS if deadline_seconds is None else deadline_seconds
    retry_policy = retry_policy or default_persistence_policy()

    started_at = datetime.now(timezone.utc)
    captured_at = captured_at or started_at
    t0 = time.monotonic()

    logger.info(f"Mode: {'DRY RUN (no database writes)' if dry_run else 'LIVE'}")
    logger.info(f"Date: {captured_at.date().isoformat()}")

    deadline_hit = False
    if not dry_run:
        logger.info("Syncing entities and pairs")
        try:
            await asyncio.wait_for(sync_catalog(store, retry_policy), timeout=deadline)
        except asyncio.TimeoutError:
            logger.error(f"Catalog sync did not finish within the {deadline:.0f}s fetch deadline")
            deadline_hit = True

    results: list[EntityFetchResult] = []
    for index, entity in enumerate(entities):
        remaining = deadline - (time.monotonic() - t0)
        if deadline_hit or remaining <= 0:
            for skipped in entities[index:]:
                results.append(_failed(skipped, DEADLINE_EXCEEDED))
            logger.error(f"Fetch deadline of {deadline:.0f}s exceeded; {len(entities) - index} entities not fetched")
            break

        try:
            result = await asyncio.wait_for(
                process_entity(
                    entity,
                    store=store,
                    providers=providers,
                    captured_at=captured_at,
                    dry_run=dry_run,
                    retry_policy=retry_policy,
                ),
                timeout=remaining,
            )
        except asyncio.TimeoutError:
            result = _failed(entity, DEADLINE_EXCEEDED)
        except Exception as exc:
            result = _failed(entity, str(exc) or type(exc).__name__)
        results.append(result)

        if result.success and result.metrics is not None:
            m = result.metrics
            logger.info(
                f"{entity.name:<25} OK  (EV: {format_currency(m.equity_value)}, "
                f"P/E: {_fmt_ratio(m.pe_ratio)}, P/S: {_fmt_ratio(m.ps_ratio)})"
            )
        else:
            logger.warning(f"{entity.name:<25} FAIL ({result.error})")

        if delay and index < len(entities) - 1:
            await asyncio.sleep(delay)

    cycle = FetchCycleResult(
        started_at=started_at,
        captured_at=captured_at,
        duration_seconds=time.monotonic() - t0,
        dry_run=dry_run,
        results=results,
    )
    logger.info(f"Results: {cycle.success_count} succeeded, {cycle.failure_count} failed")
    for failure in cycle.failures:
        logger.warning(f"  - {failure['name']}: {failure['error']}")

    if cycle.failures and notifier is not None and not dry_run:
        await notifier.send_failures(cycle.failures)
    return cycle


@flow(name="fetch-valuation-metrics", log_prints=True)
async def fetch_metrics_flow(*, dry_run: bool = False, captured_at: datetime | None = None) -> dict[str, Any]:
    """Daily: fetch, normalize and store metrics for every catalog entity.

    Args:
        dry_run: Fetch and normalize only; no database writes and no alert.
        captured_at: Override the snapshot time (backfill/testing).

    Returns:
        The cycle summary as a camelCase dict.
    """
    async with SnapshotStore() as store:
        cycle = await run_fetch_cycle(
            store=store,
            providers=ProviderClients.from_settings(),
            captured_at=captured_at,
            dry_run=dry_run,
            notifier=default_notifier(),
        )
    return cycle.to_response().model_dump(by_alias=True)


def parse_captured_at(value: str) -> datetime:
    """Parse an ISO date or datetime. Naive values are taken to be UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Fetch TradFi and DeFi valuation metrics")
    p.add_argument("--dry-run", action="store_true", help="Fetch and normalize only; do not write to the database.")
    p.add_argument(
        "--date",
        type=parse_captured_at,
        default=None,
        help="Override the captured time (ISO date or datetime, UTC when no offset is given).",
    )
    return p.parse_args(list(argv) if argv is not None else None)


async def _run(dry_run: bool, captured_at: datetime | None) -> int:
    async with SnapshotStore() as store:
        cycle = await run_fetch_cycle(
            store=store,
            providers=ProviderClients.from_settings(),
            captured_at=captured_at,
            dry_run=dry_run,
            notifier=default_notifier(),
        )
    return 0 if cycle.success else 1


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(argv)
    logger = get_logger(__name__)
    if not settings.FMP_API_KEY:
        logger.error("FMP_API_KEY is not set")
        return 1
    return asyncio.run(_run(dry_run=args.dry_run, captured_at=args.date))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stdout)
    raise SystemExit(main())
