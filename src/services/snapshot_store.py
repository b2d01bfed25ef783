"""Append-only snapshot store.

`SnapshotStore` is an explicitly constructed handle around one async engine.
Callers open it once per process (or per test), pass it down to the fetch
driver and the aggregator, and close it on shutdown:

    async with SnapshotStore(url) as store:
        snapshot_id = await store.insert_snapshot(...)

The store never retries; retry policy belongs to the caller. Catalog tables
(`entities`, `pairs`) are upserted by primary key. `snapshots` and `metrics`
are insert-only, and "latest" is resolved by `captured_at`, not insertion
order.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import case, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.core.catalog import Category, EntitySpec, EntityType, PairSpec
from src.core.database import Base, create_engine_for
from src.models.valuation import Entity, Metric, Pair, Snapshot
from src.schemas.metrics import (
    DEFAULT_HISTORY_LIMIT,
    EntityMetrics,
    HistoricalDataPoint,
    MetricType,
    SnapshotInfo,
    StoredPair,
)


def as_utc(value: datetime) -> datetime:
    """Timezone-aware UTC datetime. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class SnapshotStore:
    def __init__(self, database_url: str | None = None, *, engine: AsyncEngine | None = None) -> None:
        self._database_url = database_url
        self._engine: AsyncEngine | None = engine
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    # --- lifecycle ---------------------------------------------------------

    async def open(self) -> "SnapshotStore":
        if self._engine is None:
            self._engine = create_engine_for(self._database_url)
        if self._sessionmaker is None:
            self._sessionmaker = async_sessionmaker(bind=self._engine, class_=AsyncSession, expire_on_commit=False)
        return self

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    async def __aenter__(self) -> "SnapshotStore":
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._sessionmaker is not None

    def _session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise RuntimeError("SnapshotStore is not open; call `await store.open()` first")
        return self._sessionmaker()

    def _require_engine(self) -> AsyncEngine:
        if self._engine is None or self._sessionmaker is None:
            raise RuntimeError("SnapshotStore is not open; call `await store.open()` first")
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._require_engine().dialect.name

    def _insert(self, model: type[Base]):
        """Dialect insert supporting ON CONFLICT DO UPDATE (Postgres, SQLite)."""
        if self.dialect_name == "postgresql":
            return postgresql.insert(model)
        if self.dialect_name == "sqlite":
            return sqlite.insert(model)
        raise NotImplementedError(f"upserts are not supported on {self.dialect_name}")

    # --- schema ------------------------------------------------------------

    async def initialize_schema(self) -> None:
        """Create missing tables and indexes. Safe to run repeatedly."""
        async with self._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all_tables(self) -> None:
        """Drop metrics, snapshots, pairs and entities (children first)."""
        async with self._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    # --- catalog -----------------------------------------------------------

    async def upsert_entity(self, entity: EntitySpec) -> None:
        now = datetime.now(timezone.utc)
        stmt = self._insert(Entity).values(
            id=entity.id,
            name=entity.name,
            type=entity.type.value,
            category=entity.category.value,
            ticker=entity.ticker,
            coingecko_id=entity.coingecko_id,
            defillama_id=entity.defillama_id,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Entity.id],
            set_={
                "name": stmt.excluded.name,
                "type": stmt.excluded.type,
                "category": stmt.excluded.category,
                "ticker": stmt.excluded.ticker,
                "coingecko_id": stmt.excluded.coingecko_id,
                "defillama_id": stmt.excluded.defillama_id,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        async with self._session() as session:
            async with session.begin():
                await session.execute(stmt)

    async def get_entity(self, entity_id: str) -> EntitySpec | None:
        async with self._session() as session:
            row = await session.get(Entity, entity_id)
        if row is None:
            return None
        return EntitySpec(
            id=row.id,
            name=row.name,
            type=EntityType(row.type),
            category=Category(row.category),
            ticker=row.ticker,
            coingecko_id=row.coingecko_id,
            defillama_id=row.defillama_id,
        )

    async def upsert_pair(self, pair: PairSpec) -> None:
        now = datetime.now(timezone.utc)
        stmt = self._insert(Pair).values(
            id=pair.id,
            theme=pair.theme,
            tradfi_id=pair.tradfi.id,
            defi_id=pair.defi.id,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Pair.id],
            set_={
                "theme": stmt.excluded.theme,
                "tradfi_id": stmt.excluded.tradfi_id,
                "defi_id": stmt.excluded.defi_id,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        async with self._session() as session:
            async with session.begin():
                await session.execute(stmt)

    async def get_all_pairs(self) -> list[StoredPair]:
        async with self._session() as session:
            rows = (
                await session.execute(select(Pair.id, Pair.theme, Pair.tradfi_id, Pair.defi_id).order_by(Pair.id))
            ).all()
        return [StoredPair(id=r.id, theme=r.theme, tradfi_id=r.tradfi_id, defi_id=r.defi_id) for r in rows]

    # --- snapshots ---------------------------------------------------------

    async def insert_snapshot(
        self, entity_id: str, captured_at: datetime, source: str, raw_payload: Any
    ) -> str:
        """Insert a new snapshot row and return its generated id.

        Never overwrites: every call adds a new historical row. `raw_payload`
        is stored as JSON text (strings are stored as-is).
        """
        snapshot_id = _new_id()
        raw_json = raw_payload if isinstance(raw_payload, str) else json.dumps(raw_payload, default=str)
        async with self._session() as session:
            async with session.begin():
                session.add(
                    Snapshot(
                        id=snapshot_id,
                        entity_id=entity_id,
                        captured_at=as_utc(captured_at),
                        source=source,
                        raw_json=raw_json,
                        created_at=datetime.now(timezone.utc),
                    )
                )
        return snapshot_id

    @staticmethod
    def _latest_snapshot_id(entity_id: str):
        # Ties on captured_at (a re-run cycle or a backfill) go to the last insert.
        return (
            select(Snapshot.id)
            .where(Snapshot.entity_id == entity_id)
            .order_by(Snapshot.captured_at.desc(), Snapshot.created_at.desc(), Snapshot.id.desc())
            .limit(1)
            .scalar_subquery()
        )

    async def get_latest_snapshot(self, entity_id: str) -> SnapshotInfo | None:
        stmt = select(Snapshot.id, Snapshot.captured_at, Snapshot.source).where(
            Snapshot.id == self._latest_snapshot_id(entity_id)
        )
        async with self._session() as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            return None
        return SnapshotInfo(id=row.id, captured_at=as_utc(row.captured_at), source=row.source)

    async def get_last_update_time(self) -> datetime | None:
        async with self._session() as session:
            value = (await session.execute(select(func.max(Snapshot.captured_at)))).scalar()
        return as_utc(value) if value is not None else None

    # --- metrics -----------------------------------------------------------

    async def insert_metric(self, snapshot_id: str, metric_type: MetricType, value: float | None) -> str:
        metric_id = _new_id()
        async with self._session() as session:
            async with session.begin():
                session.add(
                    Metric(id=metric_id, snapshot_id=snapshot_id, metric_type=MetricType(metric_type).value, value=value)
                )
        return metric_id

    async def insert_metrics(
        self, snapshot_id: str, metrics: Iterable[tuple[MetricType, float | None]]
    ) -> list[str]:
        """Insert one row per metric type in a single transaction.

        Partial lists are accepted. Duplicate types in one call are rejected
        before anything is written.
        """
        rows = [(MetricType(metric_type), value) for metric_type, value in metrics]
        types = [metric_type for metric_type, _ in rows]
        if len(set(types)) != len(types):
            raise ValueError(f"duplicate metric types for snapshot {snapshot_id}: {[t.value for t in types]}")

        ids = [_new_id() for _ in rows]
        async with self._session() as session:
            async with session.begin():
                session.add_all(
                    Metric(id=metric_id, snapshot_id=snapshot_id, metric_type=metric_type.value, value=value)
                    for metric_id, (metric_type, value) in zip(ids, rows)
                )
        return ids

    async def get_latest_metrics(self, entity_id: str) -> EntityMetrics | None:
        """Metric set of the entity's latest snapshot (see `get_latest_snapshot`).

        Returns None when the entity has no snapshot, or when its latest
        snapshot has no metric rows (an orphaned snapshot shows up as a gap;
        older snapshots are not consulted).
        """
        pivots = [
            func.max(case((Metric.metric_type == metric_type.value, Metric.value))).label(metric_type.value)
            for metric_type in MetricType
        ]
        stmt = (
            select(Entity.id, Entity.name, Entity.type, Entity.category, Snapshot.captured_at, *pivots)
            .join(Snapshot, Snapshot.entity_id == Entity.id)
            .join(Metric, Metric.snapshot_id == Snapshot.id)
            .where(Entity.id == entity_id, Snapshot.id == self._latest_snapshot_id(entity_id))
            .group_by(Entity.id, Entity.name, Entity.type, Entity.category, Snapshot.captured_at)
        )
        async with self._session() as session:
            row = (await session.execute(stmt)).mappings().first()
        if row is None:
            return None
        return EntityMetrics(
            entity_id=row["id"],
            name=row["name"],
            type=row["type"],
            category=row["category"],
            captured_at=as_utc(row["captured_at"]),
            **{metric_type.value: row[metric_type.value] for metric_type in MetricType},
        )

    async def get_historical_metrics(
        self, entity_id: str, metric_type: MetricType, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[HistoricalDataPoint]:
        """Up to `limit` most recent non-null values, returned oldest first."""
        if limit < 1:
            return []
        stmt = (
            select(Snapshot.captured_at, Metric.value)
            .join(Metric, Metric.snapshot_id == Snapshot.id)
            .where(
                Snapshot.entity_id == entity_id,
                Metric.metric_type == MetricType(metric_type).value,
                Metric.value.is_not(None),
            )
            .order_by(Snapshot.captured_at.desc(), Snapshot.created_at.desc(), Snapshot.id.desc())
            .limit(limit)
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).all()
        points = [HistoricalDataPoint(date=as_utc(r.captured_at).date().isoformat(), value=r.value) for r in rows]
        points.reverse()
        return points
