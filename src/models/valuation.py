"""SQLAlchemy models for the valuation store.

We persist four tables:
- entities: tracked institutions and protocols (catalog, upserted by id)
- pairs: tradfi/defi pairings (catalog, upserted by id)
- snapshots: append-only point-in-time captures of one entity's fetch result
- metrics: derived metric rows, at most one per (snapshot_id, metric_type)

Snapshots and metrics are never updated or deleted; "latest" is always
resolved by `captured_at`.
"""

from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from src.core.database import Base
from src.schemas.metrics import METRIC_TYPES


_METRIC_TYPE_SQL = ", ".join(f"'{m}'" for m in METRIC_TYPES)


class Entity(Base):
    """A tracked TradFi institution or DeFi protocol."""

    __tablename__ = "entities"
    __table_args__ = (
        CheckConstraint("type IN ('tradfi', 'defi')", name="ck_entities_type"),
        Index("idx_entities_type", "type"),
    )

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(10), nullable=False)
    category = Column(String(64), nullable=False)
    ticker = Column(String(16))
    coingecko_id = Column(String(128))
    defillama_id = Column(String(128))

    # Keep as the last columns
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Pair(Base):
    """A thematic tradfi/defi pairing."""

    __tablename__ = "pairs"

    id = Column(Integer, primary_key=True, autoincrement=False)
    theme = Column(String(255), nullable=False)
    tradfi_id = Column(String(64), ForeignKey("entities.id"), nullable=False)
    defi_id = Column(String(64), ForeignKey("entities.id"), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Snapshot(Base):
    """Immutable capture of one entity's raw provider payload."""

    __tablename__ = "snapshots"

    id = Column(String(36), primary_key=True)
    entity_id = Column(String(64), ForeignKey("entities.id"), nullable=False)
    captured_at = Column(DateTime(timezone=True), nullable=False)
    # Provenance tag: "fmp", "coingecko+defillama", "mock"
    source = Column(String(64), nullable=False)
    raw_json = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


Index("idx_snapshots_entity_captured", Snapshot.entity_id, Snapshot.captured_at.desc())


class Metric(Base):
    """One named measurement belonging to a snapshot. `value` is nullable."""

    __tablename__ = "metrics"
    __table_args__ = (
        CheckConstraint(f"metric_type IN ({_METRIC_TYPE_SQL})", name="ck_metrics_metric_type"),
        UniqueConstraint("snapshot_id", "metric_type", name="uq_metrics_snapshot_type"),
        Index("idx_metrics_snapshot", "snapshot_id"),
        Index("idx_metrics_type_snapshot", "metric_type", "snapshot_id"),
    )

    id = Column(String(36), primary_key=True)
    snapshot_id = Column(String(36), ForeignKey("snapshots.id"), nullable=False)
    metric_type = Column(String(20), nullable=False)
    value = Column(Float)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
