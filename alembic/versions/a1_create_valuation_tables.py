"""Create entities, pairs, snapshots and metrics tables.

Revision ID: a1createvaluation
Revises:
Create Date: 2026-01-20

"""

from alembic import op
import sqlalchemy as sa


revision = "a1createvaluation"
down_revision = None
branch_labels = None
depends_on = None


METRIC_TYPES = ("equity_value", "revenue", "fees", "pe_ratio", "ps_ratio")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "entities",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("ticker", sa.String(16), nullable=True),
        sa.Column("coingecko_id", sa.String(128), nullable=True),
        sa.Column("defillama_id", sa.String(128), nullable=True),
        # Keep timestamps as the last columns
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("type IN ('tradfi', 'defi')", name="ck_entities_type"),
    )
    op.create_index("idx_entities_type", "entities", ["type"])

    op.create_table(
        "pairs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("theme", sa.String(255), nullable=False),
        sa.Column("tradfi_id", sa.String(64), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("defi_id", sa.String(64), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "snapshots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("entity_id", sa.String(64), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(64), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "idx_snapshots_entity_captured",
        "snapshots",
        ["entity_id", sa.text("captured_at DESC")],
    )

    metric_types_sql = ", ".join(f"'{m}'" for m in METRIC_TYPES)
    op.create_table(
        "metrics",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("snapshot_id", sa.String(36), sa.ForeignKey("snapshots.id"), nullable=False),
        sa.Column("metric_type", sa.String(20), nullable=False),
        sa.Column("value", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(f"metric_type IN ({metric_types_sql})", name="ck_metrics_metric_type"),
        sa.UniqueConstraint("snapshot_id", "metric_type", name="uq_metrics_snapshot_type"),
    )
    op.create_index("idx_metrics_snapshot", "metrics", ["snapshot_id"])
    op.create_index("idx_metrics_type_snapshot", "metrics", ["metric_type", "snapshot_id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_metrics_type_snapshot", table_name="metrics")
    op.drop_index("idx_metrics_snapshot", table_name="metrics")
    op.drop_table("metrics")
    op.drop_index("idx_snapshots_entity_captured", table_name="snapshots")
    op.drop_table("snapshots")
    op.drop_table("pairs")
    op.drop_index("idx_entities_type", table_name="entities")
    op.drop_table("entities")
