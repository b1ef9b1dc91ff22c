"""Initial schema for asset reference data, scanning and the flow ledger.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLite stores NUMERIC as a float; keep exact decimal strings there.
MONEY = sa.Numeric(65, 30).with_variant(sa.Text(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "asset_infos",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("chain", sa.String(64), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("address", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chain", "code", name="uq_asset_infos_chain_code"),
    )
    op.create_index("idx_asset_infos_chain_type", "asset_infos", ["chain", "type"])

    op.create_table(
        "asset_groups",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "asset_scanner_configs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("chain", sa.String(64), nullable=False),
        sa.Column("scanner_type", sa.String(32), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_asset_scanner_configs_chain_type", "asset_scanner_configs", ["chain", "scanner_type"]
    )

    op.create_table(
        "asset_scanner_endpoints",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("scanner_config_id", sa.Integer(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("api_key", sa.Text(), nullable=True),
        sa.Column("rate_limiter_key", sa.String(128), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["scanner_config_id"], ["asset_scanner_configs.id"], ondelete="CASCADE"
        ),
    )
    op.create_index(
        "idx_asset_scanner_endpoints_config", "asset_scanner_endpoints", ["scanner_config_id"]
    )

    op.create_table(
        "asset_queries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("chain", sa.String(64), nullable=False),
        sa.Column("address", sa.String(128), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["group_id"], ["asset_groups.id"]),
        sa.UniqueConstraint("chain", "address", name="uq_asset_queries_chain_address"),
    )

    op.create_table(
        "asset_snapshot_batches",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("scan_started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scan_finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scanner_count", sa.Integer(), nullable=False),
        sa.Column("failed_scanner_count", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_asset_snapshot_batches_started", "asset_snapshot_batches", ["scan_started_at"]
    )

    op.create_table(
        "asset_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("chain", sa.String(64), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("state", sa.String(32), nullable=False),
        sa.Column("quantity", MONEY, nullable=False),
        sa.Column("usd_value", MONEY, nullable=False),
        sa.Column("usd_value_per_quantity", MONEY, nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("address", sa.String(128), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["batch_id"], ["asset_snapshot_batches.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_asset_snapshots_batch", "asset_snapshots", ["batch_id"])

    op.create_table(
        "asset_flows",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("from_group_id", sa.Integer(), nullable=True),
        sa.Column("to_group_id", sa.Integer(), nullable=True),
        sa.Column("usd_value", MONEY, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["from_group_id"], ["asset_groups.id"]),
        sa.ForeignKeyConstraint(["to_group_id"], ["asset_groups.id"]),
        sa.CheckConstraint(
            "from_group_id IS NOT NULL OR to_group_id IS NOT NULL",
            name="ck_asset_flows_has_side",
        ),
        sa.CheckConstraint("CAST(usd_value AS NUMERIC) > 0", name="ck_asset_flows_positive"),
    )
    op.create_index("idx_asset_flows_occurred", "asset_flows", ["occurred_at"])


def downgrade() -> None:
    op.drop_index("idx_asset_flows_occurred", table_name="asset_flows")
    op.drop_table("asset_flows")
    op.drop_index("idx_asset_snapshots_batch", table_name="asset_snapshots")
    op.drop_table("asset_snapshots")
    op.drop_index("idx_asset_snapshot_batches_started", table_name="asset_snapshot_batches")
    op.drop_table("asset_snapshot_batches")
    op.drop_table("asset_queries")
    op.drop_index("idx_asset_scanner_endpoints_config", table_name="asset_scanner_endpoints")
    op.drop_table("asset_scanner_endpoints")
    op.drop_index("idx_asset_scanner_configs_chain_type", table_name="asset_scanner_configs")
    op.drop_table("asset_scanner_configs")
    op.drop_table("asset_groups")
    op.drop_index("idx_asset_infos_chain_type", table_name="asset_infos")
    op.drop_table("asset_infos")
