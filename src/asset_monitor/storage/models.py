"""SQLAlchemy models for persistent storage.

This module defines the database schema for asset reference data, scanner
configuration, scan targets, snapshot batches and the flow ledger.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator, TypeEngine


class Money(TypeDecorator[Decimal]):
    """Exact decimal amount.

    ``NUMERIC(65, 30)`` is wide enough for 18-decimal chain quantities
    multiplied by prices. SQLite stores NUMERIC as a float, so there the
    value is kept as its plain decimal string instead.
    """

    impl = Numeric(65, 30)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[object]:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(Text())
        return dialect.type_descriptor(Numeric(65, 30, asdecimal=True))

    def process_bind_param(self, value: Decimal | None, dialect: Dialect) -> Decimal | str | None:
        if value is None or dialect.name != "sqlite":
            return value
        return format(value if isinstance(value, Decimal) else Decimal(value), "f")

    def process_result_value(self, value: object, dialect: Dialect) -> Decimal | None:
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(str(value))


MONEY = Money()


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class AssetInfoModel(Base):
    """Reference data for one asset on one chain."""

    __tablename__ = "asset_infos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chain: Mapped[str] = mapped_column(String(64), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        UniqueConstraint("chain", "code", name="uq_asset_infos_chain_code"),
        Index("idx_asset_infos_chain_type", "chain", "type"),
    )


class AssetGroupModel(Base):
    """A named logical bucket of holdings that flows move between."""

    __tablename__ = "asset_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class AssetScannerConfigModel(Base):
    """Which scanner runs for a chain."""

    __tablename__ = "asset_scanner_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chain: Mapped[str] = mapped_column(String(64), nullable=False)
    scanner_type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (Index("idx_asset_scanner_configs_chain_type", "chain", "scanner_type"),)


class AssetScannerEndpointModel(Base):
    """An API endpoint bound to a scanner config."""

    __tablename__ = "asset_scanner_endpoints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scanner_config_id: Mapped[int] = mapped_column(
        ForeignKey("asset_scanner_configs.id", ondelete="CASCADE"), nullable=False
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    rate_limiter_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_asset_scanner_endpoints_config", "scanner_config_id"),)


class AssetQueryModel(Base):
    """A scan target: one address on one chain."""

    __tablename__ = "asset_queries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chain: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str] = mapped_column(String(128), nullable=False)
    group_id: Mapped[int | None] = mapped_column(ForeignKey("asset_groups.id"), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (UniqueConstraint("chain", "address", name="uq_asset_queries_chain_address"),)


class AssetSnapshotBatchModel(Base):
    """One scan cycle; open until ``scan_finished_at`` is set."""

    __tablename__ = "asset_snapshot_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scan_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scan_finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scanner_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_scanner_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_asset_snapshot_batches_started", "scan_started_at"),)


class AssetSnapshotModel(Base):
    """One valued position captured within a batch."""

    __tablename__ = "asset_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("asset_snapshot_batches.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    chain: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    usd_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    usd_value_per_quantity: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    address: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (Index("idx_asset_snapshots_batch", "batch_id"),)


class AssetFlowModel(Base):
    """Append-only ledger entry moving USD value between groups.

    A null ``from_group_id`` is an inflow from outside; a null
    ``to_group_id`` is an outflow.
    """

    __tablename__ = "asset_flows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_group_id: Mapped[int | None] = mapped_column(ForeignKey("asset_groups.id"), nullable=True)
    to_group_id: Mapped[int | None] = mapped_column(ForeignKey("asset_groups.id"), nullable=True)
    usd_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        CheckConstraint(
            "from_group_id IS NOT NULL OR to_group_id IS NOT NULL",
            name="ck_asset_flows_has_side",
        ),
        CheckConstraint("CAST(usd_value AS NUMERIC) > 0", name="ck_asset_flows_positive"),
        Index("idx_asset_flows_occurred", "occurred_at"),
    )
