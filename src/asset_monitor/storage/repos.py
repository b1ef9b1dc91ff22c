"""Repository pattern implementations for data access.

This module provides data access abstractions for asset reference data,
scanner configuration, scan targets, snapshot batches and the flow ledger.
Repositories flush but never commit; the caller owns the transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from asset_monitor.models import (
    AssetInfo,
    AssetQuery,
    AssetScannerConfig,
    AssetSnapshot,
    AssetState,
    AssetType,
    Endpoint,
)
from asset_monitor.storage.models import (
    AssetFlowModel,
    AssetGroupModel,
    AssetInfoModel,
    AssetQueryModel,
    AssetScannerConfigModel,
    AssetScannerEndpointModel,
    AssetSnapshotBatchModel,
    AssetSnapshotModel,
)
from asset_monitor.utils import add_all, utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def as_decimal(value: object) -> Decimal:
    """Coerce a stored amount or aggregate result to Decimal."""
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def _sums_in_sql(session: AsyncSession) -> bool:
    """SQLite SUM works in floating point; money is summed in Python there."""
    return _dialect_name(session) != "sqlite"


def _dialect_insert(session: AsyncSession) -> Any:
    return sqlite_insert if _dialect_name(session) == "sqlite" else postgresql_insert


def _asset_info_from_model(model: AssetInfoModel) -> AssetInfo:
    return AssetInfo(
        chain=model.chain,
        code=model.code,
        type=AssetType(model.type),
        address=model.address,
        id=model.id,
    )


@dataclass
class AssetGroupDTO:
    """Data transfer object for asset groups."""

    id: int
    name: str
    created_at: datetime

    @classmethod
    def from_model(cls, model: AssetGroupModel) -> AssetGroupDTO:
        return cls(id=model.id, name=model.name, created_at=as_utc(model.created_at))


@dataclass
class AssetFlowDTO:
    """Data transfer object for ledger flows."""

    id: int
    from_group_id: int | None
    to_group_id: int | None
    usd_value: Decimal
    occurred_at: datetime
    created_at: datetime

    @classmethod
    def from_model(cls, model: AssetFlowModel) -> AssetFlowDTO:
        return cls(
            id=model.id,
            from_group_id=model.from_group_id,
            to_group_id=model.to_group_id,
            usd_value=as_decimal(model.usd_value),
            occurred_at=as_utc(model.occurred_at),
            created_at=as_utc(model.created_at),
        )


@dataclass
class AssetSnapshotBatchDTO:
    """Data transfer object for snapshot batches."""

    id: int
    scan_started_at: datetime
    scan_finished_at: datetime | None
    scanner_count: int
    failed_scanner_count: int

    @property
    def is_closed(self) -> bool:
        return self.scan_finished_at is not None

    @classmethod
    def from_model(cls, model: AssetSnapshotBatchModel) -> AssetSnapshotBatchDTO:
        return cls(
            id=model.id,
            scan_started_at=as_utc(model.scan_started_at),
            scan_finished_at=as_utc(model.scan_finished_at) if model.scan_finished_at else None,
            scanner_count=model.scanner_count,
            failed_scanner_count=model.failed_scanner_count,
        )


@dataclass(frozen=True)
class BatchAggregate:
    """Total USD value of one closed batch."""

    batch_id: int
    scan_started_at: datetime
    time_used_sec: float
    usd_value: Decimal


class AssetInfoRepository:
    """Repository for asset reference data."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, chain: str, code: str) -> AssetInfo | None:
        result = await self.session.execute(
            select(AssetInfoModel).where(AssetInfoModel.chain == chain, AssetInfoModel.code == code)
        )
        model = result.scalar_one_or_none()
        return _asset_info_from_model(model) if model else None

    async def get_native_token(self, chain: str) -> AssetInfo | None:
        """Get the chain's native token row, if one is registered."""
        result = await self.session.execute(
            select(AssetInfoModel)
            .where(
                AssetInfoModel.chain == chain,
                AssetInfoModel.type == AssetType.NATIVE_TOKEN.value,
            )
            .order_by(AssetInfoModel.id)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return _asset_info_from_model(model) if model else None

    async def get_or_create(
        self,
        chain: str,
        code: str,
        type: AssetType,
        *,
        address: str | None = None,
    ) -> AssetInfo:
        existing = await self.get(chain, code)
        if existing is not None:
            return existing
        model = AssetInfoModel(chain=chain, code=code, type=type.value, address=address)
        self.session.add(model)
        await self.session.flush()
        logger.info("Registered asset %s on %s (%s)", code, chain, type.value)
        return _asset_info_from_model(model)


class AssetScannerConfigRepository:
    """Repository for scanner configuration and endpoints."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(
        self,
        chain: str,
        scanner_type: str,
        endpoints: Iterable[Endpoint],
        *,
        enabled: bool = True,
    ) -> AssetScannerConfig:
        config = AssetScannerConfigModel(chain=chain, scanner_type=scanner_type, is_enabled=enabled)
        self.session.add(config)
        await self.session.flush()

        stored: list[Endpoint] = []
        for endpoint in endpoints:
            model = AssetScannerEndpointModel(
                scanner_config_id=config.id,
                url=endpoint.url,
                api_key=endpoint.api_key,
                rate_limiter_key=endpoint.rate_limiter_key,
                is_enabled=endpoint.enabled,
            )
            self.session.add(model)
            await self.session.flush()
            stored.append(
                Endpoint(
                    url=model.url,
                    api_key=model.api_key,
                    rate_limiter_key=model.rate_limiter_key,
                    enabled=model.is_enabled,
                    id=model.id,
                )
            )
        return AssetScannerConfig(
            chain=chain,
            scanner_type=scanner_type,
            endpoints=tuple(stored),
            enabled=enabled,
            id=config.id,
        )

    async def list_enabled(self) -> list[AssetScannerConfig]:
        """Enabled configs with their enabled endpoints, one per ``(chain, scanner_type)``.

        Rows sharing a key are merged; the lowest id wins.
        """
        result = await self.session.execute(
            select(AssetScannerConfigModel, AssetScannerEndpointModel)
            .outerjoin(
                AssetScannerEndpointModel,
                (AssetScannerEndpointModel.scanner_config_id == AssetScannerConfigModel.id)
                & AssetScannerEndpointModel.is_enabled.is_(True),
            )
            .where(AssetScannerConfigModel.is_enabled.is_(True))
            .order_by(AssetScannerConfigModel.id, AssetScannerEndpointModel.id)
        )

        grouped: dict[tuple[str, str], tuple[int, list[Endpoint]]] = {}
        for config, endpoint in result.all():
            key = (config.chain, config.scanner_type)
            config_id, endpoints = grouped.setdefault(key, (config.id, []))
            if endpoint is not None:
                endpoints.append(
                    Endpoint(
                        url=endpoint.url,
                        api_key=endpoint.api_key,
                        rate_limiter_key=endpoint.rate_limiter_key,
                        enabled=True,
                        id=endpoint.id,
                    )
                )

        return [
            AssetScannerConfig(
                chain=chain,
                scanner_type=scanner_type,
                endpoints=tuple(endpoints),
                enabled=True,
                id=config_id,
            )
            for (chain, scanner_type), (config_id, endpoints) in grouped.items()
        ]


class AssetQueryRepository:
    """Repository for scan targets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(
        self,
        chain: str,
        address: str,
        *,
        group_id: int | None = None,
        enabled: bool = True,
    ) -> AssetQuery:
        model = AssetQueryModel(chain=chain, address=address, group_id=group_id, is_enabled=enabled)
        self.session.add(model)
        await self.session.flush()
        return AssetQuery(chain=chain, address=address, group_id=group_id)

    async def list_enabled(self) -> list[AssetQuery]:
        result = await self.session.execute(
            select(AssetQueryModel)
            .where(AssetQueryModel.is_enabled.is_(True))
            .order_by(AssetQueryModel.id)
        )
        return [
            AssetQuery(chain=m.chain, address=m.address, group_id=m.group_id)
            for m in result.scalars().all()
        ]


class AssetSnapshotBatchRepository:
    """Repository for snapshot batches and their aggregates."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def open(self, started_at: datetime) -> AssetSnapshotBatchDTO:
        model = AssetSnapshotBatchModel(scan_started_at=started_at)
        self.session.add(model)
        await self.session.flush()
        return AssetSnapshotBatchDTO.from_model(model)

    async def get(self, batch_id: int) -> AssetSnapshotBatchDTO | None:
        model = await self.session.get(AssetSnapshotBatchModel, batch_id)
        return AssetSnapshotBatchDTO.from_model(model) if model else None

    async def close(
        self,
        batch_id: int,
        *,
        finished_at: datetime,
        scanner_count: int,
        failed_scanner_count: int,
    ) -> None:
        """Mark a batch closed.

        Raises:
            LookupError: If the batch does not exist or is already closed.
        """
        result = await self.session.execute(
            update(AssetSnapshotBatchModel)
            .where(
                AssetSnapshotBatchModel.id == batch_id,
                AssetSnapshotBatchModel.scan_finished_at.is_(None),
            )
            .values(
                scan_finished_at=finished_at,
                scanner_count=scanner_count,
                failed_scanner_count=failed_scanner_count,
            )
        )
        if result.rowcount != 1:
            raise LookupError(f"Batch {batch_id} is missing or already closed")
        await self.session.flush()

    async def list_aggregates(
        self,
        *,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[BatchAggregate]:
        """Per-batch USD totals over closed batches.

        Args:
            started_after: Only batches with ``scan_started_at`` strictly after this.
            started_before: Only batches with ``scan_started_at`` strictly before this.
            newest_first: Order by ``scan_started_at`` descending.
            limit: Maximum rows.
        """
        batch = AssetSnapshotBatchModel
        stmt = select(batch.id, batch.scan_started_at, batch.scan_finished_at).where(
            batch.scan_finished_at.is_not(None)
        )
        if started_after is not None:
            stmt = stmt.where(batch.scan_started_at > started_after)
        if started_before is not None:
            stmt = stmt.where(batch.scan_started_at < started_before)
        if newest_first:
            stmt = stmt.order_by(batch.scan_started_at.desc(), batch.id.desc())
        else:
            stmt = stmt.order_by(batch.scan_started_at, batch.id)
        if limit is not None:
            stmt = stmt.limit(limit)

        rows = (await self.session.execute(stmt)).all()
        if not rows:
            return []
        totals = await self._totals_by_batch(stmt.with_only_columns(batch.id))

        aggregates: list[BatchAggregate] = []
        for batch_id, started, finished in rows:
            started_utc = as_utc(started)
            aggregates.append(
                BatchAggregate(
                    batch_id=batch_id,
                    scan_started_at=started_utc,
                    time_used_sec=(as_utc(finished) - started_utc).total_seconds(),
                    usd_value=totals.get(batch_id, Decimal(0)),
                )
            )
        return aggregates

    async def _totals_by_batch(self, batch_ids: Select[tuple[int]]) -> dict[int, Decimal]:
        snapshot = AssetSnapshotModel
        if _sums_in_sql(self.session):
            result = await self.session.execute(
                select(snapshot.batch_id, func.sum(snapshot.usd_value))
                .where(snapshot.batch_id.in_(batch_ids.scalar_subquery()))
                .group_by(snapshot.batch_id)
            )
            return {batch_id: as_decimal(total) for batch_id, total in result.all()}

        result = await self.session.execute(
            select(snapshot.batch_id, snapshot.usd_value).where(
                snapshot.batch_id.in_(batch_ids.scalar_subquery())
            )
        )
        values: dict[int, list[Decimal]] = {}
        for batch_id, value in result.all():
            values.setdefault(batch_id, []).append(value)
        return {batch_id: add_all(batch_values) for batch_id, batch_values in values.items()}

    async def latest_aggregate(self, *, started_before: datetime | None = None) -> BatchAggregate | None:
        rows = await self.list_aggregates(started_before=started_before, newest_first=True, limit=1)
        return rows[0] if rows else None


class AssetSnapshotRepository:
    """Repository for snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, batch_id: int, snapshots: Iterable[AssetSnapshot]) -> int:
        models = [
            AssetSnapshotModel(
                batch_id=batch_id,
                name=s.name,
                code=s.code,
                chain=s.chain,
                type=s.type.value,
                state=s.state.value,
                quantity=s.quantity,
                usd_value=s.usd_value,
                usd_value_per_quantity=s.usd_value_per_quantity,
                captured_at=s.captured_at,
                address=s.address,
            )
            for s in snapshots
        ]
        self.session.add_all(models)
        await self.session.flush()
        return len(models)

    async def list_by_batch(self, batch_id: int) -> list[AssetSnapshot]:
        result = await self.session.execute(
            select(AssetSnapshotModel)
            .where(AssetSnapshotModel.batch_id == batch_id)
            .order_by(AssetSnapshotModel.id)
        )
        return [
            AssetSnapshot(
                name=m.name,
                code=m.code,
                chain=m.chain,
                type=AssetType(m.type),
                state=AssetState(m.state),
                quantity=as_decimal(m.quantity),
                usd_value=as_decimal(m.usd_value),
                usd_value_per_quantity=as_decimal(m.usd_value_per_quantity),
                captured_at=as_utc(m.captured_at),
                address=m.address,
                batch_id=m.batch_id,
            )
            for m in result.scalars().all()
        ]


class AssetGroupRepository:
    """Repository for asset groups."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, group_id: int) -> AssetGroupDTO | None:
        model = await self.session.get(AssetGroupModel, group_id)
        return AssetGroupDTO.from_model(model) if model else None

    async def get_by_name(self, name: str) -> AssetGroupDTO | None:
        result = await self.session.execute(select(AssetGroupModel).where(AssetGroupModel.name == name))
        model = result.scalar_one_or_none()
        return AssetGroupDTO.from_model(model) if model else None

    async def create(self, name: str) -> AssetGroupDTO:
        model = AssetGroupModel(name=name)
        self.session.add(model)
        await self.session.flush()
        logger.info("Created asset group %r (id=%d)", name, model.id)
        return AssetGroupDTO.from_model(model)

    async def get_or_create(self, name: str) -> AssetGroupDTO:
        """Return the group named ``name``, creating it if needed.

        The insert is ``ON CONFLICT DO NOTHING`` followed by a re-read, so a
        group created concurrently by another writer is returned as is.
        """
        group = await self.get_by_name(name)
        if group is not None:
            return group
        insert = _dialect_insert(self.session)
        result = await self.session.execute(
            insert(AssetGroupModel)
            .values(name=name, created_at=utc_now())
            .on_conflict_do_nothing(index_elements=[AssetGroupModel.name])
        )
        group = await self.get_by_name(name)
        if group is None:
            raise LookupError(f"Asset group {name!r} vanished after insert")
        if result.rowcount:
            logger.info("Created asset group %r (id=%d)", name, group.id)
        else:
            logger.debug("Asset group %r was created concurrently", name)
        return group


class AssetFlowRepository:
    """Append-only repository for ledger flows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(
        self,
        *,
        from_group_id: int | None,
        to_group_id: int | None,
        usd_value: Decimal,
        occurred_at: datetime,
    ) -> AssetFlowDTO:
        model = AssetFlowModel(
            from_group_id=from_group_id,
            to_group_id=to_group_id,
            usd_value=usd_value,
            occurred_at=occurred_at,
        )
        self.session.add(model)
        await self.session.flush()
        return AssetFlowDTO(
            id=model.id,
            from_group_id=from_group_id,
            to_group_id=to_group_id,
            usd_value=usd_value,
            occurred_at=occurred_at,
            created_at=as_utc(model.created_at),
        )

    async def list_all(self) -> list[AssetFlowDTO]:
        result = await self.session.execute(
            select(AssetFlowModel).order_by(AssetFlowModel.occurred_at, AssetFlowModel.id)
        )
        return [AssetFlowDTO.from_model(m) for m in result.scalars().all()]

    async def totals(self) -> tuple[Decimal, Decimal]:
        """Return ``(total_inflow, total_outflow)`` over all flows."""
        flow = AssetFlowModel
        if _sums_in_sql(self.session):
            inflow = await self.session.scalar(
                select(func.coalesce(func.sum(flow.usd_value), 0)).where(flow.from_group_id.is_(None))
            )
            outflow = await self.session.scalar(
                select(func.coalesce(func.sum(flow.usd_value), 0)).where(flow.to_group_id.is_(None))
            )
            return as_decimal(inflow), as_decimal(outflow)

        result = await self.session.execute(
            select(flow.from_group_id, flow.to_group_id, flow.usd_value).where(
                or_(flow.from_group_id.is_(None), flow.to_group_id.is_(None))
            )
        )
        rows = result.all()
        return (
            add_all(value for from_id, _, value in rows if from_id is None),
            add_all(value for _, to_id, value in rows if to_id is None),
        )
