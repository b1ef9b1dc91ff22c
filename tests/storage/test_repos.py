"""Tests for storage repositories."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from asset_monitor.models import AssetSnapshot, AssetState, AssetType, Endpoint
from asset_monitor.storage.database import DatabaseManager
from asset_monitor.storage.models import AssetFlowModel
from asset_monitor.storage.repos import (
    AssetFlowRepository,
    AssetGroupRepository,
    AssetInfoRepository,
    AssetQueryRepository,
    AssetScannerConfigRepository,
    AssetSnapshotBatchRepository,
    AssetSnapshotRepository,
)

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def snapshot(quantity: str, price: str, *, state: AssetState = AssetState.LIQUID) -> AssetSnapshot:
    return AssetSnapshot.create(
        name="Ripple Native Token",
        code="XRP",
        chain="ripple",
        type=AssetType.NATIVE_TOKEN,
        state=state,
        quantity=Decimal(quantity),
        price=Decimal(price),
        captured_at=T0,
        address="rAddress",
    )


# ============================================================================
# AssetInfoRepository Tests
# ============================================================================


class TestAssetInfoRepository:
    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = AssetInfoRepository(session)
            first = await repo.get_or_create("ripple", "XRP", AssetType.NATIVE_TOKEN)
            second = await repo.get_or_create("ripple", "XRP", AssetType.NATIVE_TOKEN)
        assert first.id == second.id
        assert first.type is AssetType.NATIVE_TOKEN

    @pytest.mark.asyncio
    async def test_get_native_token(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = AssetInfoRepository(session)
            await repo.get_or_create("ethereum", "USDC", AssetType.SECONDARY_TOKEN, address="0xa0b8")
            await repo.get_or_create("ethereum", "ETH", AssetType.NATIVE_TOKEN)

        async with db.get_async_session() as session:
            repo = AssetInfoRepository(session)
            native = await repo.get_native_token("ethereum")
            assert native is not None
            assert native.code == "ETH"
            assert await repo.get_native_token("ripple") is None


# ============================================================================
# Configuration and target Tests
# ============================================================================


class TestAssetScannerConfigRepository:
    @pytest.mark.asyncio
    async def test_list_enabled_filters_configs_and_endpoints(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = AssetScannerConfigRepository(session)
            await repo.add(
                "ripple",
                "native",
                [
                    Endpoint(url="https://s1.ripple.com", rate_limiter_key="xrpl"),
                    Endpoint(url="https://old.ripple.com", enabled=False),
                ],
            )
            await repo.add("cardano", "native", [Endpoint(url="https://bf.test")], enabled=False)
            await repo.add("cosmoshub", "native", [])

        async with db.get_async_session() as session:
            configs = await AssetScannerConfigRepository(session).list_enabled()

        by_chain = {c.chain: c for c in configs}
        assert set(by_chain) == {"ripple", "cosmoshub"}
        assert [e.url for e in by_chain["ripple"].endpoints] == ["https://s1.ripple.com"]
        assert by_chain["ripple"].endpoints[0].rate_limiter_key == "xrpl"
        assert by_chain["cosmoshub"].endpoints == ()

    @pytest.mark.asyncio
    async def test_duplicate_keys_are_merged(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = AssetScannerConfigRepository(session)
            first = await repo.add("ripple", "native", [Endpoint(url="https://a.test")])
            await repo.add("ripple", "native", [Endpoint(url="https://b.test")])

        async with db.get_async_session() as session:
            configs = await AssetScannerConfigRepository(session).list_enabled()

        assert len(configs) == 1
        assert configs[0].id == first.id
        assert [e.url for e in configs[0].endpoints] == ["https://a.test", "https://b.test"]


class TestAssetQueryRepository:
    @pytest.mark.asyncio
    async def test_list_enabled(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            group = await AssetGroupRepository(session).create("cold wallets")
            repo = AssetQueryRepository(session)
            await repo.add("ripple", "rA", group_id=group.id)
            await repo.add("ripple", "rB", enabled=False)
            await repo.add("cardano", "stake1x")

        async with db.get_async_session() as session:
            targets = await AssetQueryRepository(session).list_enabled()

        assert [(t.chain, t.address) for t in targets] == [("ripple", "rA"), ("cardano", "stake1x")]
        assert targets[0].group_id is not None

    @pytest.mark.asyncio
    async def test_chain_address_unique(self, db: DatabaseManager) -> None:
        with pytest.raises(IntegrityError):
            async with db.get_async_session() as session:
                repo = AssetQueryRepository(session)
                await repo.add("ripple", "rA")
                await repo.add("ripple", "rA")


# ============================================================================
# Batch and snapshot Tests
# ============================================================================


class TestAssetSnapshotBatchRepository:
    @pytest.mark.asyncio
    async def test_open_and_close(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            batch = await AssetSnapshotBatchRepository(session).open(T0)
        assert not batch.is_closed

        async with db.get_async_session() as session:
            repo = AssetSnapshotBatchRepository(session)
            await repo.close(
                batch.id, finished_at=T0 + timedelta(seconds=12), scanner_count=3, failed_scanner_count=1
            )

        async with db.get_async_session() as session:
            stored = await AssetSnapshotBatchRepository(session).get(batch.id)
        assert stored is not None
        assert stored.is_closed
        assert stored.scan_started_at == T0
        assert stored.scan_finished_at == T0 + timedelta(seconds=12)
        assert stored.scanner_count == 3
        assert stored.failed_scanner_count == 1

    @pytest.mark.asyncio
    async def test_close_twice_fails(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = AssetSnapshotBatchRepository(session)
            batch = await repo.open(T0)
            await repo.close(batch.id, finished_at=T0, scanner_count=0, failed_scanner_count=0)
            with pytest.raises(LookupError):
                await repo.close(batch.id, finished_at=T0, scanner_count=0, failed_scanner_count=0)

    @pytest.mark.asyncio
    async def test_close_missing_batch_fails(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            with pytest.raises(LookupError):
                await AssetSnapshotBatchRepository(session).close(
                    999, finished_at=T0, scanner_count=0, failed_scanner_count=0
                )

    @pytest.mark.asyncio
    async def test_aggregates_only_closed_batches(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            batches = AssetSnapshotBatchRepository(session)
            snapshots = AssetSnapshotRepository(session)

            closed = await batches.open(T0)
            await snapshots.insert_many(closed.id, [snapshot("100", "0.5"), snapshot("20", "0.5")])
            await batches.close(
                closed.id, finished_at=T0 + timedelta(seconds=30), scanner_count=1, failed_scanner_count=0
            )

            empty = await batches.open(T0 + timedelta(hours=1))
            await batches.close(
                empty.id, finished_at=T0 + timedelta(hours=1), scanner_count=1, failed_scanner_count=1
            )

            still_open = await batches.open(T0 + timedelta(hours=2))
            await snapshots.insert_many(still_open.id, [snapshot("1000", "1")])

        async with db.get_async_session() as session:
            repo = AssetSnapshotBatchRepository(session)
            aggregates = await repo.list_aggregates()
            latest = await repo.latest_aggregate()
            before = await repo.latest_aggregate(started_before=T0 + timedelta(minutes=30))

        assert [a.batch_id for a in aggregates] == [closed.id, empty.id]
        assert aggregates[0].usd_value == Decimal(60)
        assert aggregates[0].time_used_sec == 30.0
        assert aggregates[1].usd_value == Decimal(0)
        assert latest is not None and latest.batch_id == empty.id
        assert before is not None and before.batch_id == closed.id

    @pytest.mark.asyncio
    async def test_aggregate_of_fractional_values_is_exact(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            batches = AssetSnapshotBatchRepository(session)
            batch = await batches.open(T0)
            await AssetSnapshotRepository(session).insert_many(
                batch.id, [snapshot("0.1", "1"), snapshot("0.2", "1"), snapshot("0.000000000000000001", "1")]
            )
            await batches.close(
                batch.id, finished_at=T0 + timedelta(seconds=5), scanner_count=1, failed_scanner_count=0
            )

        async with db.get_async_session() as session:
            latest = await AssetSnapshotBatchRepository(session).latest_aggregate()

        assert latest is not None
        assert latest.usd_value == Decimal("0.300000000000000001")


class TestAssetSnapshotRepository:
    @pytest.mark.asyncio
    async def test_round_trip_keeps_value_invariant(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            batch = await AssetSnapshotBatchRepository(session).open(T0)
            count = await AssetSnapshotRepository(session).insert_many(
                batch.id,
                [snapshot("100", "0.5"), snapshot("2.25", "0.5", state=AssetState.CLAIMABLE)],
            )
        assert count == 2

        async with db.get_async_session() as session:
            stored = await AssetSnapshotRepository(session).list_by_batch(batch.id)

        assert [s.state for s in stored] == [AssetState.LIQUID, AssetState.CLAIMABLE]
        for s in stored:
            assert s.batch_id == batch.id
            assert s.usd_value == s.quantity * s.usd_value_per_quantity
            assert s.captured_at == T0

    @pytest.mark.asyncio
    async def test_eighteen_decimal_quantity_is_exact(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            batch = await AssetSnapshotBatchRepository(session).open(T0)
            await AssetSnapshotRepository(session).insert_many(
                batch.id, [snapshot("1.234567890123456789", "2.5")]
            )

        async with db.get_async_session() as session:
            (stored,) = await AssetSnapshotRepository(session).list_by_batch(batch.id)

        assert stored.quantity == Decimal("1.234567890123456789")
        assert stored.usd_value_per_quantity == Decimal("2.5")
        assert stored.usd_value == Decimal("3.0864197253086419725")
        assert stored.usd_value == stored.quantity * stored.usd_value_per_quantity


# ============================================================================
# Group and flow Tests
# ============================================================================


class TestAssetGroupRepository:
    @pytest.mark.asyncio
    async def test_create_and_lookup(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = AssetGroupRepository(session)
            created = await repo.create("treasury")
            assert (await repo.get(created.id)) == created
            assert (await repo.get_by_name("treasury")) == created
            assert await repo.get_by_name("missing") is None

    @pytest.mark.asyncio
    async def test_name_unique(self, db: DatabaseManager) -> None:
        with pytest.raises(IntegrityError):
            async with db.get_async_session() as session:
                repo = AssetGroupRepository(session)
                await repo.create("treasury")
                await repo.create("treasury")


class TestAssetFlowRepository:
    @pytest.mark.asyncio
    async def test_totals(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            a = await AssetGroupRepository(session).create("a")
            b = await AssetGroupRepository(session).create("b")
            flows = AssetFlowRepository(session)
            await flows.insert(from_group_id=None, to_group_id=a.id, usd_value=Decimal(100), occurred_at=T0)
            await flows.insert(from_group_id=a.id, to_group_id=b.id, usd_value=Decimal(30), occurred_at=T0)
            await flows.insert(from_group_id=b.id, to_group_id=None, usd_value=Decimal(40), occurred_at=T0)

        async with db.get_async_session() as session:
            repo = AssetFlowRepository(session)
            inflow, outflow = await repo.totals()
            flows_list = await repo.list_all()

        assert inflow == Decimal(100)
        assert outflow == Decimal(40)
        assert len(flows_list) == 3

    @pytest.mark.asyncio
    async def test_totals_of_fractional_values_are_exact(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            a = await AssetGroupRepository(session).create("a")
            flows = AssetFlowRepository(session)
            for value in ("0.1", "0.2"):
                await flows.insert(
                    from_group_id=None, to_group_id=a.id, usd_value=Decimal(value), occurred_at=T0
                )
            await flows.insert(
                from_group_id=a.id, to_group_id=None, usd_value=Decimal("0.3"), occurred_at=T0
            )

        async with db.get_async_session() as session:
            inflow, outflow = await AssetFlowRepository(session).totals()

        assert inflow == Decimal("0.3")
        assert outflow == Decimal("0.3")
        assert inflow - outflow == 0

    @pytest.mark.asyncio
    async def test_totals_empty(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            assert await AssetFlowRepository(session).totals() == (Decimal(0), Decimal(0))

    @pytest.mark.asyncio
    async def test_check_constraints(self, db: DatabaseManager) -> None:
        with pytest.raises(IntegrityError):
            async with db.get_async_session() as session:
                session.add(AssetFlowModel(usd_value=Decimal(1), occurred_at=T0))
                await session.flush()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [Decimal(0), Decimal("-0.5")])
    async def test_non_positive_value_rejected(self, db: DatabaseManager, value: Decimal) -> None:
        with pytest.raises(IntegrityError):
            async with db.get_async_session() as session:
                group = await AssetGroupRepository(session).create("a")
                session.add(AssetFlowModel(to_group_id=group.id, usd_value=value, occurred_at=T0))
                await session.flush()
