"""Tests for the scan orchestrator."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from asset_monitor.alerter.telegram import TelegramNotifier
from asset_monitor.clients.base import ChainClientError
from asset_monitor.config import PricingSettings, Settings, clear_settings_cache
from asset_monitor.models import (
    AssetInfo,
    AssetQuery,
    AssetSnapshot,
    AssetState,
    AssetType,
    CycleState,
    Endpoint,
)
from asset_monitor.monitor import (
    AssetMonitor,
    BatchLifecycleError,
    ScanInProgress,
    build_price_sources,
)
from asset_monitor.pricing import PriceResolver
from asset_monitor.ratelimit import KeyedRateLimiter
from asset_monitor.scanners import BaseAssetScanner, EndpointBinding, ScannerContext, ScannerRegistry
from asset_monitor.storage.database import DatabaseManager
from asset_monitor.storage.repos import (
    AssetQueryRepository,
    AssetScannerConfigRepository,
    AssetSnapshotBatchRepository,
    AssetSnapshotRepository,
)

XRP = AssetInfo(chain="ripple", code="XRP", type=AssetType.NATIVE_TOKEN, id=1)


class StubClient:
    closed = False

    async def aclose(self) -> None:
        self.closed = True


class StubScanner(BaseAssetScanner[StubClient]):
    """Scanner driven by its target addresses.

    ``ok:<n>`` holds ``n`` XRP, ``fail`` raises a client error and ``slow``
    never answers. Endpoints whose URL contains ``broken`` fail init.
    """

    instances: list[StubScanner] = []

    @classmethod
    def create_client(cls, endpoint: Endpoint, context: ScannerContext) -> StubClient:
        return StubClient()

    @classmethod
    def from_config(cls, config, context):
        scanner = super().from_config(config, context)
        cls.instances.append(scanner)  # type: ignore[arg-type]
        return scanner

    async def _init(self) -> None:
        if any("broken" in b.endpoint.url for b in self.bindings):
            raise ChainClientError("node unreachable")

    async def _query(self, target: AssetQuery, binding: EndpointBinding[StubClient]) -> list[AssetSnapshot]:
        if target.address == "fail":
            raise ChainClientError("account lookup failed")
        if target.address == "slow":
            await asyncio.sleep(3600)
        amount = Decimal(target.address.removeprefix("ok:"))
        return [
            self._snapshot(
                XRP,
                state=AssetState.LIQUID,
                quantity=amount,
                price=await self._price("XRP"),
                captured_at=None,
                address=target.address,
            )
        ]


@pytest.fixture
def registry() -> ScannerRegistry:
    StubScanner.instances = []
    registry = ScannerRegistry()
    registry.register("native", "ripple", "cardano")(StubScanner)
    return registry


@pytest.fixture
def make_monitor(db: DatabaseManager, rate_limiter: KeyedRateLimiter, price_resolver: PriceResolver, registry):
    def factory(**kwargs: object) -> AssetMonitor:
        options: dict[str, object] = {
            "rate_limiter": rate_limiter,
            "price_resolver": price_resolver,
            "registry": registry,
            "retry_delay_seconds": 0,
        }
        options.update(kwargs)
        return AssetMonitor(db, **options)  # type: ignore[arg-type]

    return factory


async def configure(
    db: DatabaseManager,
    targets: dict[str, list[str]],
    *,
    endpoints: dict[str, str] | None = None,
) -> None:
    """Add one native scanner config per chain and the given targets."""
    endpoints = endpoints or {}
    async with db.get_async_session() as session:
        configs = AssetScannerConfigRepository(session)
        queries = AssetQueryRepository(session)
        for chain, addresses in targets.items():
            url = endpoints.get(chain, f"https://{chain}.test")
            await configs.add(chain, "native", [Endpoint(url=url)])
            for address in addresses:
                await queries.add(chain, address)


async def wait_for_state(monitor: AssetMonitor, state: CycleState) -> None:
    for _ in range(100):
        if monitor.state is state:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"monitor never reached {state}")


class TestScanCycle:
    def test_initial_state(self, make_monitor) -> None:
        monitor = make_monitor()
        assert monitor.state is CycleState.PENDING
        assert monitor.stats.cycles_completed == 0
        assert not monitor.is_closed

    @pytest.mark.asyncio
    async def test_persists_snapshots_and_closes_batch(self, db: DatabaseManager, make_monitor) -> None:
        await configure(db, {"ripple": ["ok:100", "ok:20"]})
        monitor = make_monitor()

        result = await monitor.scan()

        assert result.state is CycleState.COMPLETED
        assert monitor.state is CycleState.COMPLETED
        assert result.snapshot_count == 2
        assert result.scanner_count == 1
        assert result.failed_scanner_count == 0
        assert result.failures == ()
        assert monitor.stats.cycles_completed == 1
        assert monitor.stats.last_result == result

        async with db.get_async_session() as session:
            batch = await AssetSnapshotBatchRepository(session).get(result.batch_id)
            stored = await AssetSnapshotRepository(session).list_by_batch(result.batch_id)
        assert batch is not None and batch.is_closed
        assert sorted(s.usd_value for s in stored) == [Decimal(10), Decimal(50)]

        summary = await monitor.summary()
        assert summary.current_usd_value == Decimal(60)
        assert all(s.bindings[0].client.closed for s in StubScanner.instances)

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, db: DatabaseManager, make_monitor) -> None:
        await configure(
            db,
            {"ripple": ["ok:100", "fail"], "cardano": ["ok:1"], "solana": ["ok:1"]},
            endpoints={"cardano": "https://broken.test"},
        )
        monitor = make_monitor()

        result = await monitor.scan()

        assert result.state is CycleState.COMPLETED
        assert result.snapshot_count == 1
        assert result.scanner_count == 3
        assert result.failed_scanner_count == 2
        assert result.failed_query_count == 1
        assert not result.all_scanners_failed

        by_chain = {f.chain: f for f in result.failures}
        assert by_chain["cardano"].stage == "init"
        assert by_chain["cardano"].message == "node unreachable"
        assert by_chain["solana"].stage == "init"
        assert by_chain["solana"].message == "No scanner registered for solana/native"
        assert by_chain["ripple"].stage == "query"
        assert by_chain["ripple"].address == "fail"
        assert by_chain["ripple"].message == "account lookup failed"
        assert result.skipped_target_count == 0

    @pytest.mark.asyncio
    async def test_targets_without_scanner_config_are_counted(
        self, db: DatabaseManager, make_monitor, caplog: pytest.LogCaptureFixture
    ) -> None:
        await configure(db, {"ripple": ["ok:2"]})
        async with db.get_async_session() as session:
            queries = AssetQueryRepository(session)
            await queries.add("solana", "sol-1")
            await queries.add("solana", "sol-2")
        monitor = make_monitor()

        with caplog.at_level("WARNING", logger="asset_monitor.monitor"):
            result = await monitor.scan()

        assert result.state is CycleState.COMPLETED
        assert result.snapshot_count == 1
        assert result.skipped_target_count == 2
        assert "No enabled scanner for chain solana; skipping 2 target(s)" in caplog.text

    @pytest.mark.asyncio
    async def test_scanner_whose_targets_all_fail_counts_as_failed(
        self, db: DatabaseManager, make_monitor
    ) -> None:
        await configure(db, {"ripple": ["fail", "fail2"]})
        monitor = make_monitor()

        with patch.object(StubScanner, "_query", AsyncMock(side_effect=ChainClientError("down"))):
            result = await monitor.scan()

        assert result.state is CycleState.COMPLETED
        assert result.failed_scanner_count == 1
        assert result.failed_query_count == 2
        assert result.all_scanners_failed

    @pytest.mark.asyncio
    async def test_query_timeout(self, db: DatabaseManager, make_monitor) -> None:
        await configure(db, {"ripple": ["slow", "ok:4"]})
        monitor = make_monitor(query_timeout_seconds=0.05)

        result = await monitor.scan()

        assert result.snapshot_count == 1
        [failure] = result.failures
        assert failure.address == "slow"
        assert failure.message.startswith("timed out")

    @pytest.mark.asyncio
    async def test_no_configs_still_closes_a_batch(self, db: DatabaseManager, make_monitor) -> None:
        result = await make_monitor().scan()

        assert result.state is CycleState.COMPLETED
        assert result.scanner_count == 0
        assert not result.all_scanners_failed

    @pytest.mark.asyncio
    async def test_scan_in_progress(self, db: DatabaseManager, make_monitor) -> None:
        await configure(db, {"ripple": ["slow"]})
        monitor = make_monitor(query_timeout_seconds=0.2)

        first = asyncio.create_task(monitor.scan())
        await wait_for_state(monitor, CycleState.RUNNING)
        with pytest.raises(ScanInProgress):
            await monitor.scan()

        result = await first
        assert result.state is CycleState.COMPLETED
        assert monitor.stats.cycles_completed == 1

    @pytest.mark.asyncio
    async def test_cancelled_cycle_fails(self, db: DatabaseManager, make_monitor) -> None:
        await configure(db, {"ripple": ["slow"]})
        monitor = make_monitor()

        task = asyncio.create_task(monitor.scan())
        await wait_for_state(monitor, CycleState.RUNNING)
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert monitor.state is CycleState.FAILED
        assert monitor.stats.cycles_failed == 1
        assert all(s.bindings[0].client.closed for s in StubScanner.instances)


class TestBatchLifecycle:
    @pytest.mark.asyncio
    async def test_open_failure(self, db: DatabaseManager, make_monitor) -> None:
        monitor = make_monitor()
        failing = AsyncMock(side_effect=RuntimeError("connection lost"))

        with patch.object(AssetScannerConfigRepository, "list_enabled", failing):
            with pytest.raises(BatchLifecycleError, match="open"):
                await monitor.scan()

        assert monitor.state is CycleState.FAILED
        assert monitor.stats.cycles_failed == 1
        assert monitor.stats.last_error == "Failed to open snapshot batch: connection lost"

    @pytest.mark.asyncio
    async def test_close_failure_leaves_batch_out_of_summary(
        self, db: DatabaseManager, make_monitor
    ) -> None:
        await configure(db, {"ripple": ["ok:100"]})
        monitor = make_monitor()
        failing = AsyncMock(side_effect=RuntimeError("disk full"))

        with patch.object(AssetSnapshotBatchRepository, "close", failing):
            with pytest.raises(BatchLifecycleError):
                await monitor.scan()

        assert monitor.state is CycleState.FAILED
        summary = await monitor.summary()
        assert summary.current_usd_value is None

        # The next cycle runs normally.
        result = await monitor.scan()
        assert result.state is CycleState.COMPLETED
        assert (await monitor.summary()).current_usd_value == Decimal(50)


class TestNotifications:
    @pytest.mark.asyncio
    async def test_report_and_summary_are_sent(self, db: DatabaseManager, make_monitor) -> None:
        await configure(db, {"ripple": ["ok:100"]})
        notifier = MagicMock()
        notifier.send = AsyncMock(return_value=True)
        monitor = make_monitor(notifier=notifier)

        await monitor.scan()

        notifier.send.assert_awaited_once()
        [messages] = notifier.send.await_args.args
        assert len(messages) == 2
        assert messages[0].startswith("Asset scan completed")
        assert "Current value: $50.00" in messages[1]

    @pytest.mark.asyncio
    async def test_summary_can_be_left_out(self, db: DatabaseManager, make_monitor) -> None:
        notifier = MagicMock()
        notifier.send = AsyncMock(return_value=True)
        monitor = make_monitor(notifier=notifier, notify_summary=False)

        await monitor.scan()

        [messages] = notifier.send.await_args.args
        assert len(messages) == 1

    @pytest.mark.asyncio
    async def test_delivery_errors_do_not_fail_the_cycle(
        self, db: DatabaseManager, make_monitor
    ) -> None:
        notifier = MagicMock()
        notifier.send = AsyncMock(side_effect=RuntimeError("boom"))
        monitor = make_monitor(notifier=notifier)

        result = await monitor.scan()
        assert result.state is CycleState.COMPLETED


class TestLedgerAndSummary:
    @pytest.mark.asyncio
    async def test_record_flow_feeds_summary(self, db: DatabaseManager, make_monitor) -> None:
        await configure(db, {"ripple": ["ok:100"]})
        monitor = make_monitor()
        await monitor.record_flow(None, "treasury", Decimal(40), create_group=True)
        await monitor.scan()

        summary = await monitor.summary()
        assert summary.net_inflow == Decimal(40)
        assert summary.current_usd_value == Decimal(50)
        assert summary.pnl_percent == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_native_asset_lookup(self, db: DatabaseManager, native_tokens: None, make_monitor) -> None:
        monitor = make_monitor()
        asset = await monitor._native_asset("ripple")
        assert asset is not None and asset.code == "XRP"
        assert await monitor._native_asset("solana") is None


class TestClose:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_monitor) -> None:
        notifier = MagicMock()
        notifier.aclose = AsyncMock()
        monitor = make_monitor(notifier=notifier)

        await monitor.close()
        await monitor.close()

        assert monitor.is_closed
        notifier.aclose.assert_awaited_once()
        with pytest.raises(RuntimeError, match="closed"):
            await monitor.scan()

    @pytest.mark.asyncio
    async def test_close_waits_for_running_cycle(self, db: DatabaseManager, make_monitor) -> None:
        await configure(db, {"ripple": ["slow"]})
        monitor = make_monitor(query_timeout_seconds=0.1)

        task = asyncio.create_task(monitor.scan())
        await wait_for_state(monitor, CycleState.RUNNING)
        await monitor.close()

        result = await task
        assert result.state is CycleState.COMPLETED

    @pytest.mark.asyncio
    async def test_close_cancels_cycle_after_timeout(self, db: DatabaseManager, make_monitor) -> None:
        await configure(db, {"ripple": ["slow"]})
        monitor = make_monitor()

        task = asyncio.create_task(monitor.scan())
        await wait_for_state(monitor, CycleState.RUNNING)
        await monitor.close(timeout=0.05)

        with pytest.raises(asyncio.CancelledError):
            await task
        assert monitor.state is CycleState.FAILED


class TestFromSettings:
    @pytest.fixture(autouse=True)
    def env(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
        monkeypatch.setenv("PRICE_SOURCES", "coingecko,static")
        monkeypatch.setenv("PRICE_STATIC", "XRP=0.5")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        monkeypatch.setenv("TELEGRAM_CHAT_IDS", "100,200")
        for name in ("REDIS_URL", "DRY_RUN", "RATE_LIMITS"):
            monkeypatch.delenv(name, raising=False)
        clear_settings_cache()
        yield
        clear_settings_cache()

    def test_build_price_sources_keeps_order(self) -> None:
        sources = build_price_sources(PricingSettings())
        assert [s.name for s in sources] == ["coingecko", "static"]

    @pytest.mark.asyncio
    async def test_wires_notifier(self) -> None:
        monitor = AssetMonitor.from_settings(Settings())
        assert isinstance(monitor._notifier, TelegramNotifier)
        assert [s.name for s in monitor._price_resolver.sources] == ["coingecko", "static"]
        await monitor.close()

    @pytest.mark.asyncio
    async def test_dry_run_has_no_notifier(self) -> None:
        monitor = AssetMonitor.from_settings(Settings(), dry_run=True)
        assert monitor._notifier is None
        await monitor.close()
