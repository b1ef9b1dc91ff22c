"""Scan orchestrator for the asset monitor.

This module provides the AssetMonitor class that wires together scanners,
pricing, persistence and notification, and runs one scan cycle per call to
:meth:`AssetMonitor.scan`.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from asset_monitor.alerter.formatter import format_cycle_result, format_summary
from asset_monitor.alerter.telegram import Notifier, TelegramNotifier
from asset_monitor.config import PricingSettings, Settings, get_settings
from asset_monitor.ledger import FlowLedger, GroupSpec
from asset_monitor.models import (
    AssetInfo,
    AssetQuery,
    AssetScannerConfig,
    AssetSnapshot,
    CycleResult,
    CycleState,
    ScanFailure,
)
from asset_monitor.pricing import (
    BinancePriceSource,
    CoinGeckoPriceSource,
    PriceResolver,
    PriceSource,
    StaticPriceSource,
)
from asset_monitor.ratelimit import KeyedRateLimiter
from asset_monitor.scanners import BaseAssetScanner, ScannerContext, ScanQueryError, default_registry
from asset_monitor.scanners.registry import ScannerRegistry
from asset_monitor.storage.database import DatabaseManager
from asset_monitor.storage.repos import (
    AssetFlowDTO,
    AssetInfoRepository,
    AssetQueryRepository,
    AssetScannerConfigRepository,
    AssetSnapshotBatchRepository,
    AssetSnapshotRepository,
)
from asset_monitor.summary import Summary, SummaryAggregator
from asset_monitor.utils import utc_now

if TYPE_CHECKING:
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT_SECONDS = 120.0


class ScanInProgress(RuntimeError):
    """Raised when a scan is requested while another cycle is running."""


class BatchLifecycleError(Exception):
    """Raised when a batch cannot be opened, persisted or closed."""


@dataclass
class MonitorStats:
    """Statistics across scan cycles."""

    cycles_completed: int = 0
    cycles_failed: int = 0
    last_started_at: datetime | None = None
    last_result: CycleResult | None = None
    last_error: str | None = None


def _describe(error: BaseException) -> str:
    if isinstance(error, KeyError) and error.args:
        return str(error.args[0])
    return str(error) or type(error).__name__


def _targets_without_scanner(configs: list[AssetScannerConfig], targets: list[AssetQuery]) -> int:
    """Count targets on chains with no enabled scanner config, logging each chain."""
    scanned = {config.chain for config in configs}
    skipped: dict[str, int] = defaultdict(int)
    for target in targets:
        if target.chain not in scanned:
            skipped[target.chain] += 1
    for chain, count in sorted(skipped.items()):
        logger.warning("No enabled scanner for chain %s; skipping %d target(s)", chain, count)
    return sum(skipped.values())


def build_price_sources(
    settings: PricingSettings,
    *,
    redis: Redis | None = None,
    rate_limiter: KeyedRateLimiter | None = None,
    timeout: float = 30.0,
) -> list[PriceSource]:
    """Build price sources in the configured fallback order."""
    sources: list[PriceSource] = []
    for name in settings.source_names:
        if name == "coingecko":
            sources.append(
                CoinGeckoPriceSource(
                    settings.coingecko_base_url,
                    api_key=(
                        settings.coingecko_api_key.get_secret_value()
                        if settings.coingecko_api_key
                        else None
                    ),
                    overrides=settings.coingecko_overrides,
                    redis=redis,
                    catalogue_ttl_seconds=settings.coingecko_catalogue_ttl_seconds,
                    timeout=timeout,
                    rate_limiter=rate_limiter,
                )
            )
        elif name == "binance":
            sources.append(
                BinancePriceSource(
                    settings.binance_base_url,
                    quote_asset=settings.binance_quote_asset,
                    timeout=timeout,
                    rate_limiter=rate_limiter,
                )
            )
        elif name == "static":
            sources.append(StaticPriceSource(settings.static_prices))
    return sources


class AssetMonitor:
    """Runs scan cycles and exposes the ledger and summary.

    One cycle: open a batch, initialize one scanner per enabled config, query
    every target concurrently, persist all snapshots and close the batch.
    Scanner and query failures are isolated and reported in the
    :class:`~asset_monitor.models.CycleResult`; only batch lifecycle failures
    fail the cycle.

    Example:
        ```python
        from asset_monitor.monitor import AssetMonitor

        monitor = AssetMonitor.from_settings()
        result = await monitor.scan()
        print(result.snapshot_count, result.failed_scanner_count)
        await monitor.close()
        ```
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        rate_limiter: KeyedRateLimiter,
        price_resolver: PriceResolver,
        registry: ScannerRegistry = default_registry,
        notifier: Notifier | None = None,
        redis: Redis | None = None,
        query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        request_timeout_seconds: float = 30.0,
        notify_summary: bool = True,
    ) -> None:
        """Initialize the monitor.

        Args:
            db: Database manager owning the transaction scope.
            rate_limiter: Limiter every external call is admitted through.
            price_resolver: Resolver shared by all scanners in a cycle.
            registry: Scanner variants by ``(chain, scanner_type)``.
            notifier: Optional destination for cycle reports.
            redis: Optional Redis client, closed with the monitor.
            query_timeout_seconds: Upper bound for one (scanner, target) query.
            max_retries: Retries for transient chain API errors.
            retry_delay_seconds: Base backoff delay between retries.
            request_timeout_seconds: HTTP timeout for chain clients.
            notify_summary: Append the rolling summary to cycle reports.
        """
        self._db = db
        self._rate_limiter = rate_limiter
        self._price_resolver = price_resolver
        self._registry = registry
        self._notifier = notifier
        self._redis = redis
        self._query_timeout = query_timeout_seconds
        self._notify_summary = notify_summary
        self._context = ScannerContext(
            rate_limiter=rate_limiter,
            price_resolver=price_resolver,
            native_asset_lookup=self._native_asset,
            max_retries=max_retries,
            retry_delay_seconds=retry_delay_seconds,
            request_timeout_seconds=request_timeout_seconds,
        )

        self._ledger = FlowLedger(db)
        self._aggregator = SummaryAggregator(db)

        self._state = CycleState.PENDING
        self._stats = MonitorStats()
        self._cycle_task: asyncio.Task[CycleResult] | None = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, dry_run: bool | None = None) -> AssetMonitor:
        """Wire a monitor and all its collaborators from configuration.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, never send notifications. Overrides settings.dry_run.
        """
        settings = settings or get_settings()
        dry_run = dry_run if dry_run is not None else settings.dry_run

        db = DatabaseManager(settings.database.url)
        redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
        rate_limiter = KeyedRateLimiter(
            default_policy=settings.rate_limit.default_policy(),
            policies=settings.rate_limit.policies(),
        )
        price_resolver = PriceResolver(
            build_price_sources(
                settings.pricing,
                redis=redis,
                rate_limiter=rate_limiter,
                timeout=settings.scan.request_timeout_seconds,
            )
        )

        notifier: Notifier | None = None
        telegram = settings.telegram
        if telegram.bot_token is not None and telegram.enabled and not dry_run:
            notifier = TelegramNotifier(telegram.bot_token.get_secret_value(), telegram.chat_id_list)
        elif dry_run:
            logger.info("Dry run: cycle reports will not be sent")

        return cls(
            db,
            rate_limiter=rate_limiter,
            price_resolver=price_resolver,
            notifier=notifier,
            redis=redis,
            query_timeout_seconds=settings.scan.query_timeout_seconds,
            max_retries=settings.scan.max_retries,
            retry_delay_seconds=settings.scan.retry_delay_seconds,
            request_timeout_seconds=settings.scan.request_timeout_seconds,
            notify_summary=settings.scan.notify_summary,
        )

    @property
    def state(self) -> CycleState:
        """State of the current or most recent cycle."""
        return self._state

    @property
    def stats(self) -> MonitorStats:
        return self._stats

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def _native_asset(self, chain: str) -> AssetInfo | None:
        async with self._db.get_async_session() as session:
            return await AssetInfoRepository(session).get_native_token(chain)

    async def scan(self) -> CycleResult:
        """Run one scan cycle.

        Returns:
            The cycle's result, including isolated failures.

        Raises:
            ScanInProgress: If a cycle is already running.
            RuntimeError: If the monitor is closed.
            BatchLifecycleError: If the batch could not be opened or closed.
        """
        if self._closed:
            raise RuntimeError("AssetMonitor is closed")
        if self._state is CycleState.RUNNING:
            raise ScanInProgress("A scan cycle is already running")

        self._state = CycleState.RUNNING
        self._cycle_task = asyncio.create_task(self._run_cycle(), name="asset-monitor-cycle")
        try:
            return await self._cycle_task
        finally:
            if self._state is CycleState.RUNNING:
                # Cancelled before reaching a terminal state.
                self._state = CycleState.FAILED
                self._stats.cycles_failed += 1
            self._cycle_task = None

    def _fail(self, message: str, error: BaseException) -> BatchLifecycleError:
        self._state = CycleState.FAILED
        self._stats.cycles_failed += 1
        self._stats.last_error = f"{message}: {_describe(error)}"
        logger.error("%s: %s", message, error)
        return BatchLifecycleError(message)

    async def _run_cycle(self) -> CycleResult:
        started_at = utc_now()
        self._stats.last_started_at = started_at
        self._price_resolver.reset()
        logger.info("Starting scan cycle")

        try:
            async with self._db.get_async_session() as session:
                configs = await AssetScannerConfigRepository(session).list_enabled()
                targets = await AssetQueryRepository(session).list_enabled()
                batch = await AssetSnapshotBatchRepository(session).open(started_at)
        except Exception as e:
            raise self._fail("Failed to open snapshot batch", e) from e

        logger.info(
            "Opened batch %d: %d scanner config(s), %d target(s)", batch.id, len(configs), len(targets)
        )

        skipped_targets = _targets_without_scanner(configs, targets)
        failures: list[ScanFailure] = []
        scanners, created = await self._start_scanners(configs, failures)
        try:
            snapshots, failed_queries, failed_scanners = await self._run_queries(
                scanners, targets, failures
            )
        finally:
            await self._close_scanners(created)

        failed_scanner_count = (len(configs) - len(scanners)) + failed_scanners
        finished_at = utc_now()
        try:
            async with self._db.get_async_session() as session:
                await AssetSnapshotRepository(session).insert_many(batch.id, snapshots)
                await AssetSnapshotBatchRepository(session).close(
                    batch.id,
                    finished_at=finished_at,
                    scanner_count=len(configs),
                    failed_scanner_count=failed_scanner_count,
                )
        except Exception as e:
            raise self._fail(f"Failed to persist snapshot batch {batch.id}", e) from e

        result = CycleResult(
            batch_id=batch.id,
            state=CycleState.COMPLETED,
            started_at=started_at,
            finished_at=finished_at,
            snapshot_count=len(snapshots),
            scanner_count=len(configs),
            failed_scanner_count=failed_scanner_count,
            failed_query_count=failed_queries,
            failures=tuple(failures),
            skipped_target_count=skipped_targets,
        )
        self._state = CycleState.COMPLETED
        self._stats.cycles_completed += 1
        self._stats.last_result = result

        log = logger.warning if result.all_scanners_failed else logger.info
        log(
            "Scan cycle completed: batch=%d snapshots=%d scanners=%d failed_scanners=%d "
            "failed_queries=%d skipped_targets=%d duration=%.1fs",
            result.batch_id,
            result.snapshot_count,
            result.scanner_count,
            result.failed_scanner_count,
            result.failed_query_count,
            result.skipped_target_count,
            result.duration_seconds,
        )

        await self._notify(result)
        return result

    async def _start_scanners(
        self,
        configs: list[AssetScannerConfig],
        failures: list[ScanFailure],
    ) -> tuple[list[BaseAssetScanner[Any]], list[BaseAssetScanner[Any]]]:
        """Create and initialize scanners.

        Returns:
            ``(ready, created)``: scanners that initialized, and every scanner
            instance that must be closed at the end of the cycle.
        """
        created: list[BaseAssetScanner[Any]] = []
        for config in configs:
            try:
                created.append(self._registry.create(config, self._context))
            except Exception as e:
                logger.warning(
                    "Scanner %s/%s unavailable: %s", config.chain, config.scanner_type, e
                )
                failures.append(
                    ScanFailure(
                        chain=config.chain,
                        scanner_type=config.scanner_type,
                        stage="init",
                        message=_describe(e),
                    )
                )

        async def start(scanner: BaseAssetScanner[Any]) -> bool:
            try:
                await scanner.initialize()
            except Exception as e:
                logger.warning("Scanner %s/%s failed to initialize: %s", scanner.chain, scanner.scanner_type, e)
                failures.append(
                    ScanFailure(
                        chain=scanner.chain,
                        scanner_type=scanner.scanner_type,
                        stage="init",
                        message=_describe(e.__cause__ or e),
                    )
                )
                return False
            return True

        async with asyncio.TaskGroup() as tg:
            started = [(scanner, tg.create_task(start(scanner))) for scanner in created]
        ready = [scanner for scanner, task in started if task.result()]
        return ready, created

    async def _query_one(
        self, scanner: BaseAssetScanner[Any], target: AssetQuery
    ) -> list[AssetSnapshot] | ScanFailure:
        try:
            return await asyncio.wait_for(scanner.query(target), timeout=self._query_timeout)
        except TimeoutError:
            message = f"timed out after {self._query_timeout:.0f}s"
        except ScanQueryError as e:
            message = _describe(e.cause)
        except Exception as e:
            message = _describe(e)
        logger.warning(
            "Query %s/%s %s failed: %s", scanner.chain, scanner.scanner_type, target.address, message
        )
        return ScanFailure(
            chain=scanner.chain,
            scanner_type=scanner.scanner_type,
            stage="query",
            message=message,
            address=target.address,
        )

    async def _run_queries(
        self,
        scanners: list[BaseAssetScanner[Any]],
        targets: list[AssetQuery],
        failures: list[ScanFailure],
    ) -> tuple[list[AssetSnapshot], int, int]:
        """Query every (scanner, target) pair of the same chain concurrently.

        Returns:
            ``(snapshots, failed_query_count, failed_scanner_count)`` where a
            scanner counts as failed when it had targets and every one failed.
        """
        by_chain: dict[str, list[AssetQuery]] = defaultdict(list)
        for target in targets:
            by_chain[target.chain].append(target)

        async with asyncio.TaskGroup() as tg:
            planned = [
                (scanner, [tg.create_task(self._query_one(scanner, t)) for t in by_chain[scanner.chain]])
                for scanner in scanners
            ]

        snapshots: list[AssetSnapshot] = []
        failed_queries = 0
        failed_scanners = 0
        for _scanner, tasks in planned:
            scanner_failures = 0
            for task in tasks:
                outcome = task.result()
                if isinstance(outcome, ScanFailure):
                    failures.append(outcome)
                    scanner_failures += 1
                else:
                    snapshots.extend(outcome)
            failed_queries += scanner_failures
            if tasks and scanner_failures == len(tasks):
                failed_scanners += 1
        return snapshots, failed_queries, failed_scanners

    async def _close_scanners(self, scanners: list[BaseAssetScanner[Any]]) -> None:
        for scanner in scanners:
            await scanner.aclose()

    async def _notify(self, result: CycleResult) -> None:
        if self._notifier is None:
            return
        messages = [format_cycle_result(result)]
        if self._notify_summary:
            try:
                messages.append(format_summary(await self.summary()))
            except Exception as e:
                logger.warning("Failed to compute summary for notification: %s", e)
        try:
            await self._notifier.send(messages)
        except Exception as e:
            logger.warning("Failed to send cycle report: %s", e)

    async def record_flow(
        self,
        from_group: GroupSpec,
        to_group: GroupSpec,
        value: Decimal | int | str,
        *,
        time: datetime | None = None,
        create_group: bool = False,
        session: AsyncSession | None = None,
    ) -> AssetFlowDTO:
        """Record a flow in the ledger. See :meth:`FlowLedger.record_flow`."""
        return await self._ledger.record_flow(
            from_group,
            to_group,
            value,
            time=time,
            create_group=create_group,
            session=session,
        )

    async def summary(self, *, now: datetime | None = None, session: AsyncSession | None = None) -> Summary:
        """Compute rolling summary metrics. See :meth:`SummaryAggregator.summarize`."""
        return await self._aggregator.summarize(now=now, session=session)

    async def close(self, timeout: float | None = None) -> None:
        """Wait for a running cycle, then release every resource.

        Args:
            timeout: Maximum seconds to wait for a running cycle before it is
                cancelled, and for in-flight rate-limited calls.
        """
        if self._closed:
            return
        self._closed = True
        logger.info("Closing asset monitor...")

        task = self._cycle_task
        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                logger.warning("Scan cycle still running after %.1fs, cancelling", timeout)
                task.cancel()
                await asyncio.wait({task})

        await self._rate_limiter.close(timeout=timeout)
        await self._price_resolver.aclose()
        if self._notifier is not None:
            try:
                await self._notifier.aclose()
            except Exception as e:
                logger.warning("Failed to close notifier: %s", e)
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        await self._db.dispose_async()
        logger.info("Asset monitor closed")

    async def __aenter__(self) -> AssetMonitor:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()
