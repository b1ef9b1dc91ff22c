"""Rolling summary metrics derived from batch and ledger history."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from asset_monitor.storage.repos import AssetFlowRepository, AssetSnapshotBatchRepository, BatchAggregate
from asset_monitor.utils import MONEY_CONTEXT, utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from asset_monitor.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

__all__ = [
    "BatchAggregate",
    "FlowTotals",
    "Summary",
    "SummaryAggregator",
    "compute_pnl_percent",
]

PNL_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class FlowTotals:
    """Totals over the whole flow ledger."""

    total_inflow: Decimal
    total_outflow: Decimal

    @property
    def net_inflow(self) -> Decimal:
        return self.total_inflow - self.total_outflow


@dataclass(frozen=True)
class Summary:
    """Rolling metrics at one point in time.

    Value fields are None when no closed batch satisfies their window.
    ``pnl_percent`` is None when it is undefined (no current value or zero
    net inflow).
    """

    total_inflow: Decimal
    total_outflow: Decimal
    net_inflow: Decimal
    last_scanned_at: datetime | None
    current_usd_value: Decimal | None
    one_day_ago_usd_value: Decimal | None
    seven_day_ago_usd_value: Decimal | None
    thirty_day_ago_usd_value: Decimal | None
    thirty_day_high: Decimal | None
    thirty_day_low: Decimal | None
    pnl_percent: Decimal | None

    @property
    def thirty_day_range(self) -> str | None:
        if self.thirty_day_low is None or self.thirty_day_high is None:
            return None
        return f"{_plain(self.thirty_day_low)} - {_plain(self.thirty_day_high)}"


def _plain(value: Decimal) -> str:
    return format(value.normalize(), "f")


def compute_pnl_percent(current: Decimal | None, net_inflow: Decimal) -> Decimal | None:
    """``(current - net_inflow) / net_inflow * 100`` rounded half away from zero.

    Returns None when there is no current value or net inflow is zero.
    """
    if current is None or net_inflow == 0:
        return None
    ratio = MONEY_CONTEXT.divide(current - net_inflow, net_inflow)
    return MONEY_CONTEXT.multiply(ratio, Decimal(100)).quantize(PNL_QUANTUM, rounding=ROUND_HALF_UP)


class SummaryAggregator:
    """Computes :class:`Summary` from persisted history.

    Only closed batches count; a batch left open by a failed cycle never
    contributes a value.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    @asynccontextmanager
    async def _scope(self, session: AsyncSession | None) -> AsyncGenerator[AsyncSession, None]:
        if session is not None:
            yield session
            return
        async with self._db.get_async_session() as own:
            yield own

    async def batch_list(self, *, session: AsyncSession | None = None) -> list[BatchAggregate]:
        """Per-batch totals, newest first."""
        async with self._scope(session) as active:
            return await AssetSnapshotBatchRepository(active).list_aggregates(newest_first=True)

    async def flow_totals(self, *, session: AsyncSession | None = None) -> FlowTotals:
        async with self._scope(session) as active:
            inflow, outflow = await AssetFlowRepository(active).totals()
        return FlowTotals(total_inflow=inflow, total_outflow=outflow)

    async def summarize(
        self,
        *,
        session: AsyncSession | None = None,
        now: datetime | None = None,
    ) -> Summary:
        """Compute the summary as of ``now`` (defaults to the current UTC time)."""
        now = now or utc_now()
        async with self._scope(session) as active:
            batches = AssetSnapshotBatchRepository(active)
            inflow, outflow = await AssetFlowRepository(active).totals()
            current = await batches.latest_aggregate()
            one_day = await batches.latest_aggregate(started_before=now - timedelta(days=1))
            seven_day = await batches.latest_aggregate(started_before=now - timedelta(days=7))
            thirty_day = await batches.latest_aggregate(started_before=now - timedelta(days=30))
            window = await batches.list_aggregates(started_after=now - timedelta(days=30))

        totals = FlowTotals(total_inflow=inflow, total_outflow=outflow)
        window_values = [a.usd_value for a in window]
        current_value = current.usd_value if current else None

        summary = Summary(
            total_inflow=totals.total_inflow,
            total_outflow=totals.total_outflow,
            net_inflow=totals.net_inflow,
            last_scanned_at=current.scan_started_at if current else None,
            current_usd_value=current_value,
            one_day_ago_usd_value=one_day.usd_value if one_day else None,
            seven_day_ago_usd_value=seven_day.usd_value if seven_day else None,
            thirty_day_ago_usd_value=thirty_day.usd_value if thirty_day else None,
            thirty_day_high=max(window_values) if window_values else None,
            thirty_day_low=min(window_values) if window_values else None,
            pnl_percent=compute_pnl_percent(current_value, totals.net_inflow),
        )
        logger.debug("Computed summary as of %s: %s", now.isoformat(), summary)
        return summary
