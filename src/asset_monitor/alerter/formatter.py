"""Report formatter for cycle results and rolling summaries.

Messages are plain text so they render the same in Telegram, logs and
terminals.
"""

from __future__ import annotations

from decimal import Decimal

from asset_monitor.models import CycleResult, CycleState
from asset_monitor.summary import Summary

NOT_AVAILABLE = "n/a"
MAX_LISTED_FAILURES = 10


def truncate_address(address: str, chars: int = 6) -> str:
    """Truncate a long address to ``abcdef...uvwxyz`` format."""
    if len(address) < chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def format_usd(amount: Decimal | None) -> str:
    """Format a USD amount with commas and 2 decimal places."""
    if amount is None:
        return NOT_AVAILABLE
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_percent(value: Decimal | None) -> str:
    if value is None:
        return NOT_AVAILABLE
    return f"{value:+.2f}%"


def format_change(current: Decimal | None, previous: Decimal | None) -> str:
    """Format ``previous`` with the change from it to ``current``."""
    if previous is None:
        return NOT_AVAILABLE
    if current is None:
        return format_usd(previous)
    delta = current - previous
    sign = "+" if delta >= 0 else "-"
    return f"{format_usd(previous)} ({sign}${abs(delta):,.2f})"


def format_cycle_result(result: CycleResult) -> str:
    """Build the cycle report sent after every scan."""
    if result.state is CycleState.COMPLETED and result.all_scanners_failed:
        headline = "Asset scan completed, but every scanner failed"
    elif result.state is CycleState.COMPLETED:
        headline = "Asset scan completed"
    else:
        headline = f"Asset scan {result.state.value}"

    lines = [
        headline,
        "=" * len(headline),
        f"Batch: #{result.batch_id}",
        f"Started: {result.started_at:%Y-%m-%d %H:%M:%S} UTC",
        f"Duration: {result.duration_seconds:.1f}s",
        f"Snapshots: {result.snapshot_count}",
        f"Scanners: {result.scanner_count - result.failed_scanner_count}/{result.scanner_count} ok",
    ]
    if result.failed_query_count:
        lines.append(f"Failed queries: {result.failed_query_count}")
    if result.skipped_target_count:
        lines.append(f"Targets without scanner: {result.skipped_target_count}")

    if result.failures:
        lines.append("")
        lines.append("Failures:")
        for failure in result.failures[:MAX_LISTED_FAILURES]:
            target = f" {truncate_address(failure.address)}" if failure.address else ""
            lines.append(
                f"- [{failure.stage}] {failure.chain}/{failure.scanner_type}{target}: {failure.message}"
            )
        hidden = len(result.failures) - MAX_LISTED_FAILURES
        if hidden > 0:
            lines.append(f"- ... and {hidden} more")

    return "\n".join(lines)


def format_summary(summary: Summary) -> str:
    """Build the rolling summary report."""
    current = summary.current_usd_value
    last_scanned = (
        f"{summary.last_scanned_at:%Y-%m-%d %H:%M:%S} UTC" if summary.last_scanned_at else NOT_AVAILABLE
    )
    thirty_day_range = (
        f"{format_usd(summary.thirty_day_low)} - {format_usd(summary.thirty_day_high)}"
        if summary.thirty_day_range is not None
        else NOT_AVAILABLE
    )

    lines = [
        "Portfolio summary",
        "=================",
        f"Current value: {format_usd(current)}",
        f"1 day ago: {format_change(current, summary.one_day_ago_usd_value)}",
        f"7 days ago: {format_change(current, summary.seven_day_ago_usd_value)}",
        f"30 days ago: {format_change(current, summary.thirty_day_ago_usd_value)}",
        f"30-day range: {thirty_day_range}",
        "",
        f"Total inflow: {format_usd(summary.total_inflow)}",
        f"Total outflow: {format_usd(summary.total_outflow)}",
        f"Net inflow: {format_usd(summary.net_inflow)}",
        f"PnL: {format_percent(summary.pnl_percent)}",
        "",
        f"Last scanned: {last_scanned}",
    ]
    return "\n".join(lines)
