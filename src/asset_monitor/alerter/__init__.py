"""Report formatting and delivery."""

from asset_monitor.alerter.formatter import format_cycle_result, format_summary, format_usd
from asset_monitor.alerter.telegram import Notifier, TelegramNotifier

__all__ = [
    "Notifier",
    "TelegramNotifier",
    "format_cycle_result",
    "format_summary",
    "format_usd",
]
