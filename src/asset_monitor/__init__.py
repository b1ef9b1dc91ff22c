"""Multi-chain crypto asset monitor.

Scans balances across chains, values them in USD, stores point-in-time
snapshot batches and keeps a ledger of value flows between asset groups.
"""

from asset_monitor.clients import ChainClientError, NotFoundError, TransientClientError
from asset_monitor.ledger import FlowLedger, GroupNotFound, InvalidFlowError
from asset_monitor.monitor import AssetMonitor, BatchLifecycleError, ScanInProgress
from asset_monitor.pricing import PriceResolver, PriceSourceError, PriceUnavailable
from asset_monitor.ratelimit import KeyedRateLimiter, RateLimiterClosed, RatePolicy
from asset_monitor.scanners import ScanQueryError, ScannerInitError
from asset_monitor.summary import Summary, SummaryAggregator

__version__ = "0.1.0"

__all__ = [
    "AssetMonitor",
    "BatchLifecycleError",
    "ChainClientError",
    "FlowLedger",
    "GroupNotFound",
    "InvalidFlowError",
    "KeyedRateLimiter",
    "NotFoundError",
    "PriceResolver",
    "PriceSourceError",
    "PriceUnavailable",
    "RateLimiterClosed",
    "RatePolicy",
    "ScanInProgress",
    "ScanQueryError",
    "ScannerInitError",
    "Summary",
    "SummaryAggregator",
    "TransientClientError",
    "__version__",
]
