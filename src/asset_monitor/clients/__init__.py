"""Read-only chain API clients."""

from asset_monitor.clients.base import (
    ChainClientError,
    JsonHttpClient,
    NotFoundError,
    TransientClientError,
)
from asset_monitor.clients.blockfrost import BlockfrostClient
from asset_monitor.clients.cosmos import CosmosLcdClient
from asset_monitor.clients.evm import EvmClient
from asset_monitor.clients.ripple import RippleClient

__all__ = [
    "BlockfrostClient",
    "ChainClientError",
    "CosmosLcdClient",
    "EvmClient",
    "JsonHttpClient",
    "NotFoundError",
    "RippleClient",
    "TransientClientError",
]
