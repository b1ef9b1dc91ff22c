"""USD price resolution for scanned assets."""

from asset_monitor.pricing.base import (
    HttpPriceSource,
    PriceSource,
    PriceSourceError,
    PriceUnavailable,
)
from asset_monitor.pricing.binance import BinancePriceSource
from asset_monitor.pricing.coingecko import CoinGeckoPriceSource
from asset_monitor.pricing.resolver import PriceResolver
from asset_monitor.pricing.static import StaticPriceSource

__all__ = [
    "BinancePriceSource",
    "CoinGeckoPriceSource",
    "HttpPriceSource",
    "PriceResolver",
    "PriceSource",
    "PriceSourceError",
    "PriceUnavailable",
    "StaticPriceSource",
]
