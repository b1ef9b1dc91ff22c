"""Binance spot ticker price source."""

from __future__ import annotations

import logging
from decimal import Decimal

import httpx

from asset_monitor.pricing.base import DEFAULT_REQUEST_TIMEOUT, HttpPriceSource, PriceSourceError
from asset_monitor.ratelimit import KeyedRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.binance.com"
DEFAULT_QUOTE_ASSET = "USDT"


class BinancePriceSource(HttpPriceSource):
    """Prices assets from the Binance ``<CODE><QUOTE>`` spot ticker.

    The quote asset (USDT by default) is treated as a USD proxy and is not
    priced against itself.
    """

    name = "binance"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        quote_asset: str = DEFAULT_QUOTE_ASSET,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        rate_limiter: KeyedRateLimiter | None = None,
        rate_limiter_key: str | None = None,
    ) -> None:
        super().__init__(
            base_url,
            client=client,
            timeout=timeout,
            rate_limiter=rate_limiter,
            rate_limiter_key=rate_limiter_key,
        )
        self._quote = quote_asset.upper()

    async def translate_code(self, code: str) -> str | None:
        key = code.upper()
        if not key or key == self._quote:
            return None
        return f"{key}{self._quote}"

    async def fetch_price(self, source_id: str) -> Decimal | None:
        try:
            payload = await self._get_json("/api/v3/ticker/price", params={"symbol": source_id})
        except PriceSourceError as e:
            # Binance answers 400 "Invalid symbol" for pairs it does not list.
            cause = e.__cause__
            if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 400:
                logger.debug("Binance does not list %s", source_id)
                return None
            raise

        if not isinstance(payload, dict) or payload.get("price") is None:
            return None
        return Decimal(str(payload["price"]))
