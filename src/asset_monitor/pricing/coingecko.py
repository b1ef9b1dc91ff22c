"""CoinGecko price source."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from decimal import Decimal

import httpx
from redis.asyncio import Redis

from asset_monitor.pricing.base import DEFAULT_REQUEST_TIMEOUT, HttpPriceSource, PriceSourceError
from asset_monitor.ratelimit import KeyedRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"
DEFAULT_CATALOGUE_TTL_SECONDS = 86_400
CATALOGUE_CACHE_KEY = "asset_monitor:coingecko:coins_list"
API_KEY_HEADER = "x-cg-demo-api-key"


class CoinGeckoPriceSource(HttpPriceSource):
    """Prices assets through CoinGecko's ``/simple/price`` endpoint.

    Asset codes are ticker symbols, which CoinGecko does not treat as unique
    (dozens of coins share "ETH"). Codes are translated to coin ids through
    an explicit override map first, then through the ``/coins/list``
    catalogue. A symbol that maps to more than one coin id in the catalogue
    is only priced when an override names the id.

    Example:
        ```python
        source = CoinGeckoPriceSource(overrides={"ATOM": "cosmos"}, redis=redis)
        coin_id = await source.translate_code("ATOM")
        price = await source.fetch_price(coin_id)
        ```
    """

    name = "coingecko"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        api_key: str | None = None,
        overrides: Mapping[str, str] | None = None,
        redis: Redis | None = None,
        catalogue_ttl_seconds: int = DEFAULT_CATALOGUE_TTL_SECONDS,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        rate_limiter: KeyedRateLimiter | None = None,
        rate_limiter_key: str | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            base_url: CoinGecko API base URL.
            api_key: Optional demo API key.
            overrides: Explicit code to coin id map, checked before the catalogue.
            redis: Optional Redis client caching the catalogue across cycles.
            catalogue_ttl_seconds: TTL for the cached catalogue.
            client: Optional shared httpx client.
            timeout: Request timeout when the source owns its client.
            rate_limiter: Optional limiter all requests are admitted through.
            rate_limiter_key: Limiter key, defaults to ``"coingecko"``.
        """
        super().__init__(
            base_url,
            client=client,
            headers={API_KEY_HEADER: api_key} if api_key else None,
            timeout=timeout,
            rate_limiter=rate_limiter,
            rate_limiter_key=rate_limiter_key,
        )
        self._overrides = {code.upper(): coin_id for code, coin_id in (overrides or {}).items()}
        self._redis = redis
        self._catalogue_ttl = catalogue_ttl_seconds
        self._catalogue: dict[str, tuple[str, ...]] | None = None
        self._catalogue_lock = asyncio.Lock()

    async def _get_cached(self, key: str) -> str | None:
        """Get value from cache."""
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int | None = None) -> None:
        """Set value in cache."""
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl or self._catalogue_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    @staticmethod
    def _index(coins: list[dict[str, str]]) -> dict[str, tuple[str, ...]]:
        by_symbol: dict[str, list[str]] = {}
        for coin in coins:
            symbol = str(coin.get("symbol") or "").upper()
            coin_id = coin.get("id")
            if symbol and coin_id:
                by_symbol.setdefault(symbol, []).append(str(coin_id))
        return {symbol: tuple(ids) for symbol, ids in by_symbol.items()}

    async def _load_catalogue(self) -> dict[str, tuple[str, ...]]:
        async with self._catalogue_lock:
            if self._catalogue is not None:
                return self._catalogue

            cached = await self._get_cached(CATALOGUE_CACHE_KEY)
            if cached is not None:
                try:
                    self._catalogue = self._index(json.loads(cached))
                    return self._catalogue
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning("Discarding unreadable CoinGecko catalogue cache: %s", e)

            coins = await self._get_json("/coins/list")
            if not isinstance(coins, list):
                raise PriceSourceError("coingecko /coins/list returned an unexpected payload")
            self._catalogue = self._index(coins)
            await self._set_cached(CATALOGUE_CACHE_KEY, json.dumps(coins))
            logger.info("Loaded CoinGecko catalogue with %d symbols", len(self._catalogue))
            return self._catalogue

    async def translate_code(self, code: str) -> str | None:
        key = code.upper()
        if key in self._overrides:
            return self._overrides[key]
        try:
            catalogue = await self._load_catalogue()
        except PriceSourceError as e:
            logger.warning("CoinGecko catalogue unavailable: %s", e)
            return None

        ids = catalogue.get(key, ())
        if len(ids) == 1:
            return ids[0]
        if len(ids) > 1:
            logger.debug(
                "CoinGecko symbol %s is ambiguous (%d coins), set an explicit id", key, len(ids)
            )
        return None

    async def fetch_price(self, source_id: str) -> Decimal | None:
        payload = await self._get_json(
            "/simple/price", params={"ids": source_id, "vs_currencies": "usd"}
        )
        if not isinstance(payload, dict):
            return None
        entry = payload.get(source_id)
        if not isinstance(entry, dict):
            return None
        price = entry.get("usd")
        if price is None:
            return None
        return price if isinstance(price, Decimal) else Decimal(str(price))
