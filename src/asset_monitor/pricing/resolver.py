"""Price resolution with ordered fallback sources and per-cycle memoization."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from decimal import Decimal

from asset_monitor.pricing.base import PriceSource, PriceUnavailable, usable_price

logger = logging.getLogger(__name__)


class PriceResolver:
    """Resolves USD prices by trying each source in order.

    Prices are memoized for one scan cycle so every snapshot in a batch is
    valued with the same price for the same asset. Call :meth:`reset` when a
    new cycle starts; nothing is cached across cycles.

    Example:
        ```python
        resolver = PriceResolver([CoinGeckoPriceSource(), BinancePriceSource()])
        price = await resolver.get_price("ATOM")
        resolver.reset()
        ```
    """

    def __init__(self, sources: Sequence[PriceSource]) -> None:
        """Initialize the resolver.

        Args:
            sources: Price sources in fallback order.
        """
        self._sources = list(sources)
        self._lookups: dict[str, asyncio.Task[Decimal]] = {}

    @property
    def sources(self) -> tuple[PriceSource, ...]:
        return tuple(self._sources)

    def get_source(self, name: str) -> PriceSource | None:
        """Get a configured source by name."""
        for source in self._sources:
            if source.name == name:
                return source
        return None

    def reset(self) -> None:
        """Forget all memoized prices; the next lookup starts a new cycle."""
        for task in self._lookups.values():
            if not task.done():
                task.cancel()
        self._lookups = {}

    async def get_price(self, code: str) -> Decimal:
        """Get the USD price for an asset code.

        Concurrent callers asking for the same code share one lookup.

        Raises:
            PriceUnavailable: If every source was exhausted.
        """
        key = code.strip().upper()
        task = self._lookups.get(key)
        if task is None:
            task = asyncio.create_task(self._resolve(key), name=f"price:{key}")
            task.add_done_callback(_consume_exception)
            self._lookups[key] = task
        # A cancelled caller must not cancel the shared lookup.
        return await asyncio.shield(task)

    async def _resolve(self, code: str) -> Decimal:
        tried: list[str] = []
        for source in self._sources:
            try:
                source_id = await source.translate_code(code)
            except Exception as e:
                tried.append(source.name)
                logger.warning("Price source %s failed to translate %s: %s", source.name, code, e)
                continue
            if source_id is None:
                logger.debug("Price source %s cannot translate %s, skipping", source.name, code)
                continue

            tried.append(source.name)
            try:
                price = usable_price(await source.fetch_price(source_id))
            except Exception as e:
                logger.warning("Price source %s failed for %s: %s", source.name, code, e)
                continue

            if price is not None:
                logger.debug("Priced %s at %s via %s", code, price, source.name)
                return price
            logger.debug("Price source %s returned no usable price for %s", source.name, code)

        raise PriceUnavailable(code, tuple(tried))

    async def aclose(self) -> None:
        """Cancel pending lookups and close sources that hold connections."""
        self.reset()
        for source in self._sources:
            aclose = getattr(source, "aclose", None)
            if callable(aclose):
                try:
                    await aclose()
                except Exception as e:
                    logger.warning("Failed to close price source %s: %s", source.name, e)


def _consume_exception(task: asyncio.Task[Decimal]) -> None:
    # Failures are re-raised to every awaiting caller; this only keeps
    # asyncio from logging "exception was never retrieved".
    if not task.cancelled():
        task.exception()
