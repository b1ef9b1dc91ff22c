"""Fixed price table, used for stablecoins and pegged assets."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

from asset_monitor.utils import to_decimal


class StaticPriceSource:
    """Answers from a fixed ``code -> price`` table."""

    name = "static"

    def __init__(self, prices: Mapping[str, Decimal | int | str]) -> None:
        self._prices = {code.upper(): to_decimal(price) for code, price in prices.items()}

    async def translate_code(self, code: str) -> str | None:
        key = code.upper()
        return key if key in self._prices else None

    async def fetch_price(self, source_id: str) -> Decimal | None:
        return self._prices.get(source_id)
