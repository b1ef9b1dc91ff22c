"""Small helpers shared by scanners and storage: decimals, names, timestamps."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import Context, Decimal, InvalidOperation

# Products of chain quantities and prices must never be rounded by the
# default 28-digit context.
MONEY_CONTEXT = Context(prec=80)

_RFC3339_FRACTION = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Convert an exact value to Decimal.

    Floats are rejected: they cannot represent most decimal amounts exactly.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Refusing to convert {type(value).__name__} to Decimal")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(value if isinstance(value, int) else str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid decimal value: {value!r}") from e


def parse_decimal(raw: int | str, decimals: int) -> Decimal:
    """Parse a chain-native amount into a whole-unit Decimal.

    Args:
        raw: Amount in the chain's smallest unit, as int or numeric string
            (e.g. "1500000" drops, or a DecCoin string like "12.5").
        decimals: The chain's decimal exponent for this asset.

    Returns:
        The amount scaled by 10^-decimals, without any float conversion.
    """
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    return to_decimal(raw).scaleb(-decimals, MONEY_CONTEXT)


def multiply(a: Decimal, b: Decimal) -> Decimal:
    return MONEY_CONTEXT.multiply(a, b)


def add_all(values: Iterable[Decimal]) -> Decimal:
    """Sum exactly; the builtin ``sum`` rounds to the default 28 digits."""
    total = Decimal(0)
    for value in values:
        total = MONEY_CONTEXT.add(total, value)
    return total


def humanize(chain: str) -> str:
    """Turn a chain key like ``cosmos-hub`` into ``Cosmos Hub``."""
    words = re.split(r"[-_\s]+", chain.strip())
    return " ".join(w[:1].upper() + w[1:] for w in words if w)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, including nanosecond fractions.

    Cosmos nodes report block times with nine fractional digits, which
    ``datetime.fromisoformat`` does not accept.
    """
    text = value.strip().replace("Z", "+00:00")
    text = _RFC3339_FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
