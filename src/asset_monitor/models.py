"""Domain models for the asset monitor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from asset_monitor.utils import multiply, to_decimal, utc_now


class AssetType(str, Enum):
    """Category of an asset."""

    CEX_TOKEN = "cex-token"
    NATIVE_TOKEN = "native-token"
    SECONDARY_TOKEN = "secondary-token"
    NFT = "nft"
    OTHERS = "others"


class AssetState(str, Enum):
    """Liquidity/availability of a valued position."""

    LIQUID = "LIQUID"
    LOCKED = "LOCKED"
    CLAIMABLE = "CLAIMABLE"
    UNBONDING = "UNBONDING"
    OTHERS = "OTHERS"


class CycleState(str, Enum):
    """Lifecycle of one scan cycle."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class AssetInfo:
    """Reference data for one asset on one chain."""

    chain: str
    code: str
    type: AssetType
    address: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class Endpoint:
    """External endpoint a scanner talks to."""

    url: str
    api_key: str | None = None
    rate_limiter_key: str | None = None
    enabled: bool = True
    id: int | None = None


@dataclass(frozen=True)
class AssetScannerConfig:
    """Which scanner runs for a chain, and against which endpoints."""

    chain: str
    scanner_type: str
    endpoints: tuple[Endpoint, ...] = ()
    enabled: bool = True
    id: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.chain, self.scanner_type)

    @property
    def enabled_endpoints(self) -> tuple[Endpoint, ...]:
        return tuple(e for e in self.endpoints if e.enabled)


@dataclass(frozen=True)
class AssetQuery:
    """A scan target: one address on one chain, owned by an asset group."""

    chain: str
    address: str
    group_id: int | None = None


@dataclass(frozen=True)
class AssetSnapshot:
    """One valued position captured at a point in time.

    ``usd_value`` always equals ``quantity * usd_value_per_quantity``; build
    instances through :meth:`create` so the product is computed in one place.
    """

    name: str
    code: str
    chain: str
    type: AssetType
    state: AssetState
    quantity: Decimal
    usd_value: Decimal
    usd_value_per_quantity: Decimal
    captured_at: datetime
    address: str | None = None
    batch_id: int | None = None

    @classmethod
    def create(
        cls,
        *,
        name: str,
        code: str,
        chain: str,
        type: AssetType,
        state: AssetState,
        quantity: Decimal,
        price: Decimal,
        captured_at: datetime | None = None,
        address: str | None = None,
    ) -> AssetSnapshot:
        quantity = to_decimal(quantity)
        price = to_decimal(price)
        return cls(
            name=name,
            code=code,
            chain=chain,
            type=type,
            state=state,
            quantity=quantity,
            usd_value=multiply(quantity, price),
            usd_value_per_quantity=price,
            captured_at=captured_at or utc_now(),
            address=address,
        )


@dataclass(frozen=True)
class ScanFailure:
    """One isolated failure inside a scan cycle."""

    chain: str
    scanner_type: str
    stage: str  # "init" | "query"
    message: str
    address: str | None = None


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one scan cycle, reported to the caller and the notifier."""

    batch_id: int
    state: CycleState
    started_at: datetime
    finished_at: datetime
    snapshot_count: int
    scanner_count: int
    failed_scanner_count: int
    failed_query_count: int
    failures: tuple[ScanFailure, ...] = field(default_factory=tuple)
    skipped_target_count: int = 0

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def all_scanners_failed(self) -> bool:
        """True when scanners were configured but none produced a usable result."""
        return self.scanner_count > 0 and self.failed_scanner_count >= self.scanner_count
