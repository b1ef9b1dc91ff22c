"""Base class and shared plumbing for chain scanners.

A scanner turns one scan target (an address on a chain) into valued
:class:`~asset_monitor.models.AssetSnapshot` records. Each variant talks to
one chain API through an :class:`EndpointBinding` and never calls the
network outside the shared :class:`~asset_monitor.ratelimit.KeyedRateLimiter`.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Generic, TypeVar

from asset_monitor.clients.base import TransientClientError
from asset_monitor.models import (
    AssetInfo,
    AssetQuery,
    AssetScannerConfig,
    AssetSnapshot,
    AssetState,
    AssetType,
    Endpoint,
)
from asset_monitor.pricing import PriceResolver
from asset_monitor.ratelimit import KeyedRateLimiter
from asset_monitor.utils import humanize

logger = logging.getLogger(__name__)

T = TypeVar("T")
ClientT = TypeVar("ClientT")

NativeAssetLookup = Callable[[str], Awaitable[AssetInfo | None]]

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0


class ScannerInitError(Exception):
    """Raised when a scanner cannot be initialized; excludes it from the cycle."""

    def __init__(self, chain: str, scanner_type: str, message: str) -> None:
        super().__init__(f"{chain}/{scanner_type}: {message}")
        self.chain = chain
        self.scanner_type = scanner_type


class ScanQueryError(Exception):
    """Raised when querying one target fails; excludes that target's result."""

    def __init__(self, target: AssetQuery, cause: BaseException) -> None:
        super().__init__(f"Query failed for {target.chain}:{target.address}: {cause}")
        self.target = target
        self.cause = cause


@dataclass(frozen=True)
class EndpointBinding(Generic[ClientT]):
    """A client for one endpoint plus the limiter key its calls use."""

    endpoint: Endpoint
    client: ClientT
    limiter_key: str


@dataclass(frozen=True)
class ScannerContext:
    """Shared collaborators handed to every scanner in a cycle."""

    rate_limiter: KeyedRateLimiter
    price_resolver: PriceResolver
    native_asset_lookup: NativeAssetLookup
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT


def limiter_key_for(chain: str, endpoint: Endpoint) -> str:
    """Return the limiter key an endpoint's calls are admitted under."""
    return endpoint.rate_limiter_key or f"{chain}:{endpoint.url}"


class BaseAssetScanner(Generic[ClientT]):
    """Base for chain scanner variants.

    Subclasses implement :meth:`create_client`, :meth:`_init` and
    :meth:`_query`. Callers use :meth:`initialize` once, then :meth:`query`
    any number of times (concurrently is fine), then :meth:`aclose`.
    """

    scanner_type: ClassVar[str] = "native"

    def __init__(
        self,
        config: AssetScannerConfig,
        bindings: Sequence[EndpointBinding[ClientT]],
        context: ScannerContext,
    ) -> None:
        self._config = config
        self._bindings = tuple(bindings)
        self._context = context
        self._rotation = itertools.cycle(range(len(self._bindings))) if self._bindings else None
        self._initialized = False

    @classmethod
    def create_client(cls, endpoint: Endpoint, context: ScannerContext) -> ClientT:
        """Build the API client for one endpoint."""
        raise NotImplementedError

    @classmethod
    def from_config(cls, config: AssetScannerConfig, context: ScannerContext) -> BaseAssetScanner[ClientT]:
        """Instantiate a scanner with one binding per enabled endpoint.

        If building a client fails, the clients already built are closed on
        the running event loop and the error propagates.
        """
        bindings: list[EndpointBinding[ClientT]] = []
        try:
            for endpoint in config.enabled_endpoints:
                bindings.append(
                    EndpointBinding(
                        endpoint=endpoint,
                        client=cls.create_client(endpoint, context),
                        limiter_key=limiter_key_for(config.chain, endpoint),
                    )
                )
        except Exception:
            if bindings:
                _close_in_background(cls(config, bindings, context))
            raise
        return cls(config, bindings, context)

    @property
    def chain(self) -> str:
        return self._config.chain

    @property
    def config(self) -> AssetScannerConfig:
        return self._config

    @property
    def bindings(self) -> tuple[EndpointBinding[ClientT], ...]:
        return self._bindings

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _init_error(self, message: str) -> ScannerInitError:
        return ScannerInitError(self.chain, self.scanner_type, message)

    async def initialize(self) -> None:
        """Resolve chain reference data; must succeed before querying.

        Raises:
            ScannerInitError: On any failure, including missing endpoints or
                a missing native asset row.
        """
        if self._initialized:
            return
        if not self._bindings:
            raise self._init_error("no enabled endpoints")
        try:
            await self._init()
        except ScannerInitError:
            raise
        except Exception as e:
            raise self._init_error(str(e) or type(e).__name__) from e
        self._initialized = True
        logger.debug("Initialized scanner %s/%s", self.chain, self.scanner_type)

    async def query(self, target: AssetQuery) -> list[AssetSnapshot]:
        """Produce snapshots for one target.

        Raises:
            RuntimeError: If called before :meth:`initialize`.
            ScanQueryError: Wrapping any failure of the query itself.
        """
        if not self._initialized:
            raise RuntimeError(f"Scanner {self.chain}/{self.scanner_type} is not initialized")
        binding = self._binding()
        try:
            return await self._query(target, binding)
        except Exception as e:
            raise ScanQueryError(target, e) from e

    async def _init(self) -> None:
        raise NotImplementedError

    async def _query(
        self, target: AssetQuery, binding: EndpointBinding[ClientT]
    ) -> list[AssetSnapshot]:
        raise NotImplementedError

    def _binding(self) -> EndpointBinding[ClientT]:
        """Next endpoint binding, round-robin."""
        assert self._rotation is not None
        return self._bindings[next(self._rotation)]

    async def _call(
        self,
        binding: EndpointBinding[ClientT],
        operation: Callable[[ClientT], Awaitable[T]],
    ) -> T:
        """Run one client call through the rate limiter, retrying transient errors.

        Each attempt is admitted separately, so retries consume quota too.
        """
        attempts = self._context.max_retries + 1
        delay = self._context.retry_delay_seconds
        for attempt in range(attempts):
            try:
                return await self._context.rate_limiter.execute(
                    binding.limiter_key, lambda: operation(binding.client)
                )
            except TransientClientError as e:
                if attempt == attempts - 1:
                    raise
                logger.warning(
                    "%s call via %s failed (attempt %d/%d): %s",
                    self.chain,
                    binding.limiter_key,
                    attempt + 1,
                    attempts,
                    e,
                )
                await asyncio.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")

    @staticmethod
    async def _fan_out(*operations: Awaitable[Any]) -> list[Any]:
        """Await operations concurrently; the first failure cancels the rest."""
        try:
            async with asyncio.TaskGroup() as tg:
                tasks = [tg.create_task(_as_coroutine(op)) for op in operations]
        except ExceptionGroup as group:
            raise _first_leaf(group) from None
        return [task.result() for task in tasks]

    async def _native_asset(self) -> AssetInfo:
        asset = await self._context.native_asset_lookup(self.chain)
        if asset is None:
            raise self._init_error(f"no native token AssetInfo for chain {self.chain!r}")
        return asset

    async def _price(self, code: str) -> Decimal:
        return await self._context.price_resolver.get_price(code)

    def _snapshot(
        self,
        asset: AssetInfo,
        *,
        state: AssetState,
        quantity: Decimal,
        price: Decimal,
        captured_at: datetime | None,
        address: str,
        name: str | None = None,
    ) -> AssetSnapshot:
        return AssetSnapshot.create(
            name=name or f"{humanize(self.chain)} Native Token",
            code=asset.code,
            chain=self.chain,
            type=AssetType.NATIVE_TOKEN,
            state=state,
            quantity=quantity,
            price=price,
            captured_at=captured_at,
            address=address,
        )

    async def aclose(self) -> None:
        """Close every endpoint client."""
        for binding in self._bindings:
            aclose = getattr(binding.client, "aclose", None)
            if not callable(aclose):
                continue
            try:
                await aclose()
            except Exception as e:
                logger.warning("Failed to close %s client for %s: %s", self.chain, binding.limiter_key, e)


_background_closes: set[asyncio.Task[None]] = set()


def _close_in_background(scanner: BaseAssetScanner[Any]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning(
            "No running event loop; %d %s client(s) left unclosed",
            len(scanner.bindings),
            scanner.chain,
        )
        return
    task = loop.create_task(scanner.aclose())
    _background_closes.add(task)
    task.add_done_callback(_background_closes.discard)


async def _as_coroutine(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _first_leaf(group: ExceptionGroup[Exception]) -> Exception:
    exc: Exception = group
    while isinstance(exc, ExceptionGroup):
        exc = exc.exceptions[0]
    return exc
