"""Price source interface and shared HTTP plumbing."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any, Protocol, TypeVar, runtime_checkable

import httpx

from asset_monitor.ratelimit import KeyedRateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REQUEST_TIMEOUT = 30.0


class PriceUnavailable(Exception):
    """Raised when no price source could price an asset code."""

    def __init__(self, code: str, tried: tuple[str, ...] = ()) -> None:
        detail = f" (tried: {', '.join(tried)})" if tried else ""
        super().__init__(f"No USD price available for {code}{detail}")
        self.code = code
        self.tried = tried


class PriceSourceError(Exception):
    """Raised when a single price source fails to answer."""


@runtime_checkable
class PriceSource(Protocol):
    """A source of current USD prices.

    ``translate_code`` maps an asset code (e.g. ``"XRP"``) to the source's own
    identifier, or returns None when the source does not know the asset.
    ``fetch_price`` returns None when the source has no usable price.
    """

    name: str

    async def translate_code(self, code: str) -> str | None: ...

    async def fetch_price(self, source_id: str) -> Decimal | None: ...


class HttpPriceSource:
    """Base for price sources backed by a JSON HTTP API."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        rate_limiter: KeyedRateLimiter | None = None,
        rate_limiter_key: str | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        if client is not None and headers:
            self._client.headers.update(headers)
        self._rate_limiter = rate_limiter
        self._rate_limiter_key = rate_limiter_key or self.name

    async def _limited(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self._rate_limiter is None:
            return await operation()
        return await self._rate_limiter.execute(self._rate_limiter_key, operation)

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` and decode JSON with Decimal floats.

        Raises:
            PriceSourceError: On transport errors or non-2xx responses.
        """
        url = f"{self._base_url}{path}"

        async def request() -> httpx.Response:
            return await self._client.get(url, params=params)

        try:
            response = await self._limited(request)
            response.raise_for_status()
            return response.json(parse_float=Decimal)
        except httpx.HTTPStatusError as e:
            raise PriceSourceError(
                f"{self.name} returned HTTP {e.response.status_code} for {path}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise PriceSourceError(f"{self.name} request failed for {path}: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def usable_price(value: object) -> Decimal | None:
    """Return value as a Decimal if it is a finite, positive price."""
    if value is None or isinstance(value, bool):
        return None
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except ArithmeticError:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price
