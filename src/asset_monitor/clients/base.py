"""Shared JSON-over-HTTP plumbing for chain API clients."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


class ChainClientError(Exception):
    """Base exception for chain API client errors."""


class TransientClientError(ChainClientError):
    """Raised for errors worth retrying (transport failures, HTTP 429/5xx)."""


class NotFoundError(ChainClientError):
    """Raised when the API reports the requested resource does not exist."""


class JsonHttpClient:
    """Minimal read-only JSON client over httpx.

    Response bodies are decoded with ``parse_float=Decimal`` so fractional
    amounts never pass through a float.
    """

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API root; request paths are appended to it.
            headers: Extra headers sent with every request.
            timeout: Request timeout in seconds when the client owns its
                httpx client.
            client: Optional pre-built httpx client (tests pass one with a
                mock transport).
        """
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = dict(headers or {})

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, path: str) -> str:
        if not path:
            return self._base_url
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self._url(path)
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.TransportError as e:
            raise TransientClientError(f"{method} {url} failed: {e}") from e

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"{method} {url} returned 404")
        if status == 429 or status >= 500:
            raise TransientClientError(f"{method} {url} returned HTTP {status}")
        if status >= 400:
            raise ChainClientError(f"{method} {url} returned HTTP {status}: {response.text[:200]}")

        try:
            return response.json(parse_float=Decimal)
        except ValueError as e:
            raise ChainClientError(f"{method} {url} returned invalid JSON") from e

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, payload: Any) -> Any:
        return await self._request("POST", path, json=payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def require(payload: Any, *keys: str | int) -> Any:
    """Walk ``payload`` along ``keys``, raising ChainClientError on a missing step."""
    current = payload
    for key in keys:
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError) as e:
            path = ".".join(str(k) for k in keys)
            raise ChainClientError(f"Unexpected response shape, missing {path}") from e
    return current
