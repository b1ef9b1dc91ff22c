"""Per-key rate limiting for outbound chain and price API calls.

Each logical endpoint key (usually one API quota bucket) gets its own
sliding-window limiter with optional bounded concurrency. Keys never share
a lock, so a slow or throttled endpoint does not hold back unrelated ones.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REQUESTS = 5
DEFAULT_INTERVAL_SECONDS = 1.0

_POLICY_SPEC = re.compile(r"^\s*(\d+)\s*/\s*([0-9]*\.?[0-9]+)\s*(?:/\s*(\d+)\s*)?$")


class RateLimiterClosed(Exception):
    """Raised when a call is rejected because the limiter is shutting down."""


@dataclass(frozen=True)
class RatePolicy:
    """Admission policy for one key.

    Attributes:
        requests: Maximum admissions per interval.
        interval_seconds: Length of the sliding window.
        max_concurrency: Optional cap on calls in flight at once.
    """

    requests: int = DEFAULT_REQUESTS
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    max_concurrency: int | None = None

    def __post_init__(self) -> None:
        if self.requests < 1:
            raise ValueError("requests must be >= 1")
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

    @classmethod
    def parse(cls, spec: str) -> RatePolicy:
        """Parse ``"requests/seconds[/concurrency]"``, e.g. ``"10/1"`` or ``"30/60/4"``."""
        match = _POLICY_SPEC.match(spec)
        if not match:
            raise ValueError(f"Invalid rate policy: {spec!r}")
        requests, interval, concurrency = match.groups()
        return cls(
            requests=int(requests),
            interval_seconds=float(interval),
            max_concurrency=int(concurrency) if concurrency else None,
        )


class _KeyLimiter:
    """Sliding-window limiter for a single key."""

    def __init__(self, key: str, policy: RatePolicy, closed: asyncio.Event) -> None:
        self.key = key
        self.policy = policy
        self._closed = closed
        # asyncio.Lock wakes waiters in FIFO order.
        self._lock = asyncio.Lock()
        self._admitted: deque[float] = deque()
        self._semaphore = (
            asyncio.Semaphore(policy.max_concurrency) if policy.max_concurrency else None
        )
        self.in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def _check_open(self) -> None:
        if self._closed.is_set():
            raise RateLimiterClosed(f"Rate limiter closed (key={self.key})")

    async def _admit(self) -> None:
        async with self._lock:
            self._check_open()
            while True:
                now = time.monotonic()
                window_start = now - self.policy.interval_seconds
                while self._admitted and self._admitted[0] <= window_start:
                    self._admitted.popleft()
                if len(self._admitted) < self.policy.requests:
                    self._admitted.append(now)
                    return
                wait_time = self._admitted[0] + self.policy.interval_seconds - now
                # Wake early on close so queued calls are rejected promptly.
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._closed.wait(), timeout=wait_time)
                self._check_open()

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        await self._admit()

        if self._semaphore is not None:
            await self._semaphore.acquire()
            if self._closed.is_set():
                self._semaphore.release()
                raise RateLimiterClosed(f"Rate limiter closed (key={self.key})")

        self.in_flight += 1
        self._idle.clear()
        try:
            return await operation()
        finally:
            self.in_flight -= 1
            if self.in_flight == 0:
                self._idle.set()
            if self._semaphore is not None:
                self._semaphore.release()

    async def wait_idle(self) -> None:
        await self._idle.wait()


class KeyedRateLimiter:
    """Rate limiter keyed by logical endpoint.

    Example:
        ```python
        limiter = KeyedRateLimiter(policies={"xrpl": RatePolicy(10, 1.0)})
        info = await limiter.execute("xrpl", lambda: client.account_info(addr))
        await limiter.close()
        ```
    """

    def __init__(
        self,
        *,
        default_policy: RatePolicy | None = None,
        policies: Mapping[str, RatePolicy] | None = None,
    ) -> None:
        """Initialize the limiter.

        Args:
            default_policy: Policy for keys without an explicit entry.
            policies: Explicit per-key policies.
        """
        self._default_policy = default_policy or RatePolicy()
        self._policies = dict(policies or {})
        self._limiters: dict[str, _KeyLimiter] = {}
        self._closed = asyncio.Event()

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    def policy_for(self, key: str) -> RatePolicy:
        return self._policies.get(key, self._default_policy)

    def _limiter(self, key: str) -> _KeyLimiter:
        limiter = self._limiters.get(key)
        if limiter is None:
            limiter = _KeyLimiter(key, self.policy_for(key), self._closed)
            self._limiters[key] = limiter
        return limiter

    async def execute(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` once it is admitted under ``key``.

        Args:
            key: Logical endpoint key whose quota the call consumes.
            operation: Zero-argument callable returning an awaitable.

        Returns:
            Whatever the operation returns.

        Raises:
            RateLimiterClosed: If the limiter is closed before admission.
        """
        if self._closed.is_set():
            raise RateLimiterClosed(f"Rate limiter closed (key={key})")
        return await self._limiter(key).execute(operation)

    async def close(self, timeout: float | None = None) -> None:
        """Stop admitting calls and wait for in-flight ones to finish.

        Queued calls fail with RateLimiterClosed; calls already running are
        allowed to complete.

        Args:
            timeout: Maximum seconds to wait for in-flight calls.
        """
        if self._closed.is_set():
            return
        self._closed.set()

        in_flight = sum(limiter.in_flight for limiter in self._limiters.values())
        if not in_flight:
            logger.debug("Rate limiter closed")
            return

        logger.info("Rate limiter closing, waiting for %d in-flight call(s)", in_flight)
        waiters = [limiter.wait_idle() for limiter in self._limiters.values()]
        try:
            await asyncio.wait_for(asyncio.gather(*waiters), timeout=timeout)
        except TimeoutError:
            logger.warning("Rate limiter closed with calls still in flight after %.1fs", timeout)
