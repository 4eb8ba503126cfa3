"""Fixed-window rate limiting over a shared counter store.

The increment and the window-start check run as one atomic operation in the
store, so concurrent requests from the same identity observe a serialized
count. Store failures fail open: the request is allowed and the fault logged.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from types import TracebackType
from typing import Protocol

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from tenant_gate.config import RateLimitProfile

logger = structlog.get_logger()

STORE_ERRORS: tuple[type[BaseException], ...] = (TimeoutError, OSError, RedisError)

# KEYS[1] = counter key, ARGV[1] = window in milliseconds.
# Returns {count, ttl_ms}. The expiry is (re)applied when the key is new or
# has somehow lost its TTL, so a window can never become immortal.
_INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""

# Decrement only while the window is still alive; after expiry it is a no-op.
_DECREMENT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return redis.call('DECR', KEYS[1])
end
return 0
"""


@dataclass(frozen=True)
class RateDecision:
    """Outcome of one rate check.

    ``reset_at_ms`` is epoch milliseconds at which the current window ends.
    ``charged`` is False when the store was unreachable and the request
    was let through without being counted.
    """

    key: str
    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    charged: bool = True
    refund_on_failure: bool = False

    @property
    def retry_after_seconds(self) -> int:
        return max(1, -(-(self.reset_at_ms - int(time.time() * 1000)) // 1000))

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at_ms),
        }


class CounterStore(Protocol):
    async def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Atomically bump the window counter; return (count, ttl_ms)."""
        ...

    async def decrement(self, key: str) -> None:
        """Undo one charge if the window still exists."""
        ...


class RedisCounterStore:
    """Counter store backed by Redis, shared across app instances.

    Usage::

        async with RedisCounterStore("redis://localhost:6379/0") as store:
            limiter = RateLimiter(store)
    """

    def __init__(self, url: str, *, socket_timeout: float | None = None) -> None:
        self._url = url
        self._socket_timeout = socket_timeout
        self._redis: Redis | None = None
        self._increment = None
        self._decrement = None

    async def open(self) -> None:
        """Create the connection pool (idempotent)."""
        if self._redis is not None:
            return
        self._redis = Redis.from_url(
            self._url,
            socket_timeout=self._socket_timeout,
            socket_connect_timeout=self._socket_timeout,
        )
        self._increment = self._redis.register_script(_INCREMENT_SCRIPT)
        self._decrement = self._redis.register_script(_DECREMENT_SCRIPT)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._increment = None
            self._decrement = None

    async def __aenter__(self) -> RedisCounterStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def ping(self) -> bool:
        if self._redis is None:
            raise ConnectionError("RedisCounterStore is not open")
        return bool(await self._redis.ping())

    async def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        if self._increment is None:
            raise ConnectionError("RedisCounterStore is not open")
        count, ttl_ms = await self._increment(keys=[key], args=[window_seconds * 1000])
        return int(count), int(ttl_ms)

    async def decrement(self, key: str) -> None:
        if self._decrement is None:
            raise ConnectionError("RedisCounterStore is not open")
        await self._decrement(keys=[key])


class InMemoryCounterStore:
    """Fixed-window counters in process memory.

    Thread-safe via Lock. Single-instance only; use RedisCounterStore
    when more than one app process serves traffic.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = Lock()

    async def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        now = self._clock()
        with self._lock:
            count, expires_at = self._windows.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, expires_at)
        return count, int((expires_at - now) * 1000)

    async def decrement(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window[1] <= now:
                return
            self._windows[key] = (max(0, window[0] - 1), window[1])

    def cleanup(self) -> int:
        """Remove all expired windows. Call periodically.

        Returns:
            Number of keys cleaned up.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._windows.items() if exp <= now]
            for key in expired:
                del self._windows[key]
        return len(expired)


class RateLimiter:
    """Fixed-window limiter keyed by (identity, route).

    A rejected attempt is still charged: the worst case inside one window
    is ``max_requests + 1`` increments and no decrement is needed on reject.
    """

    def __init__(
        self,
        store: CounterStore,
        *,
        timeout_seconds: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._timeout = timeout_seconds
        self._clock = clock

    @staticmethod
    def make_key(key_prefix: str, identity_key: str, route_key: str) -> str:
        return f"{key_prefix}{identity_key}:{route_key}"

    async def allow(
        self,
        identity_key: str,
        route_key: str,
        window_seconds: int,
        max_requests: int,
        *,
        key_prefix: str = "rl:",
        refund_on_failure: bool = False,
    ) -> RateDecision:
        """Charge one request against the window and decide.

        Never raises for store faults: an unreachable or slow store
        yields ``allowed=True`` with ``charged=False``.
        """
        key = self.make_key(key_prefix, identity_key, route_key)
        now_ms = int(self._clock() * 1000)

        try:
            count, ttl_ms = await asyncio.wait_for(
                self._store.increment(key, window_seconds),
                timeout=self._timeout,
            )
        except STORE_ERRORS as exc:
            logger.error("rate_limiter_store_error", key=key, error=type(exc).__name__)
            return RateDecision(
                key=key,
                allowed=True,
                limit=max_requests,
                remaining=max_requests,
                reset_at_ms=now_ms + window_seconds * 1000,
                charged=False,
            )

        allowed = count <= max_requests
        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                identity=identity_key,
                route=route_key,
                count=count,
                limit=max_requests,
            )
        return RateDecision(
            key=key,
            allowed=allowed,
            limit=max_requests,
            remaining=max(0, max_requests - count),
            reset_at_ms=now_ms + max(ttl_ms, 0),
            refund_on_failure=refund_on_failure,
        )

    async def allow_profile(
        self, identity_key: str, route_key: str, profile: RateLimitProfile
    ) -> RateDecision:
        return await self.allow(
            identity_key,
            route_key,
            profile.window_seconds,
            profile.max_requests,
            key_prefix=profile.key_prefix,
            refund_on_failure=profile.refund_failed_requests,
        )

    async def refund(self, key: str) -> None:
        """Give back one charge after a failed downstream response.

        Races with window expiry; a refund after expiry is a no-op.
        """
        try:
            await asyncio.wait_for(self._store.decrement(key), timeout=self._timeout)
        except STORE_ERRORS as exc:
            logger.warning("rate_limiter_refund_error", key=key, error=type(exc).__name__)
