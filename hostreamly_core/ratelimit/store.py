"""
Counter Store Adapters
======================

Atomic increment-with-expiry counters shared by every limiter.

The store is the only shared mutable state of the admission plane. Each
call is a single round trip. The TTL is set inside the same atomic step
as the increment, so a counter can never be left without an expiry and a
window can never be reset twice.

Usage:
    store = RedisCounterStore(redis_url="redis://localhost:6379/0")
    window = await store.increment_with_expiry("upload:user:42", 3600)
    if window.count > 20:
        ...

Author: Platform Engineering Team
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from hostreamly_core.core.errors import BackendUnavailable

logger = structlog.get_logger(__name__)


@dataclass
class CounterWindow:
    """State of one counter after an increment."""

    key: str
    count: int
    ttl_seconds: float
    expires_at: float  # Unix timestamp

    @property
    def is_first(self) -> bool:
        """Whether this increment opened the window"""
        return self.count == 1


class CounterStore(ABC):
    """Abstract base class for counter backends."""

    @abstractmethod
    async def increment_with_expiry(
        self,
        key: str,
        ttl_seconds: float,
        refresh_ttl: bool = False,
    ) -> CounterWindow:
        """Atomically increment ``key`` and return the new window state.

        Args:
            key: Counter key
            ttl_seconds: Expiry applied when the increment opens the window
            refresh_ttl: Re-arm the expiry on every increment

        Raises:
            BackendUnavailable: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[int]:
        """Current value of ``key``, or None if absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: int, ttl_seconds: float) -> None:
        """Set ``key`` to ``value`` with an expiry."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None


class InMemoryCounterStore(CounterStore):
    """In-memory counter store for tests and single-process development.

    Warning: counters are not shared across processes!
    Use RedisCounterStore in production.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._counters: Dict[str, List[float]] = {}  # key -> [count, expires_at]
        self._lock = asyncio.Lock()
        self._clock = clock

    async def increment_with_expiry(
        self,
        key: str,
        ttl_seconds: float,
        refresh_ttl: bool = False,
    ) -> CounterWindow:
        async with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)

            if entry is None:
                entry = [0, now + ttl_seconds]
                self._counters[key] = entry
            elif refresh_ttl:
                entry[1] = now + ttl_seconds

            entry[0] += 1
            return CounterWindow(
                key=key,
                count=int(entry[0]),
                ttl_seconds=max(0.0, entry[1] - now),
                expires_at=entry[1],
            )

    async def get(self, key: str) -> Optional[int]:
        async with self._lock:
            entry = self._live_entry(key, self._clock())
            return int(entry[0]) if entry else None

    async def set(self, key: str, value: int, ttl_seconds: float) -> None:
        async with self._lock:
            self._counters[key] = [value, self._clock() + ttl_seconds]

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._counters.pop(key, None)

    def _live_entry(self, key: str, now: float) -> Optional[List[float]]:
        """Entry for ``key``, dropping it if expired"""
        entry = self._counters.get(key)
        if entry is not None and entry[1] <= now:
            del self._counters[key]
            return None
        return entry


class RedisCounterStore(CounterStore):
    """Redis-backed counter store.

    The increment and the conditional expiry run in one Lua script, so
    concurrent processes sharing a key always observe a consistent window.

    Example:
        store = RedisCounterStore(
            redis_url="redis://localhost:6379/0",
            key_prefix="hostreamly:",
        )
    """

    # Arms the expiry when the window opens, when refresh is requested, or
    # when the key somehow lost its TTL (PTTL == -1).
    INCREMENT_SCRIPT = """
    local key = KEYS[1]
    local ttl_ms = tonumber(ARGV[1])
    local refresh = ARGV[2]

    local count = redis.call('INCR', key)
    local remaining = redis.call('PTTL', key)

    if count == 1 or remaining < 0 or refresh == '1' then
        redis.call('PEXPIRE', key, ttl_ms)
        remaining = ttl_ms
    end

    return {count, remaining}
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        key_prefix: str = "hostreamly:",
        redis_client: Optional["redis.Redis"] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize Redis counter store.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for every Redis key
            redis_client: Pre-built client (takes precedence over the URL)
            clock: Time source for computing expiry timestamps
        """
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._redis = redis_client
        self._clock = clock
        self._increment_script = None

    def _client(self) -> "redis.Redis":
        if self._redis is None:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_counter_store_connected", url=self._redis_url)
        if self._increment_script is None:
            self._increment_script = self._redis.register_script(
                self.INCREMENT_SCRIPT
            )
        return self._redis

    def _full_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def increment_with_expiry(
        self,
        key: str,
        ttl_seconds: float,
        refresh_ttl: bool = False,
    ) -> CounterWindow:
        self._client()
        ttl_ms = max(1, int(math.ceil(ttl_seconds * 1000)))

        try:
            result = await self._increment_script(
                keys=[self._full_key(key)],
                args=[ttl_ms, "1" if refresh_ttl else "0"],
            )
        except (RedisError, OSError) as e:
            raise BackendUnavailable(
                f"Counter increment failed: {e}", backend="redis"
            ) from e

        count = int(result[0])
        remaining = int(result[1]) / 1000.0
        return CounterWindow(
            key=key,
            count=count,
            ttl_seconds=remaining,
            expires_at=self._clock() + remaining,
        )

    async def get(self, key: str) -> Optional[int]:
        client = self._client()
        try:
            value = await client.get(self._full_key(key))
        except (RedisError, OSError) as e:
            raise BackendUnavailable(
                f"Counter read failed: {e}", backend="redis"
            ) from e
        return int(value) if value is not None else None

    async def set(self, key: str, value: int, ttl_seconds: float) -> None:
        client = self._client()
        try:
            await client.set(
                self._full_key(key),
                value,
                px=max(1, int(math.ceil(ttl_seconds * 1000))),
            )
        except (RedisError, OSError) as e:
            raise BackendUnavailable(
                f"Counter write failed: {e}", backend="redis"
            ) from e

    async def delete(self, key: str) -> None:
        client = self._client()
        try:
            await client.delete(self._full_key(key))
        except (RedisError, OSError) as e:
            raise BackendUnavailable(
                f"Counter delete failed: {e}", backend="redis"
            ) from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._increment_script = None


class TimeoutCounterStore(CounterStore):
    """Bounds every call on a wrapped store.

    A call that outlives ``timeout_seconds`` is cancelled and surfaces as
    ``BackendUnavailable``, like a connection failure.
    """

    def __init__(self, store: CounterStore, timeout_seconds: float = 0.5):
        self._store = store
        self._timeout = timeout_seconds

    async def _bounded(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise BackendUnavailable(
                f"Counter store {operation} timed out after {self._timeout}s",
                details={"operation": operation},
            ) from e

    async def increment_with_expiry(
        self,
        key: str,
        ttl_seconds: float,
        refresh_ttl: bool = False,
    ) -> CounterWindow:
        return await self._bounded(
            "increment",
            self._store.increment_with_expiry(key, ttl_seconds, refresh_ttl),
        )

    async def get(self, key: str) -> Optional[int]:
        return await self._bounded("get", self._store.get(key))

    async def set(self, key: str, value: int, ttl_seconds: float) -> None:
        await self._bounded("set", self._store.set(key, value, ttl_seconds))

    async def delete(self, key: str) -> None:
        await self._bounded("delete", self._store.delete(key))

    async def close(self) -> None:
        await self._store.close()


def create_counter_store(
    redis_url: Optional[str] = None,
    key_prefix: str = "hostreamly:",
    timeout_seconds: Optional[float] = None,
) -> CounterStore:
    """Create the appropriate counter store for the configuration.

    Args:
        redis_url: Redis URL (if None, uses in-memory)
        key_prefix: Prefix for Redis keys
        timeout_seconds: Per-call bound; None leaves calls unbounded

    Returns:
        CounterStore instance
    """
    store: CounterStore
    if redis_url:
        store = RedisCounterStore(redis_url=redis_url, key_prefix=key_prefix)
    else:
        store = InMemoryCounterStore()

    if timeout_seconds is not None:
        store = TimeoutCounterStore(store, timeout_seconds)
    return store


__all__ = [
    "CounterWindow",
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "TimeoutCounterStore",
    "create_counter_store",
]
