"""
Two-tier cache provider.

Features:
- Memory-based L1 tier with LRU eviction bounded by item count
- Redis L2 tier, unbounded beyond the server's own limits
- TTL in seconds at the interface, regardless of the tier's native unit
- Read-through: L1 first, then L2 with L1 backfill; writes go to both tiers

L1 entries are not kept coherent with L2 across processes. Treat the cache
as a cache, never as a source of truth.
"""

import asyncio
import fnmatch
import functools
import json
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Protocol, TypeVar

from loguru import logger
from redis import RedisError
from redis.asyncio import Redis

from bff.services.errors import CacheError, UnsupportedOperationError
from bff.settings import Settings

T = TypeVar("T")

NO_EXPIRY = -1
KEY_ABSENT = -2


@dataclass
class CacheEntry:
    """A single cache entry with its absolute expiry (monotonic seconds)."""

    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class MemoryStore:
    """
    Process-local LRU tier.

    incr/decr run under the store lock, so they are atomic within one
    process only. Two processes sharing nothing will each count on their own.
    """

    def __init__(
        self,
        max_size: int = 5000,
        default_ttl: int | None = 300,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(self, key: str) -> CacheEntry | None:
        async with self._lock:
            return self._get_locked(key)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        async with self._lock:
            self._set_locked(key, value, ttl)

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Set only if the key is absent. Returns True when written."""
        async with self._lock:
            if self._get_locked(key, record=False) is not None:
                return False
            self._set_locked(key, value, ttl)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if self._entries.pop(key, None) is not None:
                self._log(f"DELETE: {key[:50]}")
                return True
            return False

    async def delete_many(self, keys: Iterable[str]) -> int:
        async with self._lock:
            return sum(1 for key in keys if self._entries.pop(key, None) is not None)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob-style pattern (e.g. 'profile:*')."""
        async with self._lock:
            matched = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for key in matched:
                del self._entries[key]
            if matched:
                self._log(f"INVALIDATE: {len(matched)} entries matching '{pattern}'")
            return len(matched)

    async def incr(self, key: str, delta: int = 1) -> int:
        async with self._lock:
            entry = self._get_locked(key, record=False)
            current = entry.value if entry is not None else 0
            if not isinstance(current, int):
                raise CacheError(f"Value at '{key}' is not an integer")
            new_value = current + delta
            if entry is not None:
                # Keep the existing expiry
                entry.value = new_value
            else:
                self._set_locked(key, new_value, NO_EXPIRY)
            return new_value

    async def expire(self, key: str, ttl: int) -> bool:
        async with self._lock:
            entry = self._get_locked(key, record=False)
            if entry is None:
                return False
            entry.expires_at = self._clock() + ttl
            return True

    async def ttl(self, key: str) -> int:
        async with self._lock:
            entry = self._get_locked(key, record=False)
            if entry is None:
                return KEY_ABSENT
            if entry.expires_at is None:
                return NO_EXPIRY
            return max(0, math.ceil(entry.expires_at - self._clock()))

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._log(f"CLEAR: {count} entries removed")

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        self._stats.size = len(self._entries)
        self._stats.max_size = self._max_size
        return self._stats

    def _get_locked(self, key: str, record: bool = True) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            if record:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            if record:
                self._stats.misses += 1
                self._log(f"EXPIRED: {key[:50]}")
            return None

        self._entries.move_to_end(key)
        if record:
            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}")
        return entry

    def _set_locked(self, key: str, value: Any, ttl: int | None) -> None:
        ttl = ttl if ttl is not None else self._default_ttl
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None

        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            self._log(f"EVICT: {evicted[:50]}")

        self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
        self._log(f"SET: {key[:50]} (TTL: {ttl}s)")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[MemoryStore] {message}")


class CacheProvider(Protocol):
    """Cache operations application code depends on. TTLs are in seconds."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool: ...

    async def delete(self, key: str) -> None: ...

    async def has(self, key: str) -> bool: ...

    async def get_many(self, keys: Iterable[str]) -> list[Any | None]: ...

    async def set_many(self, entries: dict[str, Any], ttl: int | None = None) -> None: ...

    async def delete_many(self, keys: Iterable[str]) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def incr(self, key: str, delta: int = 1) -> int: ...

    async def decr(self, key: str, delta: int = 1) -> int: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...

    async def reset(self) -> None: ...

    async def wrap(
        self, key: str, fn: Callable[[], Awaitable[T]], ttl: int | None = None
    ) -> T: ...

    async def close(self) -> None: ...


class RemoteStore(Protocol):
    """Operations the L2 tier must provide."""

    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_many(self, keys: Iterable[str]) -> int: ...

    async def incr(self, key: str, delta: int = 1) -> int: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...

    async def clear(self) -> None: ...


def _redis_errors(func):
    """Re-raise redis failures as CacheError."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except RedisError as e:
            logger.error(f"[RedisStore] {func.__name__} failed: {type(e).__name__}: {e}")
            raise CacheError(f"Redis {func.__name__} failed: {e}") from e

    return wrapper


class RedisStore:
    """Redis tier. Values are stored as JSON text."""

    def __init__(self, client: Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(Redis.from_url(url, decode_responses=True, encoding="utf-8"))

    @_redis_errors
    async def get(self, key: str) -> CacheEntry | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        return CacheEntry(value=json.loads(raw))

    @_redis_errors
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        await self._redis.set(key, json.dumps(value), ex=ttl or None)

    @_redis_errors
    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        written = await self._redis.set(key, json.dumps(value), ex=ttl or None, nx=True)
        return bool(written)

    @_redis_errors
    async def delete(self, key: str) -> bool:
        return bool(await self._redis.delete(key))

    @_redis_errors
    async def delete_many(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        return int(await self._redis.delete(*keys))

    @_redis_errors
    async def delete_pattern(self, pattern: str) -> int:
        keys = [key async for key in self._redis.scan_iter(match=pattern)]
        if not keys:
            return 0
        return int(await self._redis.delete(*keys))

    @_redis_errors
    async def incr(self, key: str, delta: int = 1) -> int:
        return int(await self._redis.incrby(key, delta))

    @_redis_errors
    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._redis.expire(key, ttl))

    @_redis_errors
    async def ttl(self, key: str) -> int:
        return int(await self._redis.ttl(key))

    @_redis_errors
    async def clear(self) -> None:
        await self._redis.flushdb()

    async def close(self) -> None:
        await self._redis.aclose()


class TieredCache:
    """
    Cache provider composed of a local L1 tier and an optional remote L2 tier.

    Usage:
        cache = TieredCache(MemoryStore(max_size=100), RedisStore.from_url(url))

        profile = await cache.wrap(
            f"profile:{user_id}",
            lambda: load_profile(user_id),
            ttl=300,
        )

    None is not a cacheable value: get() returns None for a miss.
    """

    def __init__(
        self,
        local: MemoryStore,
        remote: RemoteStore | None = None,
        default_ttl: int | None = 300,
    ):
        self._local = local
        self._remote = remote
        self._default_ttl = default_ttl

    @property
    def has_remote(self) -> bool:
        return self._remote is not None

    async def get(self, key: str) -> Any | None:
        entry = await self._lookup(key)
        return entry.value if entry is not None else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        ttl = ttl if ttl is not None else self._default_ttl
        if self._remote is not None:
            await self._remote.set(key, value, ttl)
        await self._local.set(key, value, ttl)

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Set only if absent. Atomic when the remote tier is configured (SET NX);
        a memory-only cache is atomic within this process only.
        """
        ttl = ttl if ttl is not None else self._default_ttl
        if self._remote is None:
            return await self._local.add(key, value, ttl)

        written = await self._remote.add(key, value, ttl)
        if written:
            await self._local.set(key, value, ttl)
        return written

    async def delete(self, key: str) -> None:
        await self._local.delete(key)
        if self._remote is not None:
            await self._remote.delete(key)

    async def has(self, key: str) -> bool:
        return await self._lookup(key) is not None

    async def get_many(self, keys: Iterable[str]) -> list[Any | None]:
        return list(await asyncio.gather(*(self.get(key) for key in keys)))

    async def set_many(self, entries: dict[str, Any], ttl: int | None = None) -> None:
        await asyncio.gather(
            *(self.set(key, value, ttl) for key, value in entries.items())
        )

    async def delete_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        await self._local.delete_many(keys)
        if self._remote is not None:
            await self._remote.delete_many(keys)

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        Raises:
            UnsupportedOperationError: If the remote tier cannot scan keys
        """
        if self._remote is None:
            return await self._local.delete_pattern(pattern)

        remote_delete = getattr(self._remote, "delete_pattern", None)
        if remote_delete is None:
            raise UnsupportedOperationError(
                f"delete_pattern('{pattern}') is not supported by "
                f"{type(self._remote).__name__}; use delete_many() with known keys"
            )
        deleted = await remote_delete(pattern)
        await self._local.delete_pattern(pattern)
        return deleted

    async def incr(self, key: str, delta: int = 1) -> int:
        if self._remote is None:
            return await self._local.incr(key, delta)

        value = await self._remote.incr(key, delta)
        # Next read falls through to the remote counter
        await self._local.delete(key)
        return value

    async def decr(self, key: str, delta: int = 1) -> int:
        return await self.incr(key, -delta)

    async def expire(self, key: str, ttl: int) -> bool:
        """Set a TTL on an existing key, typically a fresh counter."""
        if self._remote is not None:
            return await self._remote.expire(key, ttl)
        return await self._local.expire(key, ttl)

    async def ttl(self, key: str) -> int:
        """Remaining seconds, -1 if the key has no known expiry, -2 if absent."""
        if self._remote is not None:
            return await self._remote.ttl(key)
        return await self._local.ttl(key)

    async def reset(self) -> None:
        """Clear every tier. Administrative use only."""
        if self._remote is not None:
            await self._remote.clear()
        await self._local.clear()
        logger.warning("[TieredCache] cache reset")

    async def wrap(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        ttl: int | None = None,
    ) -> T:
        """
        Return the cached value for key, or compute, cache and return it.

        Cache failures fall through to fn(); the value is still returned when
        it cannot be stored.
        """
        try:
            cached = await self.get(key)
        except CacheError as e:
            logger.warning(f"[TieredCache] read of {key[:50]} failed, computing: {e}")
            return await fn()
        if cached is not None:
            return cached

        value = await fn()
        if value is not None:
            try:
                await self.set(key, value, ttl)
            except CacheError as e:
                logger.warning(f"[TieredCache] write of {key[:50]} failed: {e}")
        return value

    async def close(self) -> None:
        close = getattr(self._remote, "close", None)
        if close is not None:
            await close()

    def get_stats(self) -> CacheStats:
        return self._local.get_stats()

    async def _lookup(self, key: str) -> CacheEntry | None:
        entry = await self._local.get(key)
        if entry is not None or self._remote is None:
            return entry

        entry = await self._remote.get(key)
        if entry is not None:
            await self._local.set(key, entry.value, self._default_ttl)
        return entry


def create_cache(settings: Settings) -> TieredCache:
    """Build the application cache from settings."""
    local = MemoryStore(max_size=settings.cache_max, default_ttl=settings.cache_ttl)
    remote = None
    if settings.cache_remote_enabled:
        remote = RedisStore.from_url(settings.redis_connection_url)
    logger.info(
        f"Cache configured: L1 max={settings.cache_max}, "
        f"L2={'redis' if remote else 'disabled'}, ttl={settings.cache_ttl}s"
    )
    return TieredCache(local, remote, default_ttl=settings.cache_ttl)
