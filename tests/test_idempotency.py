"""Unit tests for the idempotency interceptor."""

from __future__ import annotations

import asyncio

import pytest

from bff.exceptions import IdempotencyConflictError
from bff.services.cache import MemoryStore, RedisStore, TieredCache
from bff.services.errors import CacheError
from bff.services.idempotency import (
    IdempotencyConfig,
    IdempotencyInterceptor,
    StoredResponse,
    fingerprint,
)
from bff.settings import Settings


class CountingHandler:
    """Handler returning a fixed response and counting invocations."""

    def __init__(self, status_code: int = 201, error: Exception | None = None) -> None:
        """Configure the outcome."""
        self.status_code = status_code
        self.error = error
        self.calls = 0
        self.release = asyncio.Event()
        self.release.set()

    async def __call__(self) -> StoredResponse:
        self.calls += 1
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return StoredResponse(
            status_code=self.status_code,
            body=f'{{"call":{self.calls}}}',
            headers={"content-type": "application/json"},
        )


class BrokenCache:
    """Cache whose every operation fails."""

    def __init__(self) -> None:
        """Initialize call tracking."""
        self.calls: list[str] = []

    async def get(self, key):
        self.calls.append("get")
        raise CacheError("redis down")

    async def add(self, key, value, ttl=None):
        self.calls.append("add")
        raise CacheError("redis down")

    async def set(self, key, value, ttl=None):
        raise CacheError("redis down")

    async def delete(self, key):
        raise CacheError("redis down")


class LockFailingCache(BrokenCache):
    """Reads work; taking the lock fails."""

    async def get(self, key):
        self.calls.append("get")
        return None


@pytest.fixture
def interceptor(memory_cache: TieredCache) -> IdempotencyInterceptor:
    return IdempotencyInterceptor(memory_cache, IdempotencyConfig(ttl=3600, lock_ttl=30))


@pytest.mark.asyncio
async def test_second_call_replays_stored_response(interceptor, memory_cache) -> None:
    """The handler runs once; the repeat is served from cache."""
    handler = CountingHandler()

    first = await interceptor.intercept("key-1", handler)
    second = await interceptor.intercept("key-1", handler)

    assert handler.calls == 1
    assert first.replay is False
    assert second.replay is True
    assert second.response.status_code == 201
    assert second.response.body == first.response.body
    assert await memory_cache.ttl("idempotency:key-1") == 3600
    assert await memory_cache.get("idempotency:lock:key-1") is None


@pytest.mark.asyncio
async def test_held_lock_raises_conflict(interceptor, memory_cache) -> None:
    """An in-flight request with the same key yields a conflict."""
    await memory_cache.add("idempotency:lock:key-2", True, 30)
    handler = CountingHandler()

    with pytest.raises(IdempotencyConflictError) as excinfo:
        await interceptor.intercept("key-2", handler)

    assert excinfo.value.status_code == 409
    assert excinfo.value.key == "key-2"
    assert handler.calls == 0


@pytest.mark.asyncio
async def test_concurrent_duplicates_run_handler_once(interceptor) -> None:
    """Of two concurrent submissions, one runs and one conflicts."""
    handler = CountingHandler()
    handler.release.clear()

    first = asyncio.create_task(interceptor.intercept("key-3", handler))
    await asyncio.sleep(0)
    second = asyncio.create_task(interceptor.intercept("key-3", handler))
    await asyncio.sleep(0)
    handler.release.set()

    results = await asyncio.gather(first, second, return_exceptions=True)

    assert handler.calls == 1
    assert results[0].replay is False
    assert isinstance(results[1], IdempotencyConflictError)


@pytest.mark.asyncio
async def test_failure_releases_lock_and_stores_nothing(interceptor, memory_cache) -> None:
    """A failing handler frees the key for a retry."""
    failing = CountingHandler(error=RuntimeError("db down"))

    with pytest.raises(RuntimeError):
        await interceptor.intercept("key-4", failing)

    assert await memory_cache.get("idempotency:lock:key-4") is None
    assert await memory_cache.get("idempotency:key-4") is None

    retry = CountingHandler()
    result = await interceptor.intercept("key-4", retry)
    assert result.replay is False
    assert retry.calls == 1


@pytest.mark.asyncio
async def test_error_responses_are_not_stored(interceptor, memory_cache) -> None:
    handler = CountingHandler(status_code=422)

    await interceptor.intercept("key-5", handler)
    await interceptor.intercept("key-5", handler)

    assert handler.calls == 2
    assert await memory_cache.get("idempotency:key-5") is None


@pytest.mark.asyncio
async def test_cache_lookup_failure_fails_open() -> None:
    """An unreachable cache processes the request without dedup."""
    cache = BrokenCache()
    interceptor = IdempotencyInterceptor(cache, IdempotencyConfig())
    handler = CountingHandler()

    result = await interceptor.intercept("key-6", handler)

    assert result.replay is False
    assert handler.calls == 1
    assert cache.calls == ["get"]


@pytest.mark.asyncio
async def test_lock_failure_fails_open() -> None:
    cache = LockFailingCache()
    interceptor = IdempotencyInterceptor(cache, IdempotencyConfig())
    handler = CountingHandler()

    result = await interceptor.intercept("key-7", handler)

    assert result.replay is False
    assert handler.calls == 1
    assert cache.calls == ["get", "add"]


def test_derive_key_prefers_header_case_insensitively(interceptor) -> None:
    key = interceptor.derive_key("POST", "/v1/x", {"idempotency-key": "abc"}, b"{}", "u1")

    assert key == "abc"


def test_derive_key_without_header(interceptor) -> None:
    """No header and no auto-generation means no deduplication."""
    assert interceptor.derive_key("POST", "/v1/x", {}, b'{"a":1}', "u1") is None


def test_derive_key_auto_generates_fingerprint(memory_cache) -> None:
    interceptor = IdempotencyInterceptor(
        memory_cache, IdempotencyConfig(auto_generate_key=True)
    )

    key = interceptor.derive_key("post", "/v1/x", {}, {"a": 1}, "u1")

    assert key == fingerprint("POST", "/v1/x", {"a": 1}, "u1")
    assert len(key) == 64


def test_fingerprint_is_deterministic() -> None:
    """Same inputs hash equally; user and body changes alter the hash."""
    base = fingerprint("POST", "/v1/bookings", {"a": 1, "b": 2}, "u1")

    assert fingerprint("post", "/v1/bookings", {"b": 2, "a": 1}, "u1") == base
    assert fingerprint("POST", "/v1/bookings", {"a": 1, "b": 2}, "u2") != base
    assert fingerprint("POST", "/v1/bookings", {"a": 2, "b": 2}, "u1") != base
    assert fingerprint("POST", "/v1/x", None, None) == fingerprint("POST", "/v1/x", b"", None)
    assert fingerprint("POST", "/v1/x", None, None) == fingerprint("POST", "/v1/x", "{}", "anonymous")


def test_applies_to_configured_methods(interceptor) -> None:
    assert interceptor.applies_to("patch") is True
    assert interceptor.applies_to("GET") is False
    assert interceptor.applies_to("DELETE") is False


def test_config_from_settings_with_overrides() -> None:
    settings = Settings.model_validate(
        {"IDEMPOTENCY_TTL": "120", "IDEMPOTENCY_HEADER": "X-Request-Key"}
    )

    config = IdempotencyConfig.from_settings(settings, methods=("POST",))

    assert config.ttl == 120
    assert config.header_name == "X-Request-Key"
    assert config.lock_ttl == 60
    assert config.methods == ("POST",)


@pytest.mark.asyncio
async def test_memory_only_lock_is_process_local(clock) -> None:
    """
    Two processes with separate memory-only caches can both take the lock.

    Cross-process exclusion needs the Redis tier's SET NX.
    """

    first = IdempotencyInterceptor(TieredCache(MemoryStore(clock=clock)))
    second = IdempotencyInterceptor(TieredCache(MemoryStore(clock=clock)))
    handler = CountingHandler()
    handler.release.clear()

    tasks = [
        asyncio.create_task(first.intercept("shared", handler)),
        asyncio.create_task(second.intercept("shared", handler)),
    ]
    await asyncio.sleep(0)
    handler.release.set()
    results = await asyncio.gather(*tasks)

    assert handler.calls == 2
    assert [r.replay for r in results] == [False, False]


@pytest.mark.asyncio
async def test_redis_lock_excludes_across_processes(clock, fake_redis) -> None:
    """With a shared Redis tier the second process sees the lock."""

    first = IdempotencyInterceptor(TieredCache(MemoryStore(clock=clock), RedisStore(fake_redis)))
    second = IdempotencyInterceptor(TieredCache(MemoryStore(clock=clock), RedisStore(fake_redis)))
    handler = CountingHandler()
    handler.release.clear()

    running = asyncio.create_task(first.intercept("shared", handler))
    await asyncio.sleep(0)
    with pytest.raises(IdempotencyConflictError):
        await second.intercept("shared", handler)
    handler.release.set()
    await running

    replay = await second.intercept("shared", handler)
    assert replay.replay is True
    assert handler.calls == 1
