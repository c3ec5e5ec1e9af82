"""
IdempotencyInterceptor - Replays completed state-changing requests.

Per idempotency key, two cache entries:
- idempotency:lock:<key>  in-flight marker, short TTL (default 60s)
- idempotency:<key>       completed response, long TTL (default 24h)

Flow:
- result present -> replay stored status/body
- lock held      -> IdempotencyConflictError (retry later)
- otherwise      -> take lock, run handler, store result on success,
                    release lock on success and on failure

Cache failure policy is fail-open: if the cache cannot be read or the lock
cannot be taken, the request is processed without deduplication. Reprocessing
is preferred over blocking a request on cache state we cannot trust.

The lock is taken with the cache's set-if-absent primitive. With a Redis tier
this is SET NX and two concurrent requests cannot both win. A memory-only
cache is only atomic within one process.
"""

import hashlib
import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger

from bff.exceptions import IdempotencyConflictError
from bff.services.cache import CacheProvider
from bff.services.errors import CacheError
from bff.settings import Settings

REPLAY_HEADER = "X-Idempotency-Replay"


@dataclass
class IdempotencyConfig:
    """Idempotency settings for a route or router."""

    ttl: int = 86400
    header_name: str = "Idempotency-Key"
    auto_generate_key: bool = False
    methods: tuple[str, ...] = ("POST", "PUT", "PATCH")
    lock_ttl: int = 60

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "IdempotencyConfig":
        values = {
            "ttl": settings.idempotency_ttl,
            "header_name": settings.idempotency_header,
            "lock_ttl": settings.idempotency_lock_ttl,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class StoredResponse:
    """Response captured for replay."""

    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def succeeded(self) -> bool:
        return 200 <= self.status_code < 400

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StoredResponse":
        return cls(
            status_code=data["status_code"],
            body=data["body"],
            headers=dict(data.get("headers") or {}),
            timestamp=data.get("timestamp", 0.0),
        )


@dataclass
class IdempotentResult:
    """Outcome of an intercepted call."""

    response: StoredResponse
    replay: bool


class IdempotencyInterceptor:
    """
    Deduplicates repeated submissions of the same operation.

    Usage:
        interceptor = IdempotencyInterceptor(cache, IdempotencyConfig())

        key = interceptor.derive_key(method, path, headers, body, user_id)
        if key is None:
            return await handler()
        result = await interceptor.intercept(key, handler)
    """

    def __init__(self, cache: CacheProvider, config: IdempotencyConfig | None = None):
        self._cache = cache
        self.config = config or IdempotencyConfig()

    def applies_to(self, method: str) -> bool:
        return method.upper() in self.config.methods

    def derive_key(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: Any = None,
        user_id: str | None = None,
    ) -> str | None:
        """Client-supplied key, else a request fingerprint if enabled, else None."""
        wanted = self.config.header_name.lower()
        for name, value in headers.items():
            if name.lower() == wanted and value:
                return value

        if self.config.auto_generate_key:
            return fingerprint(method, path, body, user_id)
        return None

    async def intercept(
        self,
        key: str,
        handler: Callable[[], Awaitable[StoredResponse]],
    ) -> IdempotentResult:
        """
        Run handler at most once per key within the result TTL.

        Raises:
            IdempotencyConflictError: If another request holds the key's lock
        """
        result_key = f"idempotency:{key}"
        lock_key = f"idempotency:lock:{key}"

        try:
            cached = await self._cache.get(result_key)
        except CacheError as e:
            logger.warning(f"[Idempotency] result lookup failed, processing without dedup: {e}")
            return IdempotentResult(await handler(), replay=False)

        if cached is not None:
            logger.debug(f"[Idempotency] replaying stored response for key {key[:50]}")
            return IdempotentResult(StoredResponse.from_dict(cached), replay=True)

        try:
            acquired = await self._cache.add(lock_key, True, self.config.lock_ttl)
        except CacheError as e:
            logger.warning(f"[Idempotency] lock unavailable, processing without dedup: {e}")
            return IdempotentResult(await handler(), replay=False)

        if not acquired:
            logger.info(f"[Idempotency] key {key[:50]} is already being processed")
            raise IdempotencyConflictError(key)

        try:
            response = await handler()
        except BaseException:
            await self._release(lock_key)
            raise

        if response.succeeded:
            try:
                await self._cache.set(result_key, asdict(response), self.config.ttl)
            except CacheError as e:
                logger.warning(f"[Idempotency] failed to store response for {key[:50]}: {e}")
        await self._release(lock_key)

        return IdempotentResult(response, replay=False)

    async def _release(self, lock_key: str) -> None:
        try:
            await self._cache.delete(lock_key)
        except CacheError as e:
            # The lock expires on its own after lock_ttl
            logger.warning(f"[Idempotency] failed to release {lock_key}: {e}")


def fingerprint(method: str, path: str, body: Any, user_id: str | None) -> str:
    """Deterministic SHA-256 over method, path, body and user."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not body:
        serialized = "{}"
    elif isinstance(body, str):
        serialized = body
    else:
        serialized = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)

    components = [method.upper(), path, serialized, user_id or "anonymous"]
    return hashlib.sha256("|".join(components).encode()).hexdigest()
