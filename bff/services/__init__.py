"""
Service layer infrastructure - resilience and caching for upstream calls.

Provides:
- CallExecutor: Per-attempt deadlines, bounded retries with backoff
- TieredCache: In-process LRU tier in front of an optional Redis tier
- IdempotencyInterceptor: Replay-safe handling of write requests
- BaseService: DbResponse envelope unwrapping
"""

from bff.services.errors import (
    ServiceError,
    CacheError,
    UnsupportedOperationError,
    CallTimeoutError,
    RetryExhaustedError,
)
from bff.services.executor import CallExecutor, CallOptions, CallOutcome, MetricsSink
from bff.services.cache import (
    CacheProvider,
    MemoryStore,
    RedisStore,
    TieredCache,
    create_cache,
)
from bff.services.idempotency import (
    IdempotencyConfig,
    IdempotencyInterceptor,
    IdempotentResult,
    StoredResponse,
)
from bff.services.base import BaseService

__all__ = [
    # Errors
    "ServiceError",
    "CacheError",
    "UnsupportedOperationError",
    "CallTimeoutError",
    "RetryExhaustedError",
    # Executor
    "CallExecutor",
    "CallOptions",
    "CallOutcome",
    "MetricsSink",
    # Cache
    "CacheProvider",
    "MemoryStore",
    "RedisStore",
    "TieredCache",
    "create_cache",
    # Idempotency
    "IdempotencyConfig",
    "IdempotencyInterceptor",
    "IdempotentResult",
    "StoredResponse",
    # Base service
    "BaseService",
]
