"""
CallExecutor - Deadline and retry wrapper for database calls.

Every attempt is raced against a timer. Failures are classified as
retryable (timeouts, connection resets, 5xx, 408, optionally 429) or fatal.
Retryable failures back off exponentially with jitter:

    delay = min(base_delay * 2**attempt + uniform(0, 50ms), 2000ms)

The timeout only abandons *waiting*: the underlying coroutine keeps running
and may still complete server-side after the caller has given up, so a call
that timed out can have at-least-once side effects.
"""

import asyncio
import dataclasses
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol, TypeVar

import httpx
from loguru import logger

from bff.services.errors import CallTimeoutError, RetryExhaustedError
from bff.settings import Settings

T = TypeVar("T")

MAX_DELAY_MS = 2000
JITTER_MS = 50

RETRYABLE_CODES = frozenset(
    {"ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "ECONNABORTED", "EPIPE", "EAI_AGAIN"}
)
RETRYABLE_MESSAGES = (
    "timeout",
    "timed out",
    "connection reset",
    "connection refused",
    "connection aborted",
    "failed to connect",
    "connect error",
    "server disconnected",
)


class MetricsSink(Protocol):
    """Receives one observation per attempt."""

    def observe(self, label: str, outcome: str, duration_ms: float) -> None: ...


@dataclass
class CallOptions:
    """Per-call execution settings."""

    timeout_ms: int = 5000
    max_retries: int = 2
    base_delay_ms: int = 100
    label: str = "db.call"
    retry_on_429: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "CallOptions":
        return cls(
            timeout_ms=settings.db_timeout_ms,
            max_retries=settings.db_retries,
            base_delay_ms=settings.db_base_delay_ms,
            retry_on_429=settings.db_retry_on_429,
        )


@dataclass
class CallOutcome:
    """Record of a single attempt."""

    label: str
    attempt: int
    started_at: datetime = field(default_factory=datetime.now)
    outcome: str = "ok"  # 'ok' | 'retry' | 'timeout' | 'failed'


def error_status(error: BaseException) -> int | None:
    """Best-effort HTTP-like status carried by an exception."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code

    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value

    # PostgREST reports non-JSON gateway failures with the HTTP status as code
    code = getattr(error, "code", None)
    if isinstance(code, str) and len(code) == 3 and code.isdigit():
        return int(code)
    return None


def is_retryable(error: BaseException, retry_on_429: bool = False) -> bool:
    """Classify a failure as transient."""
    if isinstance(
        error,
        (CallTimeoutError, asyncio.TimeoutError, ConnectionError, httpx.TransportError),
    ):
        return True

    code = getattr(error, "code", None)
    if isinstance(code, str) and code.upper() in RETRYABLE_CODES:
        return True

    status = error_status(error)
    if status is not None:
        if 500 <= status < 600 or status == 408:
            return True
        if status == 429:
            return retry_on_429

    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGES)


def backoff_delay_ms(
    attempt: int, base_delay_ms: int, jitter: Callable[[], float] = random.random
) -> float:
    """Capped exponential backoff with up to 50ms of jitter."""
    return min(base_delay_ms * 2**attempt + jitter() * JITTER_MS, MAX_DELAY_MS)


def _consume_result(task: asyncio.Future) -> None:
    # Abandoned attempts may still fail later; retrieve the exception so it
    # is not reported as never retrieved.
    if not task.cancelled():
        task.exception()


class CallExecutor:
    """
    Runs awaitables under a deadline with bounded retries.

    Usage:
        executor = CallExecutor(metrics=sink)

        row = await executor.execute(
            lambda: query.execute(),
            label="profiles.findById",
        )
    """

    def __init__(
        self,
        metrics: MetricsSink | None = None,
        defaults: CallOptions | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        self._metrics = metrics
        self._defaults = defaults or CallOptions()
        self._sleep = sleep
        self._jitter = jitter

    @property
    def defaults(self) -> CallOptions:
        return self._defaults

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        options: CallOptions | None = None,
        **overrides: Any,
    ) -> T:
        """
        Execute operation with timeout and retry.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt
            options: Full option set (defaults to the executor's defaults)
            **overrides: Individual CallOptions fields to override

        Raises:
            RetryExhaustedError: If every attempt failed with a retryable error
            Exception: The original error for non-retryable failures
        """
        opts = dataclasses.replace(options or self._defaults, **overrides)
        last_error: BaseException | None = None

        for attempt in range(opts.max_retries + 1):
            record = CallOutcome(label=opts.label, attempt=attempt)
            started = time.perf_counter()

            try:
                result = await self._attempt(operation, opts)
            except Exception as e:
                last_error = e
                retryable = is_retryable(e, opts.retry_on_429)
                has_next = attempt < opts.max_retries

                if isinstance(e, CallTimeoutError):
                    record.outcome = "timeout"
                elif retryable and has_next:
                    record.outcome = "retry"
                else:
                    record.outcome = "failed"
                self._observe(record, started)

                if not retryable:
                    raise
                if not has_next:
                    break

                delay = backoff_delay_ms(attempt, opts.base_delay_ms, self._jitter)
                logger.warning(
                    f"[CallExecutor] {opts.label} attempt {attempt + 1} failed "
                    f"({type(e).__name__}: {e}), retrying in {delay:.0f}ms"
                )
                await self._sleep(delay / 1000)
                continue

            record.outcome = "ok"
            self._observe(record, started)
            return result

        assert last_error is not None
        attempts = opts.max_retries + 1
        logger.error(f"[CallExecutor] {opts.label} exhausted after {attempts} attempts")
        raise RetryExhaustedError(opts.label, attempts, last_error) from last_error

    async def _attempt(
        self, operation: Callable[[], Awaitable[T]], opts: CallOptions
    ) -> T:
        task = asyncio.ensure_future(operation())
        try:
            return await asyncio.wait_for(
                asyncio.shield(task), timeout=opts.timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            task.add_done_callback(_consume_result)
            raise CallTimeoutError(opts.label, opts.timeout_ms) from None

    def _observe(self, record: CallOutcome, started: float) -> None:
        if self._metrics is None:
            return
        duration_ms = (time.perf_counter() - started) * 1000
        try:
            self._metrics.observe(record.label, record.outcome, duration_ms)
        except Exception as e:
            logger.debug(f"[CallExecutor] metrics sink failed for {record.label}: {e}")
