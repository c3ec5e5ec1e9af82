"""Request tracing, access logging, metrics, rate limiting and request deadlines."""

import asyncio
import math
import time
import uuid
from typing import Callable, Iterable

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from bff.api.errors import error_body
from bff.services.errors import CacheError

REQUEST_ID_HEADER = "X-Request-ID"

# Health checks and scrapes are never throttled
SKIP_THROTTLE_PATHS = frozenset({"/healthz", "/readyz", "/metrics"})


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Assign a request id, bind it to log records, and log each request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        request.state.started_at = time.perf_counter()

        with logger.contextualize(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = (time.perf_counter() - request.state.started_at) * 1000
                logger.exception(
                    f"{request.method} {request.url.path} failed after {duration_ms:.1f}ms"
                )
                raise

            duration_ms = (time.perf_counter() - request.state.started_at) * 1000
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"({duration_ms:.1f}ms)"
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class HttpMetricsMiddleware(BaseHTTPMiddleware):
    """Observe duration and status of every request, labelled by route template."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        metrics = getattr(request.app.state, "metrics", None)
        if metrics is None:
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._record(metrics, request, 500, started)
            raise
        self._record(metrics, request, response.status_code, started)
        return response

    @staticmethod
    def _record(metrics, request: Request, status: int, started: float) -> None:
        # The router stores the matched route in the shared scope
        route = getattr(request.scope.get("route"), "path", "unknown")
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.observe_request(request.method, route, status, duration_ms)


class ThrottleMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window rate limit per caller, counted in the application cache.

    Callers are keyed by user id when authenticated, otherwise by client
    address. With the Redis tier the window is shared by every process.
    If the counter cannot be reached the request is let through.
    """

    def __init__(
        self,
        app,
        limit: int = 20,
        ttl_seconds: int = 60,
        exempt_paths: Iterable[str] = SKIP_THROTTLE_PATHS,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)
        self._limit = limit
        self._ttl = ttl_seconds
        self._exempt = frozenset(exempt_paths)
        self._clock = clock

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        cache = getattr(request.app.state, "cache", None)
        if cache is None or request.url.path in self._exempt:
            return await call_next(request)

        now = self._clock()
        window = int(now // self._ttl)
        key = f"throttle:{caller_key(request)}:{window}"
        try:
            count = await cache.incr(key)
            if count == 1:
                await cache.expire(key, self._ttl)
        except CacheError as e:
            logger.warning(f"[Throttle] counter unavailable, allowing request: {e}")
            return await call_next(request)

        reset = max(1, math.ceil((window + 1) * self._ttl - now))
        if count > self._limit:
            logger.info(f"[Throttle] {key} over limit ({count}/{self._limit})")
            return JSONResponse(
                status_code=429,
                content=error_body(
                    request,
                    429,
                    "Too Many Requests",
                    "Rate limit exceeded",
                    {"limit": self._limit, "retryAfter": reset},
                ),
                headers={
                    "Retry-After": str(reset),
                    "X-RateLimit-Limit": str(self._limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self._limit)
        response.headers["X-RateLimit-Remaining"] = str(self._limit - count)
        response.headers["X-RateLimit-Reset"] = str(reset)
        return response


def caller_key(request: Request) -> str:
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.id}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """
    Answer 408 when a request outlives its deadline.

    Like the database call timeout this only stops waiting: the handler is
    left to finish on its own and its response is discarded.
    """

    def __init__(self, app, timeout_ms: int = 8000):
        super().__init__(app)
        self._timeout_ms = timeout_ms

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), self._timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(
                f"{request.method} {request.url.path} timed out after {self._timeout_ms}ms"
            )
            return JSONResponse(
                status_code=408,
                content=error_body(
                    request,
                    408,
                    "Request Timeout",
                    "Request timed out",
                    {"timeoutMs": self._timeout_ms},
                ),
            )
