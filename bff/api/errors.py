"""
Exception handlers producing a uniform error body:

    {statusCode, error, message, path, method, requestId, timestamp, details?}
"""

from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException

from bff.datastore.types import DbError, DomainError
from bff.services.errors import CallTimeoutError, RetryExhaustedError, ServiceError


def error_body(
    request: Request,
    status: int,
    error: str | int,
    message: str,
    details: Any = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "statusCode": status,
        "error": error,
        "message": message,
        "path": request.url.path,
        "method": request.method,
        "requestId": getattr(request.state, "request_id", None),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details is not None:
        body["details"] = details
    return body


async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    details = exc.details
    if isinstance(exc, DbError) and exc.hint:
        if isinstance(details, dict):
            details = {**details, "hint": exc.hint}
        elif details is not None:
            details = {"details": details, "hint": exc.hint}
        else:
            details = {"hint": exc.hint}

    if exc.status >= 500:
        logger.error(f"{type(exc).__name__} {exc.code}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} {exc.code}: {exc.message}")

    return JSONResponse(
        status_code=exc.status,
        content=error_body(request, exc.status, exc.code, exc.message, details),
    )


async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
    details: dict[str, Any] = {"operation": exc.service_id}
    if isinstance(exc, RetryExhaustedError):
        details["attempts"] = exc.attempts
    if isinstance(exc, CallTimeoutError):
        details["timeoutMs"] = exc.timeout_ms

    logger.error(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=503,
        content=error_body(
            request, 503, type(exc).__name__, "Upstream service unavailable", details
        ),
    )


async def handle_http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(
            request,
            exc.status_code,
            HTTPStatus(exc.status_code).phrase,
            str(exc.detail),
        ),
        headers=exc.headers,
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_body(request, 500, "InternalServerError", "Internal server error"),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, handle_domain_error)
    app.add_exception_handler(ServiceError, handle_service_error)
    app.add_exception_handler(HTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
