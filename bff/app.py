"""
Application factory.

Process-wide collaborators live on app.state:

    cache               TieredCache
    executor            CallExecutor
    metrics             PrometheusMetrics (None when METRICS_ENABLED is off)
    selector            ClientSelector (None until Supabase is configured)
    auth_client         Supabase Auth client for sign-in flows
    identity            IdentityProvider
    idempotency_config  IdempotencyConfig
    health              HealthService
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI
from loguru import logger

from bff.api.auth import AuthMiddleware, IdentityProvider, SupabaseIdentityProvider
from bff.api.errors import register_error_handlers
from bff.api.middleware import (
    HttpMetricsMiddleware,
    RequestTimeoutMiddleware,
    RequestTracingMiddleware,
    ThrottleMiddleware,
)
from bff.auth.router import router as auth_router
from bff.datastore.clients import (
    ClientSelector,
    close_clients,
    create_auth_client,
    init_clients,
)
from bff.health.router import router as health_router
from bff.health.service import HealthService
from bff.log import configure_logging
from bff.metrics.router import router as metrics_router
from bff.metrics.service import PrometheusMetrics
from bff.profile.router import router as profile_router
from bff.services.cache import TieredCache, create_cache
from bff.services.executor import CallExecutor, CallOptions
from bff.services.idempotency import IdempotencyConfig
from bff.settings import Settings, global_settings


def create_app(
    settings: Settings = global_settings,
    *,
    cache: TieredCache | None = None,
    selector: ClientSelector | None = None,
    identity: IdentityProvider | None = None,
    auth_client: Any = None,
    metrics: PrometheusMetrics | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Collaborators passed in are used as-is and are not closed on shutdown;
    the rest are built from settings in the lifespan.
    """
    if metrics is None and settings.metrics_enabled:
        metrics = PrometheusMetrics()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        logger.info(f"Starting {settings.service_name} ({settings.app_env})...")

        owned_cache = cache is None
        owned_selector = selector is None
        owned_auth = auth_client is None

        app.state.cache = cache or create_cache(settings)
        app.state.executor = CallExecutor(
            metrics=metrics, defaults=CallOptions.from_settings(settings)
        )
        app.state.idempotency_config = IdempotencyConfig.from_settings(settings)
        app.state.health = HealthService(settings)

        app.state.selector = selector
        app.state.auth_client = auth_client
        missing = settings.missing_required()
        if missing and (owned_selector or owned_auth):
            logger.warning(
                f"Supabase clients not initialized, missing: {', '.join(missing)}"
            )
        elif not missing:
            if owned_selector:
                app.state.selector = await init_clients(settings)
            if owned_auth:
                app.state.auth_client = create_auth_client(settings)

        app.state.identity = identity
        if identity is None and app.state.selector is not None:
            app.state.identity = SupabaseIdentityProvider(app.state.selector.admin_client)

        logger.info(f"{settings.service_name} is ready")
        try:
            yield
        finally:
            logger.info(f"Stopping {settings.service_name}...")
            if owned_auth and app.state.auth_client is not None:
                await app.state.auth_client.close()
            if owned_selector and app.state.selector is not None:
                await close_clients(app.state.selector)
            if owned_cache:
                await app.state.cache.close()
            logger.info(f"{settings.service_name} stopped")

    app = FastAPI(title=settings.service_name, lifespan=lifespan)
    app.state.metrics = metrics

    # Last added runs first: tracing, metrics, auth, throttle, timeout
    app.add_middleware(RequestTimeoutMiddleware, timeout_ms=settings.http_timeout_ms)
    if settings.throttler_enabled:
        app.add_middleware(
            ThrottleMiddleware,
            limit=settings.throttler_limit,
            ttl_seconds=settings.throttler_ttl_seconds,
        )
    app.add_middleware(AuthMiddleware)
    app.add_middleware(HttpMetricsMiddleware)
    app.add_middleware(RequestTracingMiddleware)

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(auth_router)
    app.include_router(profile_router)
    return app
