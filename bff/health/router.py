"""Health endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Request

from bff.api.deps import get_cache, table
from bff.datastore.clients import LazyTable
from bff.health.service import (
    CacheHealthIndicator,
    DatabaseHealthIndicator,
    HealthRepository,
    HealthService,
)
from bff.services.cache import TieredCache

router = APIRouter(tags=["health"])


def get_health_service(request: Request) -> HealthService:
    return request.app.state.health


@router.get("/healthz")
async def liveness(health: HealthService = Depends(get_health_service)) -> dict[str, Any]:
    return health.liveness()


@router.get("/readyz")
async def readiness(
    health: HealthService = Depends(get_health_service),
    health_table: LazyTable = Depends(table("health_check")),
    cache: TieredCache = Depends(get_cache),
) -> dict[str, Any]:
    return await health.readiness(
        DatabaseHealthIndicator(HealthRepository(health_table)),
        CacheHealthIndicator(cache),
    )
