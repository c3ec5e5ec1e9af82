"""
Liveness and readiness checks.
"""

import asyncio
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from loguru import logger

from bff.datastore.repository import BaseRepository
from bff.datastore.types import FindManyOptions
from bff.services.cache import CacheProvider
from bff.settings import Settings


class CheckStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    ERROR = "error"
    SKIPPED = "skipped"


class HealthRepository(BaseRepository):
    """Access to the health_check table."""

    pass


class DatabaseHealthIndicator:
    """Runs a one-row query against the health_check table."""

    def __init__(self, repo: HealthRepository):
        self._repo = repo

    async def check(self) -> CheckStatus:
        try:
            result = await self._repo.find_many(FindManyOptions(limit=1))
        except Exception as e:
            logger.error(f"Unexpected error during database health check: {e}")
            return CheckStatus.ERROR

        if result.error:
            logger.error(f"Database health check failed: {result.error.message}")
            return CheckStatus.ERROR

        logger.debug(f"Database health check passed ({len(result.data or [])} rows)")
        return CheckStatus.OK


class CacheHealthIndicator:
    """Write, read back and delete a ping key."""

    health_check_key = "health:check:ping"

    def __init__(self, cache: CacheProvider):
        self._cache = cache

    async def check(self) -> CheckStatus:
        try:
            value = f"ping-{time.time_ns()}"
            await self._cache.set(self.health_check_key, value, 10)
            retrieved = await self._cache.get(self.health_check_key)
            await self._cache.delete(self.health_check_key)
        except Exception as e:
            logger.error(f"Cache health check failed: {e}")
            return CheckStatus.ERROR

        if retrieved != value:
            logger.warning(f"Cache returned wrong value: expected {value}, got {retrieved}")
            return CheckStatus.DEGRADED

        logger.debug("Cache health check passed")
        return CheckStatus.OK


class HealthService:
    def __init__(self, settings: Settings, started_at: float | None = None):
        self._settings = settings
        self._started_at = started_at or time.time()

    def liveness(self) -> dict[str, Any]:
        return {
            "status": CheckStatus.OK.value,
            "service": self._settings.service_name,
            "uptimeMs": int((time.time() - self._started_at) * 1000),
            "timestamp": _now(),
            "env": self._settings.app_env,
        }

    async def readiness(
        self, database: DatabaseHealthIndicator, cache: CacheHealthIndicator
    ) -> dict[str, Any]:
        missing = self._settings.missing_required()
        if missing:
            return {
                "status": CheckStatus.DEGRADED.value,
                "service": self._settings.service_name,
                "timestamp": _now(),
                "checks": {
                    "env": f"Missing required environment variables: {', '.join(missing)}",
                    "database": CheckStatus.SKIPPED.value,
                    "cache": CheckStatus.SKIPPED.value,
                },
            }

        database_status, cache_status = await asyncio.gather(
            database.check(), cache.check()
        )
        statuses = (database_status, cache_status)

        overall = CheckStatus.OK
        if CheckStatus.ERROR in statuses:
            overall = CheckStatus.ERROR
        elif CheckStatus.DEGRADED in statuses:
            overall = CheckStatus.DEGRADED

        return {
            "status": overall.value,
            "service": self._settings.service_name,
            "timestamp": _now(),
            "checks": {
                "env": CheckStatus.OK.value,
                "database": database_status.value,
                "cache": cache_status.value,
            },
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
