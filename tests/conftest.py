"""Shared fixtures."""

from __future__ import annotations

import pytest

from bff.services.cache import MemoryStore, RedisStore, TieredCache
from bff.settings import Settings
from fakes import FakeClock, FakeRedis

CONFIGURED_ENV = {
    "SERVICE_NAME": "bff-test",
    "APP_ENV": "test",
    "LOG_LEVEL": "DEBUG",
    "SUPABASE_URL": "http://supabase.test",
    "SUPABASE_ANON_KEY": "anon-key",
    "SUPABASE_SERVICE_ROLE_KEY": "service-key",
    "DB_TIMEOUT_MS": "200",
    "DB_RETRIES": "2",
    "DB_BASE_DELAY_MS": "1",
}


@pytest.fixture
def settings() -> Settings:
    """Settings with every required key present."""
    return Settings.model_validate(CONFIGURED_ENV)


@pytest.fixture
def unconfigured_settings() -> Settings:
    """Settings missing the Supabase keys."""
    return Settings.model_validate({"SERVICE_NAME": "bff-test", "APP_ENV": "test"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock: FakeClock) -> TieredCache:
    """Memory-only cache on a fake clock."""
    return TieredCache(MemoryStore(max_size=100, default_ttl=300, clock=clock))


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def tiered_cache(clock: FakeClock, fake_redis: FakeRedis) -> TieredCache:
    """L1 memory tier in front of a fake Redis tier."""
    return TieredCache(
        MemoryStore(max_size=100, default_ttl=300, clock=clock),
        RedisStore(fake_redis),
        default_ttl=300,
    )
