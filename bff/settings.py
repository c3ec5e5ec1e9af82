import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Service Configuration
    service_name: str = Field(default="bff-server", alias="SERVICE_NAME")
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Supabase Configuration
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_anon_key: str = Field(default="", alias="SUPABASE_ANON_KEY")
    supabase_service_role_key: str = Field(
        default="", alias="SUPABASE_SERVICE_ROLE_KEY"
    )

    # Database Call Configuration
    db_timeout_ms: int = Field(default=5000, alias="DB_TIMEOUT_MS")
    db_retries: int = Field(default=2, alias="DB_RETRIES")
    db_base_delay_ms: int = Field(default=100, alias="DB_BASE_DELAY_MS")
    db_retry_on_429: bool = Field(default=False, alias="DB_RETRY_ON_429")

    # Redis / Cache Configuration
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_password: str | None = Field(default=None, alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    cache_ttl: int = Field(default=300, alias="CACHE_TTL")
    cache_max: int = Field(default=5000, alias="CACHE_MAX")
    cache_remote_enabled: bool = Field(default=True, alias="CACHE_REMOTE_ENABLED")

    # HTTP Configuration
    http_timeout_ms: int = Field(default=8000, alias="HTTP_TIMEOUT_MS")
    throttler_enabled: bool = Field(default=True, alias="THROTTLER_ENABLED")
    throttler_ttl_seconds: int = Field(default=60, alias="THROTTLER_TTL_SECONDS")
    throttler_limit: int = Field(default=20, alias="THROTTLER_LIMIT")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")

    # Idempotency Configuration
    idempotency_ttl: int = Field(default=86400, alias="IDEMPOTENCY_TTL")
    idempotency_lock_ttl: int = Field(default=60, alias="IDEMPOTENCY_LOCK_TTL")
    idempotency_header: str = Field(
        default="Idempotency-Key", alias="IDEMPOTENCY_HEADER"
    )

    @property
    def redis_connection_url(self) -> str:
        """REDIS_URL if set, otherwise composed from the host/port parts."""
        if self.redis_url:
            return self.redis_url
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    def missing_required(self) -> list[str]:
        """Names of required environment variables that are unset."""
        required = {
            "SUPABASE_URL": self.supabase_url,
            "SUPABASE_ANON_KEY": self.supabase_anon_key,
            "SUPABASE_SERVICE_ROLE_KEY": self.supabase_service_role_key,
        }
        return [name for name, value in required.items() if not value]


global_settings = Settings.model_validate(dict(os.environ))
