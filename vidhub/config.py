"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded outside dev defaults)
    - get_settings() is cached (lru_cache) — single instance per process
    - drain_timeout_seconds < shutdown_timeout_seconds (validated)
    - Workers never call get_settings(): they receive Settings inside WorkerConfig

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support (ADR: developer UX)
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
    - database_name applied only when the URL names no database (sqlite test URLs pass through)
"""

import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url

from vidhub.core.shutdown_protocol import (
    DRAIN_TIMEOUT_SECONDS, SHUTDOWN_TIMEOUT_SECONDS,
)


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = "postgresql+asyncpg://vidhub:vidhub@db:5432"
    database_name: str = "vidhub"

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosting providers hand out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Cache
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl_seconds: int = 20

    # Server
    host: str = "0.0.0.0"
    port: int = 7000
    worker_count: int | None = None

    # Lifecycle
    shutdown_timeout_seconds: float = SHUTDOWN_TIMEOUT_SECONDS
    drain_timeout_seconds: float = DRAIN_TIMEOUT_SECONDS

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]
    cors_methods: list[str] = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]
    cors_allow_headers: list[str] = ["Content-Type", "Authorization"]
    cors_credentials: bool = False

    # Rate limit (per worker process)
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60

    # Auth
    access_token_secret: str = "dev-access-secret-change-me"
    access_token_expiry_minutes: int = 60
    refresh_token_secret: str = "dev-refresh-secret-change-me"
    refresh_token_expiry_days: int = 10

    # WebSocket
    websocket_host: str | None = None
    websocket_token_secret: str = "dev-websocket-secret-change-me"

    # Media
    media_root: str = "public/media"
    media_url_prefix: str = "/static/media"
    max_upload_bytes: int = 10 * 1024 * 1024

    # Test endpoints
    currencies_url: str = "https://freetestapi.com/api/v1/currencies"
    todos_url: str = "https://jsonplaceholder.typicode.com/todos"

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"
    log_dir: str | None = None

    @model_validator(mode="after")
    def drain_fits_inside_shutdown(self) -> "Settings":
        if self.drain_timeout_seconds >= self.shutdown_timeout_seconds:
            raise ValueError(
                "drain_timeout_seconds must be lower than shutdown_timeout_seconds",
            )
        return self

    @property
    def database_dsn(self) -> str:
        """database_url with database_name applied when the URL has none."""
        url = make_url(self.database_url)
        if not url.database:
            url = url.set(database=self.database_name)
        return url.render_as_string(hide_password=False)

    @property
    def effective_worker_count(self) -> int:
        """One worker per logical CPU unless overridden."""
        if self.worker_count is not None and self.worker_count > 0:
            return self.worker_count
        return os.cpu_count() or 1


@lru_cache
def get_settings() -> Settings:
    return Settings()
