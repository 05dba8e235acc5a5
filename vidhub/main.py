"""vidhub API — FastAPI application factory, one instance per worker process.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map VidhubError → structured JSON responses
    - CORS, security headers and rate limit configured from settings (not hardcoded)
    - Per-worker resources (DB pool, cache client, HTTP client, media storage) opened in
      lifespan and closed on drain; app.state.settings available before startup

Design Decisions:
    - create_app(settings) over a module-level app: the worker builds its app from the
      settings the Primary handed it, tests build theirs from fixtures
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Static media mounted AFTER API routes so /api/v1/* takes precedence
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from vidhub.config import Settings
from vidhub.api.error_handlers import register_error_handlers
from vidhub.api.middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from vidhub.api.routes import diagnostics, health, users, websocket
from vidhub.infrastructure.cache import RedisCache
from vidhub.infrastructure.database import DatabaseSessionManager
from vidhub.infrastructure.media_storage import LocalMediaStorage

logger = logging.getLogger(__name__)

_UPSTREAM_TIMEOUT_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle for one worker."""
    settings: Settings = app.state.settings
    Path(settings.media_root).mkdir(parents=True, exist_ok=True)
    app.state.db = DatabaseSessionManager(
        settings.database_dsn,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    app.state.cache = RedisCache(settings.redis_url, settings.cache_ttl_seconds)
    await app.state.cache.connect()
    app.state.http_client = httpx.AsyncClient(timeout=_UPSTREAM_TIMEOUT_SECONDS)
    app.state.media = LocalMediaStorage(
        settings.media_root, settings.media_url_prefix, settings.max_upload_bytes,
    )
    logger.info("vidhub API started", extra={"service": "app"})
    try:
        yield
    finally:
        logger.info("vidhub API shutting down", extra={"service": "app"})
        await app.state.http_client.aclose()
        await app.state.cache.close()
        await app.state.db.close()


def create_app(settings: Settings) -> FastAPI:
    app = FastAPI(title="vidhub API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings

    # Innermost first: CORS wraps security headers wraps the rate limiter
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=settings.cors_methods,
        allow_headers=settings.cors_allow_headers,
        allow_credentials=settings.cors_credentials,
    )

    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(diagnostics.router)
    app.include_router(users.router)
    app.include_router(websocket.router)

    app.mount(
        settings.media_url_prefix,
        StaticFiles(directory=settings.media_root, check_dir=False),
        name="media",
    )
    return app
