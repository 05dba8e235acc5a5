"""Diagnostics Routes — load-distribution probes backed by upstream APIs and the cache.

Invariants:
    - Every body names the worker pid that served it
    - Upstream payloads cached under a fixed key for cache_ttl_seconds
    - A cache hit is announced in the message; a cache miss fetches and stores
    - Upstream failure → UpstreamError (502), nothing cached

Design Decisions:
    - One shared httpx.AsyncClient per worker (app.state.http_client), injected for tests
"""

import logging
import os
from typing import Any

import httpx
from fastapi import APIRouter, Body, Depends

from vidhub.api.dependencies import get_app_settings, get_cache, get_http_client
from vidhub.config import Settings
from vidhub.core.errors import UpstreamError
from vidhub.infrastructure.cache import RedisCache

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["diagnostics"])

CURRENCIES_KEY = "TestGetRequest:currencies"
TODOS_KEY = "TestPostRequest:todos"


def _banner(cached: bool) -> str:
    message = f"Worker {os.getpid()} is handling the task...!"
    return f"{message} message from redis" if cached else message


async def _cached_fetch(
    cache: RedisCache, client: httpx.AsyncClient, key: str, url: str, ttl: int,
) -> tuple[Any, bool]:
    hit = await cache.get(key)
    if hit is not None:
        return hit, True
    try:
        response = await client.get(url)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Upstream fetch failed: {e}", extra={"service": "diagnostics"})
        raise UpstreamError(url) from e
    await cache.setex(key, payload, ttl)
    return payload, False


@router.get("/test")
async def worker_banner(settings: Settings = Depends(get_app_settings)):
    return {"message": _banner(False), "port": settings.port}


@router.get("/testGetRequest")
async def currencies(
    settings: Settings = Depends(get_app_settings),
    cache: RedisCache = Depends(get_cache),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    data, cached = await _cached_fetch(
        cache, client, CURRENCIES_KEY, settings.currencies_url, settings.cache_ttl_seconds,
    )
    return {"message": _banner(cached), "data": data}


@router.post("/testPostRequest")
async def todos(
    payload: dict[str, Any] | None = Body(None),
    settings: Settings = Depends(get_app_settings),
    cache: RedisCache = Depends(get_cache),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    data, cached = await _cached_fetch(
        cache, client, TODOS_KEY, settings.todos_url, settings.cache_ttl_seconds,
    )
    return {
        "message": _banner(cached),
        "requested_data": (payload or {}).get("data"),
        "data": data,
    }
