"""Redis Cache — JSON get/setex over redis.asyncio, one client per worker process.

Invariants:
    - Values stored as JSON text; get() returns the decoded object or None on miss
    - Read failures degrade to a miss (logged); write failures raise CacheError
    - ping() never raises — readiness probes read its bool

Design Decisions:
    - Lazy client creation on connect(): the Primary never opens a cache connection
    - decode_responses=True: callers see str, never bytes
"""

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from vidhub.core.errors import CacheError

logger = logging.getLogger(__name__)


class RedisCache:
    """Thin JSON cache over a Redis connection."""

    def __init__(self, redis_url: str, default_ttl: int = 20):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.client: redis.Redis | None = None

    async def connect(self) -> None:
        self.client = redis.from_url(
            self.redis_url, encoding="utf-8", decode_responses=True,
        )

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as e:
            logger.error(f"Cache ping failed: {e}", extra={"service": "cache"})
            return False

    async def get(self, key: str) -> Any | None:
        if self.client is None:
            return None
        try:
            raw = await self.client.get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"Cache read failed for {key}: {e}", extra={"service": "cache"})
            return None
        if raw is None:
            return None
        return json.loads(raw)

    async def setex(self, key: str, value: Any, ttl: int | None = None) -> None:
        if self.client is None:
            raise CacheError("client not connected", "setex")
        try:
            await self.client.setex(key, ttl or self.default_ttl, json.dumps(value))
        except (RedisError, OSError) as e:
            logger.error(f"Cache write failed for {key}: {e}", extra={"service": "cache"})
            raise CacheError(str(e), "setex") from e
