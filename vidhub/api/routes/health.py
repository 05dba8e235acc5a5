"""Health & Readiness Probes — liveness and readiness endpoints for the load balancer.

Invariants:
    - GET /health always returns 200 if the worker is up (liveness), naming the worker pid
    - GET /health/ready returns 503 if the database or the cache is unreachable

Design Decisions:
    - Separate liveness/readiness: liveness restarts, readiness removes from rotation
    - The pid in the liveness body shows which worker answered (OS distributes connections)
"""

import logging
import os

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])


@router.get("", status_code=status.HTTP_200_OK)
async def health_check():
    """Basic liveness probe."""
    return [{"message": f"Worker {os.getpid()} is handling the task...!"}]


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness probe — database and cache connectivity."""
    db = getattr(request.app.state, "db", None)
    cache = getattr(request.app.state, "cache", None)
    db_ok = await db.health_check() if db else False
    cache_ok = await cache.ping() if cache else False
    checks = {
        "database": "healthy" if db_ok else "unavailable",
        "cache": "healthy" if cache_ok else "unavailable",
    }
    if not (db_ok and cache_ok):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
