"""HTTP Middleware — security headers and per-process rate limiting.

Invariants:
    - Every HTTP response carries the security header subset
    - Rate limit state lives in the worker process: N workers → N independent budgets
    - A refused request never reaches the route; body is the RATE_LIMITED error envelope

Design Decisions:
    - BaseHTTPMiddleware: HTTP only, WebSocket upgrades pass through untouched
    - Counting delegated to core/rate_window.py (pure, clock injected)
"""

import logging
import time
from collections.abc import Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from vidhub.core.errors import RateLimitExceededError
from vidhub.core.rate_window import Window, register_hit

logger = logging.getLogger(__name__)

_PRUNE_ABOVE = 10_000

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed window per client IP."""

    def __init__(
        self,
        app,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.windows: dict[str, Window] = {}

    async def dispatch(self, request: Request, call_next):
        key = request.client.host if request.client else "unknown"
        now = self.clock()
        if len(self.windows) > _PRUNE_ABOVE:
            self._prune(now)
        verdict = register_hit(
            self.windows.get(key), now,
            self.max_requests, self.window_seconds,
        )
        self.windows[key] = verdict.window
        if not verdict.allowed:
            exc = RateLimitExceededError(verdict.retry_after_ms)
            logger.warning(
                f"Rate limit exceeded for {key}",
                extra={"error_code": exc.code, "path": request.url.path},
            )
            return JSONResponse(
                status_code=exc.http_status,
                content=exc.to_response(),
                headers={"Retry-After": str(max(1, verdict.retry_after_ms // 1000))},
            )
        response = await call_next(request)
        response.headers["RateLimit-Limit"] = str(self.max_requests)
        response.headers["RateLimit-Remaining"] = str(verdict.remaining)
        return response

    def _prune(self, now: float) -> None:
        self.windows = {
            k: w for k, w in self.windows.items()
            if now - w.started_at < self.window_seconds
        }
