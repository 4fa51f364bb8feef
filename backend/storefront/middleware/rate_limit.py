"""
Storefront Backend — Rate Limiting
====================================

What:  Per-key sliding window limiter, and the middleware that applies it
       per client IP to the whole API.
Why:   Protects the API from abuse. The same limiter also backs the login
       throttle in the auth service (failed attempts per IP).
How:   Tracks timestamps per key in memory using a sliding window.

Algorithm: Sliding Window Log
    1. Each key gets a list of timestamps
    2. On each check, drop timestamps older than the window
    3. If remaining count >= limit, reject with 429
    4. Otherwise record the current timestamp and allow through

    Why sliding window (not fixed window):
    - Fixed window: 100 req/15min resets at :00 → can burst 200 around the boundary
    - Sliding window: always counts the last N seconds → smooth enforcement

Production Upgrade Path:
    State is per process. For multiple workers/instances move the window to
    Redis (sorted set per key, ZREMRANGEBYSCORE + ZCARD in one MULTI/EXEC).
"""

import time
from collections import defaultdict
from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from storefront.exceptions import RateLimitExceededError
from storefront.logger import get_logger

log = get_logger(__name__)


def client_ip(request: Request) -> str:
    """Client address; behind a proxy, configure uvicorn --proxy-headers."""
    return request.client.host if request.client else "unknown"


class SlidingWindowLimiter:
    """
    In-memory sliding window counter keyed by an arbitrary string.

    `hit()` counts and checks in one step (API rate limit). `check()` +
    `record()` separate the two, so a caller can count only failures
    (login throttle).
    """

    def __init__(self, limit: int, window: int):
        self.limit = limit
        self.window = window
        self._hits: Dict[str, List[float]] = defaultdict(list)
        self._checks = 0

    def _prune(self, key: str, now: float) -> List[float]:
        window_start = now - self.window
        hits = [ts for ts in self._hits[key] if ts > window_start]
        self._hits[key] = hits
        return hits

    def retry_after(self, key: str, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        hits = self._prune(key, now)
        if not hits:
            return 0
        return int(hits[0] + self.window - now) + 1

    def is_limited(self, key: str, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return len(self._prune(key, now)) >= self.limit

    def check(self, key: str, message: Optional[str] = None) -> None:
        """Raise RateLimitExceededError if `key` is at its limit."""
        now = time.time()
        if self.is_limited(key, now):
            raise RateLimitExceededError(
                retry_after=self.retry_after(key, now),
                message=message,
                context={"key": key, "limit": self.limit, "window": self.window},
            )

    def record(self, key: str) -> None:
        now = time.time()
        self._prune(key, now).append(now)
        # Periodic cleanup of idle keys (amortized O(1))
        self._checks += 1
        if self._checks % 1000 == 0:
            self._cleanup_inactive(now)

    def hit(self, key: str, message: Optional[str] = None) -> None:
        self.check(key, message)
        self.record(key)

    def reset(self, key: str) -> None:
        self._hits.pop(key, None)

    def _cleanup_inactive(self, now: float) -> None:
        window_start = now - self.window
        inactive = [k for k, ts in self._hits.items() if not ts or ts[-1] <= window_start]
        for key in inactive:
            del self._hits[key]
        if inactive:
            log.debug("Cleaned up %d inactive rate-limit keys", len(inactive))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies one SlidingWindowLimiter per client IP to every API request.

    Excluded paths: health checks and API docs are never limited.
    Rejections are rendered as the standard error envelope with a
    Retry-After header.
    """

    EXCLUDED_PREFIXES = ("/api/health", "/health", "/docs", "/openapi.json", "/redoc")

    def __init__(self, app, limit: int = 100, window: int = 900, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled
        self.limiter = SlidingWindowLimiter(limit, window)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if not self.enabled or path.startswith(self.EXCLUDED_PREFIXES):
            return await call_next(request)

        ip = client_ip(request)
        try:
            self.limiter.hit(ip, "Too many requests. Please try again later.")
        except RateLimitExceededError as e:
            # Logged (WARNING, with the IP in its context) by the builder
            ctx = getattr(request.state, "context", None)
            builder = request.app.state.services.responses
            return builder.error(ctx, e, headers={"Retry-After": str(e.retry_after)})

        return await call_next(request)
