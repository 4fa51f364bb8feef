"""
Storefront Backend — Request Logging Middleware
=================================================

What:  One structured access-log entry per HTTP request.
Why:   Monitoring, alerting and performance analysis.
How:   Times the request with perf_counter and logs method, path, status
       and duration once the response is produced. The request context
       supplies the request/correlation IDs and, after authentication, the
       user.

What we log vs what we DON'T log (privacy):
    ✅ Log: method, path, status, duration, IP, user agent, request ID, user ID
    ❌ Don't log: request bodies, Authorization headers, cookies

Level by status:
    5xx → ERROR, 4xx → WARNING, everything else → INFO
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from storefront.logger import get_logger, log_performance

log = get_logger("storefront.access")

SKIP_PATHS = ("/api/health", "/health")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, slow_request_ms: float = 1000.0):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Health checks run every few seconds; logging them drowns the rest
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        ctx = getattr(request.state, "context", None)

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        log.log(
            level,
            "%s %s %d %.1fms",
            request.method,
            request.url.path,
            status,
            duration_ms,
            ctx=ctx,
            status=status,
            duration_ms=round(duration_ms, 2),
            client_ip=ctx.ip_address if ctx else None,
            user_agent=ctx.user_agent if ctx else None,
        )
        if duration_ms >= self.slow_request_ms:
            log_performance(f"{request.method} {request.url.path}", duration_ms, ctx=ctx, status=status)

        return response
