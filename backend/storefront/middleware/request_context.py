"""
Storefront Backend — Request Context Middleware
=================================================

What:  Assigns request and correlation IDs and builds the RequestContext.
Why:   Enables end-to-end tracing: every log line, envelope and audit
       record produced for a request carries the same IDs.
How:   Reads X-Request-ID / X-Correlation-ID from the client (or generates
       them), stores a RequestContext on `request.state.context`, and echoes
       both IDs on the response.

Why accept client-provided IDs:
    The frontend can generate an ID before the call and include it in its
    own error reports, linking a UI event straight to the server log entry.
    Incoming values are length-checked so a client cannot inject
    arbitrarily large strings into every log line.
"""

import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from storefront.context import RequestContext, new_correlation_id, new_request_id
from storefront.middleware.rate_limit import client_ip

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"

_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _incoming_id(request: Request, header: str) -> str:
    value = request.headers.get(header, "")
    return value if _SAFE_ID.match(value) else ""


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        ctx = RequestContext(
            request_id=_incoming_id(request, REQUEST_ID_HEADER) or new_request_id(),
            correlation_id=_incoming_id(request, CORRELATION_ID_HEADER) or new_correlation_id(),
            method=request.method,
            path=request.url.path,
            query=request.url.query,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        request.state.context = ctx

        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = ctx.request_id
        response.headers[CORRELATION_ID_HEADER] = ctx.correlation_id
        return response
