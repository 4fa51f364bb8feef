"""
Storefront Backend — Audit Middleware
=======================================

What:  Records an audit entry for every auditable HTTP request.
Why:   Gives a complete trail of state-changing API calls without each
       route having to remember to write one.
How:   1. Decide auditability from method and path (exclusions, GET toggle)
       2. Capture the request body (mutating requests only, size-capped)
       3. Let the request run
       4. Attach the audit write to the response as a background task, so
          it runs after the response has been sent and can never delay or
          fail it

       If a service already wrote an explicit, more detailed record for
       this request (ctx.audit_recorded), the generic entry is skipped.
       Unhandled exceptions are recorded as failures and re-raised for the
       global error handler.

Captured body:
    JSON bodies of CREATE/UPDATE requests become `new_values` after
    redaction. Bodies larger than AUDIT_MAX_BODY_SIZE are replaced by
    {"_truncated": true, "_size": <bytes>}. Non-JSON bodies are omitted.
"""

import json
from typing import Any, Optional

from starlette.background import BackgroundTask, BackgroundTasks
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from storefront.context import RequestContext
from storefront.logger import get_logger
from storefront.services.audit_service import (
    AuditAction,
    AuditRecorder,
    action_for_method,
    extract_entity_info,
    outcome_for_status,
    should_audit,
)

log = get_logger(__name__)


def summarize_body(body: bytes, content_type: str, max_size: int) -> Optional[Any]:
    if not body:
        return None
    if len(body) > max_size:
        return {"_truncated": True, "_size": len(body)}
    if "json" not in content_type:
        return None
    try:
        return json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


async def record_request(
    recorder: AuditRecorder,
    ctx: RequestContext,
    status_code: int,
    body: Optional[Any],
    error: Optional[BaseException] = None,
) -> None:
    """Write the generic audit entry for one finished request."""
    if ctx.audit_recorded:
        return
    action = action_for_method(ctx.method)
    if action is None:
        return
    entity_type, entity_id = extract_entity_info(ctx.path)
    status, severity = outcome_for_status(status_code)
    metadata = {
        "method": ctx.method,
        "path": ctx.path,
        "query": ctx.query or None,
        "statusCode": status_code,
        "durationMs": ctx.elapsed_ms,
    }
    if error is not None:
        metadata["error"] = str(error)
        metadata["errorType"] = type(error).__name__

    await recorder.create(
        action,
        entity_type,
        entity_id,
        new_values=body if action in (AuditAction.CREATE, AuditAction.UPDATE) else None,
        status=status,
        severity=severity,
        metadata=metadata,
        ctx=ctx,
    )


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        services = request.app.state.services
        settings = services.settings
        ctx: Optional[RequestContext] = getattr(request.state, "context", None)

        if (
            ctx is None
            or not settings.audit_enabled
            or not should_audit(
                request.method,
                request.url.path,
                settings.audit_exclude_paths_list,
                settings.audit_get_requests,
            )
        ):
            return await call_next(request)

        body = None
        if settings.audit_capture_body and request.method in ("POST", "PUT", "PATCH"):
            body = summarize_body(
                await request.body(),
                request.headers.get("content-type", ""),
                settings.audit_max_body_size,
            )

        try:
            response = await call_next(request)
        except Exception as exc:
            # No response to attach to: record now, then let the handler respond
            await record_request(services.audit, ctx, 500, body, error=exc)
            raise

        task = BackgroundTask(record_request, services.audit, ctx, response.status_code, body)
        if response.background is None:
            response.background = task
        else:
            response.background = BackgroundTasks(tasks=[response.background, task])
        return response
