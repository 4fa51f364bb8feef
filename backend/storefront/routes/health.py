"""
Storefront Backend — Health Check Route
=========================================

What:  Health check endpoint for monitoring and load balancer checks.
How:   Pings the database and reports each upstream's circuit breaker
       state. Never rate-limited and never audited.

Status levels:
    - healthy:   database reachable, all circuits closed (HTTP 200)
    - degraded:  database reachable, some upstream circuit not closed (HTTP 200)
    - unhealthy: database unreachable (HTTP 503 error envelope, stop routing
                 traffic; the report is still in `data`)
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from storefront import __version__
from storefront.dependencies import AppServices, get_responder, get_services
from storefront.logger import get_logger
from storefront.responses import Responder
from storefront.schemas.system import HealthResponse
from storefront.services.upstream import CircuitBreaker

log = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Health"])


@router.get("/health", summary="Service health check")
async def health_check(
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    db_status = "connected"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        await services.database.ping()
    except Exception as e:  # noqa: BLE001
        db_status = "disconnected"
        overall = "unhealthy"
        log.warning("Health check: database unreachable: %s", e, ctx=responder.ctx)

    # ── Check Upstream Circuits ───────────────────────────────────────────
    upstreams = {}
    for client in (services.printify, services.stripe):
        state = client.circuit_breaker.state
        upstreams[client.service_name] = state
        if state != CircuitBreaker.CLOSED and overall == "healthy":
            overall = "degraded"

    health = HealthResponse(
        status=overall,
        version=__version__,
        environment=services.settings.environment,
        database=db_status,
        upstreams=upstreams,
        uptime_seconds=services.uptime_seconds,
    )
    if overall == "unhealthy":
        return responder.error("Service unhealthy", status_code=503, data=health.model_dump())
    return responder.success(health.model_dump(), "Service health")
