"""
Health check endpoints (v1).

Provides health, readiness, liveness and model capability probes, plus
the Prometheus scrape endpoint.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from api.dependencies import DB, AppSettings, Capability, MCPManager, Store, Tools
from models.schemas.health import (
    DatabaseHealth,
    HealthResponse,
    LivenessResponse,
    ModelCapabilityResponse,
    ReadinessResponse,
    SessionStoreHealth,
    ToolsHealth,
)
from utils.db_utils import check_pool_health

router = APIRouter()


def _capability_response(capability: Capability) -> ModelCapabilityResponse:
    return ModelCapabilityResponse(
        selected_model=capability.selected_model,
        primary_model=capability.primary_model,
        primary_available=capability.primary_available,
        credential_configured=capability.credential_configured,
        checked=capability.checked,
        error=capability.error,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Comprehensive health check with all subsystem statuses.",
)
async def health_check(
    db: DB,
    store: Store,
    registry: Tools,
    mcp_manager: MCPManager,
    capability: Capability,
    settings: AppSettings,
    request: Request,
) -> HealthResponse:
    """Comprehensive health check endpoint."""
    db_health_data = await check_pool_health(db)
    db_healthy = bool(db_health_data.get("healthy", False))

    store_healthy = await store.ping()
    store_health = SessionStoreHealth(
        backend=store.backend,  # type: ignore[arg-type]
        healthy=store_healthy,
        error=None if store_healthy else "ping failed",
    )

    mcp_stats = mcp_manager.get_stats()
    coordinator = request.app.state.coordinator
    tools_health = ToolsHealth(
        registered=len(registry),
        enabled=len(registry.list_catalog()),
        mcp_servers_connected=mcp_stats.get("connected", 0),
        mcp_servers_configured=mcp_stats.get("configured", 0),
        active_turns=len(coordinator.active_turns),
    )

    # Postgres and the Session Store are both on the turn path; MCP is optional.
    if db_healthy and store_healthy:
        status = "healthy"
    elif db_healthy or store_healthy:
        status = "degraded"
    else:
        status = "unhealthy"

    startup_time: datetime = request.app.state.startup_time
    return HealthResponse(
        status=status,
        version=settings.app_version,
        uptime_seconds=round((datetime.now(UTC) - startup_time).total_seconds(), 1),
        startup_time=startup_time.isoformat(),
        database=DatabaseHealth(
            healthy=db_healthy,
            pool_size=db_health_data.get("pool_size", 0),
            pool_free=db_health_data.get("free_connections", 0),
            pool_used=db_health_data.get("used_connections", 0),
            error=db_health_data.get("error"),
        ),
        session_store=store_health,
        tools=tools_health,
        model=_capability_response(capability),
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="Kubernetes-style readiness probe for load balancer integration.",
    responses={
        503: {
            "description": "Service not ready",
            "content": {"application/json": {"example": {"ready": False, "error": "Database unavailable"}}},
        },
    },
)
async def readiness_check(db: DB, store: Store) -> ReadinessResponse | JSONResponse:
    """Kubernetes-style readiness probe."""
    db_health = await check_pool_health(db)
    if not db_health.get("healthy", False):
        return JSONResponse(
            status_code=503,
            content={"ready": False, "error": db_health.get("error") or "Database unavailable"},
        )
    if not await store.ping():
        return JSONResponse(status_code=503, content={"ready": False, "error": "Session store unavailable"})
    return ReadinessResponse(ready=True)


@router.get(
    "/health/live",
    response_model=LivenessResponse,
    summary="Liveness probe",
    description="Kubernetes-style liveness probe to confirm process is running.",
)
async def liveness_check() -> LivenessResponse:
    return LivenessResponse(alive=True)


@router.get(
    "/health/model",
    response_model=ModelCapabilityResponse,
    summary="Model capability",
    description="Which model turns use, and whether the startup capability check found the primary model.",
)
async def model_capability(capability: Capability) -> ModelCapabilityResponse:
    return _capability_response(capability)


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    response_class=Response,
    responses={200: {"content": {CONTENT_TYPE_LATEST: {}}}},
)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
