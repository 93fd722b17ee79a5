"""Health check endpoints for Yojana Match API v1.

Provides liveness and readiness probes for Kubernetes / Cloud Run
deployments.  The readiness check verifies the cache, the loaded
catalog, the vector index and the re-evaluation workers.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Readiness check response with individual component statuses."""

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.

    Returns 200 if the application process is running and able to
    handle requests.  Does *not* check downstream dependencies.
    """
    start_time: float = getattr(request.app.state, "start_time", time.time())
    uptime = time.time() - start_time

    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(uptime, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe.

    The interpretation cache falling back to memory is reported as
    ``degraded`` but does not fail readiness: matching still works.
    """
    checks: dict[str, str] = {}
    all_ok = True

    # -- Check cache -------------------------------------------------------
    cache = getattr(request.app.state, "cache", None)
    if cache is not None:
        try:
            await cache.set("_health_check", "ok", ttl_seconds=10)
            val = await cache.get("_health_check")
            checks["cache"] = f"ok ({cache.backend_name})" if val == "ok" else "degraded"
        except Exception as exc:
            checks["cache"] = f"error: {exc!s}"
    else:
        checks["cache"] = "not_configured"

    # -- Check catalog -----------------------------------------------------
    scheme_store = getattr(request.app.state, "scheme_store", None)
    if scheme_store is not None and len(scheme_store) > 0:
        checks["catalog"] = f"ok ({len(scheme_store)} schemes loaded)"
    else:
        checks["catalog"] = "no_data"
        all_ok = False

    # -- Check vector index ------------------------------------------------
    scheme_search = getattr(request.app.state, "scheme_search", None)
    if scheme_search is not None:
        checks["vector_index"] = f"ok ({scheme_search.indexed_count} indexed)"
    else:
        checks["vector_index"] = "not_configured"

    # -- Check orchestrator ------------------------------------------------
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is not None:
        checks["orchestrator"] = "ok"
    else:
        checks["orchestrator"] = "not_initialised"
        all_ok = False

    # -- Check re-evaluation workers ---------------------------------------
    trigger = getattr(request.app.state, "reevaluation", None)
    if trigger is None:
        checks["reevaluation"] = "disabled"
    else:
        stats = trigger.status()
        checks["reevaluation"] = (
            f"ok (queued={stats['queued']}, active={stats['active']})" if stats["running"] else "stopped"
        )

    status = "ready" if all_ok else "degraded"

    logger.info("health.readiness_check", status=status, checks=checks)

    return ReadinessResponse(status=status, checks=checks)
