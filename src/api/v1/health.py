"""Health check endpoints.

Provides liveness and readiness probes.  The readiness check verifies
that the record store answers and that the payment and generation
integrations are configured.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

from src.services.store import COMPLAINTS

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
    """Readiness check response with individual service statuses."""

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

    A missing Stripe or GCP configuration marks the instance degraded but
    still ready: complaints can be filed, and generation falls back to
    the standard letter.
    """
    checks: dict[str, str] = {}
    all_ok = True

    # -- Record store --------------------------------------------------------
    store = getattr(request.app.state, "store", None)
    if store is not None:
        try:
            await store.get_by_id(COMPLAINTS, 0)
            checks["store"] = "ok"
        except Exception as exc:
            checks["store"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["store"] = "not_initialised"
        all_ok = False

    # -- Integrations --------------------------------------------------------
    settings = request.app.state.settings
    if settings.stripe_secret_key and settings.stripe_webhook_secret:
        checks["payments"] = "ok"
    else:
        checks["payments"] = "not_configured"
        all_ok = False

    checks["generator"] = "ok" if settings.gcp_project_id else "fallback_only"

    lifecycle = getattr(request.app.state, "lifecycle", None)
    if lifecycle is not None:
        checks["background_tasks"] = str(lifecycle.tasks.pending)

    status = "ready" if all_ok else "degraded"

    logger.info("health.readiness_check", status=status, checks=checks)

    return ReadinessResponse(status=status, checks=checks)
