"""Admin reporting endpoints.

Read-only views over filed complaints, guarded by the admin API key.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_lifecycle
from src.middleware.auth import require_admin_api_key
from src.models.complaint import Complaint, DailyCount, Payment
from src.services.lifecycle import ComplaintLifecycleController

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.get("/check")
async def admin_check() -> dict:
    """Confirms the caller holds a valid admin key."""
    return {"isAdmin": True}


@router.get("/complaints", response_model=list[Complaint])
async def list_complaints(
    lifecycle: ComplaintLifecycleController = Depends(get_lifecycle),
) -> list[Complaint]:
    """All complaints, most recent first."""
    return await lifecycle.list_complaints()


@router.get("/complaints/{complaint_id}/payments", response_model=list[Payment])
async def list_payments(
    complaint_id: int,
    lifecycle: ComplaintLifecycleController = Depends(get_lifecycle),
) -> list[Payment]:
    return await lifecycle.list_payments(complaint_id)


@router.get("/stats/daily", response_model=list[DailyCount])
async def daily_stats(
    days: int | None = Query(default=None, ge=1, le=365),
    lifecycle: ComplaintLifecycleController = Depends(get_lifecycle),
) -> list[DailyCount]:
    """Complaints filed per calendar day over the trailing window (30 days by default)."""
    return await lifecycle.daily_counts(days=days)
