"""Complaint intake and status endpoints.

A citizen files a complaint here, then polls it by id while the filing
fee is confirmed and the response letter is generated.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from src.api.dependencies import get_lifecycle
from src.models.complaint import Complaint
from src.services.lifecycle import ComplaintLifecycleController

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/complaints", tags=["complaints"])


class ComplaintCreateRequest(BaseModel):
    # Length and email checks happen in the lifecycle controller so that
    # failures come back as 400 with the offending field.
    model_config = ConfigDict(populate_by_name=True)

    content: Any = ""
    customer_email: Any = Field(default="", alias="customerEmail")


@router.post("", response_model=Complaint, status_code=201)
async def create_complaint(
    body: ComplaintCreateRequest,
    lifecycle: ComplaintLifecycleController = Depends(get_lifecycle),
) -> Complaint:
    """File a new complaint; it waits in ``pending_payment`` for its fee."""
    return await lifecycle.submit_complaint(body.content, body.customer_email)


@router.get("/{complaint_id}", response_model=Complaint)
async def get_complaint(
    complaint_id: int,
    lifecycle: ComplaintLifecycleController = Depends(get_lifecycle),
) -> Complaint:
    """Current state of a complaint, including the response once resolved."""
    return await lifecycle.get_complaint(complaint_id)
