"""Stripe checkout, verification and webhook endpoints.

Two independent routes confirm a payment: ``/verify-session``, called by
the client after Stripe redirects back, and ``/webhook``, pushed by
Stripe.  Both end in the same reconciliation and either may arrive
first, twice, or at the same time.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict, Field

from src.api.dependencies import get_lifecycle
from src.models.complaint import CheckoutSession, ReconcileResult
from src.services.lifecycle import ComplaintLifecycleController

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/stripe", tags=["payments"])


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    complaint_id: int = Field(..., alias="complaintId", gt=0)


class VerifySessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1)
    complaint_id: int = Field(..., alias="complaintId", gt=0)


@router.post("/create-checkout-session", response_model=CheckoutSession)
async def create_checkout_session(
    body: CheckoutRequest,
    lifecycle: ComplaintLifecycleController = Depends(get_lifecycle),
) -> CheckoutSession:
    """Open a Stripe Checkout Session for the complaint's filing fee."""
    return await lifecycle.create_checkout_session(body.complaint_id)


@router.post("/verify-session", response_model=ReconcileResult)
async def verify_session(
    body: VerifySessionRequest,
    lifecycle: ComplaintLifecycleController = Depends(get_lifecycle),
) -> ReconcileResult:
    """Confirm a checkout session after the redirect back from Stripe."""
    return await lifecycle.reconcile_payment(body.session_id, body.complaint_id)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(default="", alias="Stripe-Signature"),
    lifecycle: ComplaintLifecycleController = Depends(get_lifecycle),
) -> dict:
    """Receive a Stripe event.  The raw body is required for signature checks."""
    payload = await request.body()
    await lifecycle.handle_webhook(payload, stripe_signature)
    return {"received": True}


@router.get("/config")
async def stripe_config(request: Request) -> dict:
    """Publishable key for the client-side Stripe integration."""
    return {"publishableKey": request.app.state.settings.stripe_publishable_key}
