"""Complaint and payment models for the grievance desk.

A complaint is filed, its fee is paid through a checkout session, and a
generated response letter is attached once the fee is confirmed.  Records
come out of the record store as plain dicts and are validated into these
models by the lifecycle controller.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from src.models.enums import ComplaintStatus, PaymentStatus


class Complaint(BaseModel):
    """A filed grievance and its lifecycle state."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    content: str
    customer_email: str
    status: ComplaintStatus = ComplaintStatus.PENDING_PAYMENT
    filing_fee: int = Field(..., gt=0)
    ai_response: str | None = None
    complexity_score: int | None = Field(default=None, ge=1, le=10)
    created_at: datetime

    @model_validator(mode="after")
    def _response_fields_paired(self) -> Complaint:
        if (self.ai_response is None) != (self.complexity_score is None):
            msg = "ai_response and complexity_score must be set together"
            raise ValueError(msg)
        return self


class Payment(BaseModel):
    """A confirmed payment attempt against a complaint."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    complaint_id: int
    amount: int = Field(..., gt=0)
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: str | None = None
    created_at: datetime


class CheckoutSession(BaseModel):
    """Handle returned to the client to complete payment out-of-band."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    url: str | None = None


class ReconcileResult(BaseModel):
    """Outcome of a payment reconciliation attempt."""

    verified: bool
    status: str


class DailyCount(BaseModel):
    date: str
    count: int = 0
