from __future__ import annotations

from enum import StrEnum


class ComplaintStatus(StrEnum):
    __slots__ = ()

    PENDING_PAYMENT = "pending_payment"
    RECEIVED = "received"
    # Reserved for a manual-review step; nothing transitions into it yet.
    PROCESSING = "processing"
    RESOLVED = "resolved"


class PaymentStatus(StrEnum):
    __slots__ = ()

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class WebhookEventType(StrEnum):
    __slots__ = ()

    CHECKOUT_COMPLETED = "checkout.session.completed"
    CHECKOUT_EXPIRED = "checkout.session.expired"
