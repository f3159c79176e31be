from src.models.complaint import (
    CheckoutSession,
    Complaint,
    DailyCount,
    Payment,
    ReconcileResult,
)
from src.models.enums import ComplaintStatus, PaymentStatus, WebhookEventType

__all__ = [
    "CheckoutSession",
    "Complaint",
    "ComplaintStatus",
    "DailyCount",
    "Payment",
    "PaymentStatus",
    "ReconcileResult",
    "WebhookEventType",
]
