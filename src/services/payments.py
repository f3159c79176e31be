"""Stripe payment gateway adapter.

Wraps the three Stripe calls the complaint lifecycle depends on:
Checkout Session creation, Checkout Session retrieval, and webhook
signature verification.  The Stripe SDK is synchronous, so every call
runs in :func:`asyncio.to_thread`.  All Stripe failures are converted to
:class:`~src.services.errors.GatewayError`; nothing here fails open.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import stripe
import structlog

from src.services.errors import GatewayError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SessionHandle:
    """A newly opened checkout session."""

    session_id: str
    url: str | None


@dataclass(slots=True)
class SessionStatus:
    """Authoritative payment state of a checkout session."""

    session_id: str
    paid: bool
    status: str
    metadata: dict[str, str] = field(default_factory=dict)
    amount_total: int | None = None
    transaction_id: str | None = None


@dataclass(slots=True)
class WebhookEvent:
    """A signature-verified webhook event."""

    event_id: str
    event_type: str
    session: SessionStatus | None = None


def session_status_from_object(obj: Any) -> SessionStatus:
    """Build a :class:`SessionStatus` from a Stripe Checkout Session object.

    Works for both ``Session.retrieve`` results and the ``data.object`` of
    a webhook event.  ``payment_intent`` may be an id or an expanded
    object; the session id stands in when there is none.
    """
    session_id = obj.get("id") or ""
    payment_status = obj.get("payment_status") or obj.get("status") or "unknown"
    metadata = {str(k): str(v) for k, v in dict(obj.get("metadata") or {}).items()}

    intent = obj.get("payment_intent")
    if isinstance(intent, str):
        transaction_id = intent
    elif intent is not None:
        transaction_id = intent.get("id") or session_id
    else:
        transaction_id = session_id or None

    return SessionStatus(
        session_id=session_id,
        paid=payment_status == "paid",
        status=str(payment_status),
        metadata=metadata,
        amount_total=obj.get("amount_total"),
        transaction_id=transaction_id,
    )


# ---------------------------------------------------------------------------
# StripeGateway
# ---------------------------------------------------------------------------


class StripeGateway:
    """Async facade over the Stripe Checkout and Webhook APIs.

    Parameters
    ----------
    secret_key:
        Stripe secret API key, passed per call so no global SDK state is
        touched.
    webhook_secret:
        Signing secret for the webhook endpoint.
    product_name:
        Line-item label shown on the Stripe checkout page.
    """

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        *,
        product_name: str = "Complaint Filing Fee",
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._product_name = product_name

    async def create_session(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> SessionHandle:
        """Open a one-off Checkout Session for *amount* minor units."""
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self._secret_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": self._product_name},
                            "unit_amount": amount,
                        },
                        "quantity": 1,
                    },
                ],
                customer_email=metadata.get("email"),
                metadata=metadata,
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as exc:
            logger.error("payments.session_create_failed", error=str(exc), error_type=type(exc).__name__)
            raise GatewayError(f"Failed to create checkout session: {exc}") from exc

        logger.info("payments.session_created", session_id=session.id, amount=amount, currency=currency)
        return SessionHandle(session_id=session.id, url=session.get("url"))

    async def get_session_status(self, session_id: str) -> SessionStatus:
        """Retrieve the authoritative payment state of *session_id*."""
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve,
                session_id,
                api_key=self._secret_key,
            )
        except stripe.StripeError as exc:
            logger.error("payments.session_retrieve_failed", session_id=session_id, error=str(exc))
            raise GatewayError(f"Failed to retrieve checkout session: {exc}") from exc

        return session_status_from_object(session)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify and decode a webhook delivery.

        Raises :class:`GatewayError` with ``signature_invalid=True`` when
        the signature does not match the configured secret.
        """
        if not self._webhook_secret:
            logger.error("payments.webhook_secret_missing")
            raise GatewayError("Webhook secret is not configured", signature_invalid=True)

        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("payments.webhook_signature_invalid", error=str(exc))
            raise GatewayError(f"Webhook signature verification failed: {exc}", signature_invalid=True) from exc
        except ValueError as exc:
            logger.warning("payments.webhook_payload_invalid", error=str(exc))
            raise GatewayError(f"Invalid webhook payload: {exc}", signature_invalid=True) from exc

        event_type = event.get("type", "unknown")
        data_object = (event.get("data") or {}).get("object")
        session = None
        if event_type.startswith("checkout.session.") and data_object is not None:
            session = session_status_from_object(data_object)

        logger.info("payments.webhook_verified", event_id=event.get("id"), event_type=event_type)
        return WebhookEvent(event_id=event.get("id", ""), event_type=event_type, session=session)
