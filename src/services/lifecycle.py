"""Complaint lifecycle controller.

Owns the complaint state machine::

    pending_payment ──(fee confirmed)──▶ received ──(letter attached)──▶ resolved

Payment confirmation arrives from two independent triggers: the client's
verify call after the checkout redirect, and the gateway's webhook.  Both
go through :meth:`ComplaintLifecycleController.reconcile_payment`, which
is safe to run any number of times, concurrently, for the same complaint:

1. **Idempotency guard** -- a complaint that has left ``pending_payment``
   is reported as verified and nothing else happens.
2. **Gateway cross-check** -- the session must be paid *and* carry this
   complaint's id in its metadata.
3. **Compare-and-swap** -- ``pending_payment -> received`` through
   :meth:`RecordStore.update_if_status`.  Only the winner records the
   payment and schedules response generation.  If recording the payment
   fails, the claim is released back to ``pending_payment`` so a retry
   (webhook redelivery or a second verify) can complete it.

Response generation runs as a detached task and always ends in
``resolved``; an unusable or failed generation attaches the fallback
letter with score 1.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Final, Protocol

import structlog
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.models.complaint import CheckoutSession, Complaint, DailyCount, Payment, ReconcileResult
from src.models.enums import ComplaintStatus, PaymentStatus, WebhookEventType
from src.services.errors import InvalidStateError, NotFoundError, ValidationError
from src.services.prompts import build_complaint_prompt
from src.services.response_parser import parse_generated_response
from src.services.store import COMPLAINTS, PAYMENTS, RecordStore

if TYPE_CHECKING:
    from config.settings import Settings
    from src.services.payments import SessionHandle, SessionStatus, WebhookEvent

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

MIN_CONTENT_LENGTH: Final[int] = 10

FALLBACK_RESPONSE: Final[str] = (
    "We acknowledge receipt of your correspondence. It is currently being "
    "routed through standard processing protocols. Expect a follow-up within "
    "6-8 months."
)
FALLBACK_COMPLEXITY_SCORE: Final[int] = 1

_EMAIL_ADAPTER: Final[TypeAdapter[str]] = TypeAdapter(EmailStr)


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


class PaymentGateway(Protocol):
    async def create_session(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> SessionHandle: ...

    async def get_session_status(self, session_id: str) -> SessionStatus: ...

    def verify_webhook_signature(self, payload: bytes, signature: str) -> WebhookEvent: ...


class TextGenerator(Protocol):
    async def complete(self, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Detached tasks
# ---------------------------------------------------------------------------


class BackgroundTasks:
    """Holds strong references to fire-and-forget tasks until they finish."""

    __slots__ = ("_tasks",)

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def spawn(self, coro: Coroutine[Any, Any, None], *, name: str | None = None) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every outstanding task, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class ComplaintLifecycleController:
    """Lifecycle operations exposed to the HTTP layer.

    Parameters
    ----------
    store:
        Record store holding complaints and payments.
    gateway:
        Payment gateway adapter (Stripe in production).
    generator:
        Text generator for response letters (Vertex AI in production).
    settings:
        Application settings; supplies the filing fee, currency, public
        base URL and reporting window.
    tasks:
        Registry for detached generation tasks.  A fresh one is created
        when omitted.
    """

    def __init__(
        self,
        store: RecordStore,
        gateway: PaymentGateway,
        generator: TextGenerator,
        settings: Settings,
        *,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._generator = generator
        self._settings = settings
        self._tasks = tasks if tasks is not None else BackgroundTasks()

    @property
    def tasks(self) -> BackgroundTasks:
        return self._tasks

    # -- intake -------------------------------------------------------------

    async def submit_complaint(self, content: str, email: str) -> Complaint:
        """Validate and store a new complaint awaiting its filing fee."""
        if not isinstance(content, str) or len(content.strip()) < MIN_CONTENT_LENGTH:
            raise ValidationError(
                "content",
                "Complaint must be at least 10 characters long. We need details.",
            )
        try:
            customer_email = _EMAIL_ADAPTER.validate_python(email)
        except PydanticValidationError:
            raise ValidationError(
                "customerEmail",
                "Please provide a valid email for official correspondence.",
            ) from None

        record = await self._store.insert(
            COMPLAINTS,
            {
                "content": content,
                "customer_email": customer_email,
                "status": ComplaintStatus.PENDING_PAYMENT.value,
                "filing_fee": self._settings.filing_fee_cents,
                "ai_response": None,
                "complexity_score": None,
            },
        )
        complaint = Complaint.model_validate(record)
        logger.info("lifecycle.complaint_submitted", complaint_id=complaint.id, filing_fee=complaint.filing_fee)
        return complaint

    async def get_complaint(self, complaint_id: int) -> Complaint:
        record = await self._store.get_by_id(COMPLAINTS, complaint_id)
        if record is None:
            raise NotFoundError(complaint_id)
        return Complaint.model_validate(record)

    # -- payment ------------------------------------------------------------

    async def create_checkout_session(self, complaint_id: int) -> CheckoutSession:
        """Open a checkout session for the complaint's filing fee.

        Stored state is untouched, so this may be called repeatedly while
        the complaint is still ``pending_payment``.
        """
        complaint = await self.get_complaint(complaint_id)
        if complaint.status != ComplaintStatus.PENDING_PAYMENT:
            raise InvalidStateError(complaint_id, complaint.status)

        base_url = self._settings.public_base_url.rstrip("/")
        handle = await self._gateway.create_session(
            amount=complaint.filing_fee,
            currency=self._settings.currency,
            metadata={
                "complaintId": str(complaint.id),
                "email": complaint.customer_email,
            },
            success_url=f"{base_url}/status/{complaint.id}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/payment/{complaint.id}?payment=cancelled",
        )
        logger.info("lifecycle.checkout_created", complaint_id=complaint.id, session_id=handle.session_id)
        return CheckoutSession(session_id=handle.session_id, url=handle.url)

    async def reconcile_payment(self, session_ref: str, complaint_id: int) -> ReconcileResult:
        """Apply a confirmed payment to the complaint exactly once."""
        log = logger.bind(complaint_id=complaint_id, session_id=session_ref)

        complaint = await self.get_complaint(complaint_id)
        if complaint.status != ComplaintStatus.PENDING_PAYMENT:
            log.info("lifecycle.reconcile_already_processed", status=complaint.status.value)
            return ReconcileResult(verified=True, status=complaint.status.value)

        session = await self._gateway.get_session_status(session_ref)
        if not session.paid:
            log.info("lifecycle.reconcile_not_paid", gateway_status=session.status)
            return ReconcileResult(verified=False, status=session.status)

        if session.metadata.get("complaintId") != str(complaint_id):
            log.warning(
                "lifecycle.reconcile_metadata_mismatch",
                session_complaint_id=session.metadata.get("complaintId"),
            )
            return ReconcileResult(verified=False, status=session.status)

        claimed = await self._store.update_if_status(
            COMPLAINTS,
            complaint_id,
            ComplaintStatus.PENDING_PAYMENT.value,
            {"status": ComplaintStatus.RECEIVED.value},
        )
        if claimed is None:
            current = await self.get_complaint(complaint_id)
            log.info("lifecycle.reconcile_lost_race", status=current.status.value)
            return ReconcileResult(verified=True, status=current.status.value)

        payment: dict[str, Any] | None = None
        try:
            payment = await self._store.insert(
                PAYMENTS,
                {
                    "complaint_id": complaint_id,
                    "amount": session.amount_total or complaint.filing_fee,
                    "status": PaymentStatus.PENDING.value,
                    "transaction_id": None,
                },
            )
            await self._store.update_by_id(
                PAYMENTS,
                payment["id"],
                {
                    "status": PaymentStatus.SUCCEEDED.value,
                    "transaction_id": session.transaction_id or session.session_id,
                },
            )
        except Exception:
            log.error("lifecycle.payment_write_failed", exc_info=True)
            await self._release_claim(complaint_id, payment)
            raise
        log.info("lifecycle.payment_accepted", payment_id=payment["id"], amount=payment["amount"])

        self._tasks.spawn(
            self.generate_response(complaint_id, complaint.content),
            name=f"generate-response-{complaint_id}",
        )
        return ReconcileResult(verified=True, status=ComplaintStatus.RECEIVED.value)

    async def _release_claim(self, complaint_id: int, payment: dict[str, Any] | None) -> None:
        """Undo a claimed payment so the next reconcile attempt starts over.

        A half-written payment row is marked failed, and the complaint goes
        back to ``pending_payment``.  Failures here are logged; the caller
        re-raises the original error.
        """
        log = logger.bind(complaint_id=complaint_id)
        try:
            if payment is not None:
                await self._store.update_by_id(PAYMENTS, payment["id"], {"status": PaymentStatus.FAILED.value})
            await self._store.update_if_status(
                COMPLAINTS,
                complaint_id,
                ComplaintStatus.RECEIVED.value,
                {"status": ComplaintStatus.PENDING_PAYMENT.value},
            )
        except Exception:
            log.error("lifecycle.claim_release_failed", exc_info=True)
            return
        log.warning("lifecycle.claim_released")

    async def handle_webhook(self, payload: bytes, signature: str) -> None:
        """Verify a gateway notification and reconcile completed checkouts."""
        event = self._gateway.verify_webhook_signature(payload, signature)
        log = logger.bind(event_id=event.event_id, event_type=event.event_type)

        if event.event_type == WebhookEventType.CHECKOUT_COMPLETED:
            raw_id = event.session.metadata.get("complaintId", "") if event.session else ""
            if not raw_id.isdigit():
                log.warning("lifecycle.webhook_missing_complaint_id")
                return
            try:
                result = await self.reconcile_payment(event.session.session_id, int(raw_id))
            except NotFoundError:
                log.warning("lifecycle.webhook_unknown_complaint", complaint_id=raw_id)
                return
            log.info(
                "lifecycle.webhook_reconciled",
                complaint_id=raw_id,
                verified=result.verified,
                status=result.status,
            )
        elif event.event_type == WebhookEventType.CHECKOUT_EXPIRED:
            complaint_id = event.session.metadata.get("complaintId") if event.session else None
            log.info("lifecycle.checkout_expired", complaint_id=complaint_id)
        else:
            log.info("lifecycle.webhook_unhandled")

    # -- response generation ------------------------------------------------

    async def generate_response(self, complaint_id: int, content: str) -> None:
        """Attach a response letter and resolve the complaint.

        Never raises: generation failures become the fallback letter and
        store failures are logged.
        """
        log = logger.bind(complaint_id=complaint_id)
        try:
            raw = await self._generator.complete(build_complaint_prompt(content))
            parsed = parse_generated_response(raw)
            ai_response, score = parsed.text, parsed.complexity_score
            log.info("lifecycle.generation_succeeded", complexity_score=score)
        except Exception:
            log.warning("lifecycle.generation_failed", exc_info=True)
            ai_response, score = FALLBACK_RESPONSE, FALLBACK_COMPLEXITY_SCORE

        try:
            resolved = await self._store.update_if_status(
                COMPLAINTS,
                complaint_id,
                ComplaintStatus.RECEIVED.value,
                {
                    "status": ComplaintStatus.RESOLVED.value,
                    "ai_response": ai_response,
                    "complexity_score": score,
                },
            )
        except Exception:
            log.error("lifecycle.resolve_write_failed", exc_info=True)
            return

        if resolved is None:
            log.warning("lifecycle.resolve_skipped", note="complaint was not in 'received'")
        else:
            log.info("lifecycle.complaint_resolved")

    # -- admin reads --------------------------------------------------------

    async def list_complaints(self) -> list[Complaint]:
        """All complaints, most recent first."""
        records = await self._store.list_all(COMPLAINTS)
        complaints = [Complaint.model_validate(r) for r in records]
        complaints.sort(key=lambda c: (c.created_at, c.id), reverse=True)
        return complaints

    async def list_payments(self, complaint_id: int) -> list[Payment]:
        await self.get_complaint(complaint_id)
        records = await self._store.list_all(PAYMENTS)
        return [Payment.model_validate(r) for r in records if r.get("complaint_id") == complaint_id]

    async def daily_counts(self, days: int | None = None, today: date | None = None) -> list[DailyCount]:
        """Submissions per UTC calendar date over the trailing window, oldest first."""
        window = days or self._settings.stats_window_days
        end = today or datetime.now(UTC).date()
        start = end - timedelta(days=window - 1)

        counts: dict[date, int] = {start + timedelta(days=i): 0 for i in range(window)}
        for complaint in await self.list_complaints():
            created = complaint.created_at
            if created.tzinfo is not None:
                created = created.astimezone(UTC)
            day = created.date()
            if day in counts:
                counts[day] += 1

        return [DailyCount(date=day.isoformat(), count=count) for day, count in counts.items()]
