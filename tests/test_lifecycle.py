"""Tests for the complaint lifecycle controller.

Covers intake validation, checkout creation, payment reconciliation
(idempotent, concurrent, cross-checked against the gateway), webhook
handling, response generation with its fallback, and admin reads.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime

import pytest

from src.models.enums import ComplaintStatus, PaymentStatus, WebhookEventType
from src.services.errors import GatewayError, InvalidStateError, NotFoundError, ValidationError
from src.services.lifecycle import (
    FALLBACK_COMPLEXITY_SCORE,
    FALLBACK_RESPONSE,
    BackgroundTasks,
    ComplaintLifecycleController,
)
from src.services.payments import SessionStatus, WebhookEvent
from src.services.store import COMPLAINTS, PAYMENTS, InMemoryRecordStore

COMPLAINT_TEXT = "My neighbor's dog barks at 3am."


async def _paid_complaint(controller, gateway, text: str = COMPLAINT_TEXT):
    complaint = await controller.submit_complaint(text, "a@b.com")
    checkout = await controller.create_checkout_session(complaint.id)
    gateway.mark_paid(checkout.session_id)
    return complaint, checkout


# -----------------------------------------------------------------------
# Intake
# -----------------------------------------------------------------------


class TestSubmitComplaint:
    async def test_first_complaint_waits_for_fee(self, controller) -> None:
        complaint = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        assert complaint.id == 1, "first complaint should get id 1"
        assert complaint.status == ComplaintStatus.PENDING_PAYMENT
        assert complaint.filing_fee == 500, "filing fee should come from settings"
        assert complaint.ai_response is None
        assert complaint.complexity_score is None
        assert complaint.customer_email == "a@b.com"

    async def test_ids_increase(self, controller) -> None:
        first = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        second = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        assert second.id > first.id

    @pytest.mark.parametrize("content", ["", "short", "   too short   ", " " * 40])
    async def test_short_content_rejected(self, controller, store, content) -> None:
        with pytest.raises(ValidationError) as excinfo:
            await controller.submit_complaint(content, "a@b.com")
        assert excinfo.value.field == "content"
        assert store.size(COMPLAINTS) == 0, "nothing should be stored for invalid input"

    async def test_exactly_ten_characters_accepted(self, controller) -> None:
        complaint = await controller.submit_complaint("0123456789", "a@b.com")
        assert complaint.content == "0123456789"

    @pytest.mark.parametrize("email", ["", "not-an-email", "a@", "@b.com"])
    async def test_invalid_email_rejected(self, controller, store, email) -> None:
        with pytest.raises(ValidationError) as excinfo:
            await controller.submit_complaint(COMPLAINT_TEXT, email)
        assert excinfo.value.field == "customerEmail"
        assert "valid email" in excinfo.value.message
        assert store.size(COMPLAINTS) == 0

    async def test_get_unknown_complaint(self, controller) -> None:
        with pytest.raises(NotFoundError):
            await controller.get_complaint(999)


# -----------------------------------------------------------------------
# Checkout
# -----------------------------------------------------------------------


class TestCreateCheckoutSession:
    async def test_session_carries_fee_and_metadata(self, controller, gateway) -> None:
        complaint = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        checkout = await controller.create_checkout_session(complaint.id)

        assert checkout.session_id == "cs_test_1"
        assert checkout.url == "https://checkout.test/cs_test_1"
        created = gateway.created[0]
        assert created["amount"] == 500
        assert created["currency"] == "usd"
        assert created["metadata"] == {"complaintId": "1", "email": "a@b.com"}
        assert created["success_url"] == "http://localhost:5000/status/1?session_id={CHECKOUT_SESSION_ID}"
        assert created["cancel_url"] == "http://localhost:5000/payment/1?payment=cancelled"

    async def test_repeat_checkout_opens_new_session_without_state_change(self, controller, store) -> None:
        complaint = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        first = await controller.create_checkout_session(complaint.id)
        second = await controller.create_checkout_session(complaint.id)

        assert first.session_id != second.session_id
        current = await controller.get_complaint(complaint.id)
        assert current.status == ComplaintStatus.PENDING_PAYMENT
        assert store.size(PAYMENTS) == 0

    async def test_unknown_complaint(self, controller) -> None:
        with pytest.raises(NotFoundError):
            await controller.create_checkout_session(42)

    async def test_paid_complaint_rejected(self, controller, gateway) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)
        await controller.reconcile_payment(checkout.session_id, complaint.id)

        with pytest.raises(InvalidStateError):
            await controller.create_checkout_session(complaint.id)


# -----------------------------------------------------------------------
# Reconciliation
# -----------------------------------------------------------------------


class TestReconcilePayment:
    async def test_paid_session_moves_complaint_to_received(self, controller, gateway, store) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)

        result = await controller.reconcile_payment(checkout.session_id, complaint.id)

        assert result.verified is True
        assert result.status == "received"
        payments = await controller.list_payments(complaint.id)
        assert len(payments) == 1, "exactly one payment row should be recorded"
        assert payments[0].status == PaymentStatus.SUCCEEDED
        assert payments[0].amount == 500
        assert payments[0].transaction_id == "pi_test_1"

    async def test_resolves_after_generation(self, controller, gateway) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)
        await controller.reconcile_payment(checkout.session_id, complaint.id)
        await controller.tasks.drain()

        resolved = await controller.get_complaint(complaint.id)
        assert resolved.status == ComplaintStatus.RESOLVED
        assert resolved.ai_response == "Your concern has entered procedural review."
        assert resolved.complexity_score == 7

        again = await controller.reconcile_payment(checkout.session_id, complaint.id)
        assert again.verified is True
        assert again.status == "resolved"
        assert len(await controller.list_payments(complaint.id)) == 1

    async def test_repeat_reconcile_skips_gateway(self, controller, gateway) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)
        await controller.reconcile_payment(checkout.session_id, complaint.id)
        calls = gateway.status_calls

        result = await controller.reconcile_payment(checkout.session_id, complaint.id)

        assert result.verified is True
        assert gateway.status_calls == calls, "processed complaints should not query the gateway"
        assert len(await controller.list_payments(complaint.id)) == 1

    async def test_unpaid_session_not_verified(self, controller, store) -> None:
        complaint = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        checkout = await controller.create_checkout_session(complaint.id)

        result = await controller.reconcile_payment(checkout.session_id, complaint.id)

        assert result.verified is False
        assert result.status == "unpaid"
        assert (await controller.get_complaint(complaint.id)).status == ComplaintStatus.PENDING_PAYMENT
        assert store.size(PAYMENTS) == 0

    async def test_session_for_other_complaint_rejected(self, controller, gateway, store) -> None:
        complaint = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        gateway.add_session(
            SessionStatus(
                session_id="cs_other",
                paid=True,
                status="paid",
                metadata={"complaintId": "77"},
                amount_total=500,
                transaction_id="pi_other",
            )
        )

        result = await controller.reconcile_payment("cs_other", complaint.id)

        assert result.verified is False
        assert (await controller.get_complaint(complaint.id)).status == ComplaintStatus.PENDING_PAYMENT
        assert store.size(PAYMENTS) == 0

    async def test_amount_falls_back_to_filing_fee(self, controller, gateway) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)
        gateway.sessions[checkout.session_id].amount_total = None
        gateway.sessions[checkout.session_id].transaction_id = None

        await controller.reconcile_payment(checkout.session_id, complaint.id)

        [payment] = await controller.list_payments(complaint.id)
        assert payment.amount == 500
        assert payment.transaction_id == checkout.session_id

    async def test_unknown_complaint(self, controller) -> None:
        with pytest.raises(NotFoundError):
            await controller.reconcile_payment("cs_test_1", 999)

    async def test_failed_payment_insert_releases_claim(self, controller, gateway, monkeypatch) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)
        original_insert = InMemoryRecordStore.insert
        failures = {"left": 1}

        async def flaky_insert(self, table, fields):
            if table == PAYMENTS and failures["left"]:
                failures["left"] -= 1
                raise ConnectionError("store offline")
            return await original_insert(self, table, fields)

        monkeypatch.setattr(InMemoryRecordStore, "insert", flaky_insert)

        with pytest.raises(ConnectionError):
            await controller.reconcile_payment(checkout.session_id, complaint.id)
        current = await controller.get_complaint(complaint.id)
        assert current.status == ComplaintStatus.PENDING_PAYMENT, "a failed payment write must not strand the complaint"

        retry = await controller.reconcile_payment(checkout.session_id, complaint.id)
        await controller.tasks.drain()

        assert retry.verified is True
        assert retry.status == "received"
        assert (await controller.get_complaint(complaint.id)).status == ComplaintStatus.RESOLVED
        [payment] = await controller.list_payments(complaint.id)
        assert payment.status == PaymentStatus.SUCCEEDED

    async def test_failed_payment_update_marks_row_failed(self, controller, gateway, monkeypatch) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)
        original_update = InMemoryRecordStore.update_by_id
        failures = {"left": 1}

        async def flaky_update(self, table, record_id, fields):
            if fields.get("status") == PaymentStatus.SUCCEEDED.value and failures["left"]:
                failures["left"] -= 1
                raise ConnectionError("store offline")
            return await original_update(self, table, record_id, fields)

        monkeypatch.setattr(InMemoryRecordStore, "update_by_id", flaky_update)

        with pytest.raises(ConnectionError):
            await controller.reconcile_payment(checkout.session_id, complaint.id)
        assert (await controller.get_complaint(complaint.id)).status == ComplaintStatus.PENDING_PAYMENT

        await controller.reconcile_payment(checkout.session_id, complaint.id)
        await controller.tasks.drain()

        statuses = sorted(p.status.value for p in await controller.list_payments(complaint.id))
        assert statuses == ["failed", "succeeded"], "exactly one payment row should succeed"
        assert (await controller.get_complaint(complaint.id)).status == ComplaintStatus.RESOLVED

    async def test_concurrent_reconciles_record_one_payment(self, controller, gateway) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)

        results = await asyncio.gather(
            *(controller.reconcile_payment(checkout.session_id, complaint.id) for _ in range(5))
        )
        await controller.tasks.drain()

        assert all(r.verified for r in results), "every concurrent caller should see a verified payment"
        assert len(await controller.list_payments(complaint.id)) == 1
        assert (await controller.get_complaint(complaint.id)).status == ComplaintStatus.RESOLVED

    async def test_generation_runs_once_under_concurrency(self, store, gateway, settings, make_generator) -> None:
        generator = make_generator()
        controller = ComplaintLifecycleController(store, gateway, generator, settings)
        complaint, checkout = await _paid_complaint(controller, gateway)

        await asyncio.gather(
            controller.reconcile_payment(checkout.session_id, complaint.id),
            controller.reconcile_payment(checkout.session_id, complaint.id),
            controller.reconcile_payment(checkout.session_id, complaint.id),
        )
        await controller.tasks.drain()

        assert len(generator.prompts) == 1
        assert generator.prompts[0] == f'Complaint: "{COMPLAINT_TEXT}"'


# -----------------------------------------------------------------------
# Response generation
# -----------------------------------------------------------------------


class TestGenerateResponse:
    async def _resolve_with(self, store, gateway, settings, generator):
        controller = ComplaintLifecycleController(store, gateway, generator, settings)
        complaint, checkout = await _paid_complaint(controller, gateway)
        await controller.reconcile_payment(checkout.session_id, complaint.id)
        await controller.tasks.drain()
        return await controller.get_complaint(complaint.id)

    async def test_generator_error_uses_fallback(self, store, gateway, settings, make_generator) -> None:
        resolved = await self._resolve_with(store, gateway, settings, make_generator(error=RuntimeError("quota")))
        assert resolved.status == ComplaintStatus.RESOLVED
        assert resolved.ai_response == FALLBACK_RESPONSE
        assert resolved.complexity_score == FALLBACK_COMPLEXITY_SCORE == 1

    async def test_timeout_uses_fallback(self, store, gateway, settings, make_generator) -> None:
        resolved = await self._resolve_with(store, gateway, settings, make_generator(error=TimeoutError()))
        assert resolved.ai_response == FALLBACK_RESPONSE

    async def test_unparseable_reply_uses_fallback(self, store, gateway, settings, make_generator) -> None:
        resolved = await self._resolve_with(store, gateway, settings, make_generator(reply="I'd rather not."))
        assert resolved.status == ComplaintStatus.RESOLVED
        assert resolved.ai_response == FALLBACK_RESPONSE
        assert resolved.complexity_score == 1

    async def test_fenced_reply_is_parsed(self, store, gateway, settings, make_generator) -> None:
        reply = 'Certainly.\n```json\n{"responseText": "Noted.", "complexityScore": 12}\n```'
        resolved = await self._resolve_with(store, gateway, settings, make_generator(reply=reply))
        assert resolved.ai_response == "Noted."
        assert resolved.complexity_score == 10, "scores above 10 should be clamped"

    async def test_missing_score_defaults_to_five(self, store, gateway, settings, make_generator) -> None:
        resolved = await self._resolve_with(
            store, gateway, settings, make_generator(reply='{"responseText": "Noted."}')
        )
        assert resolved.complexity_score == 5

    async def test_only_resolves_received_complaints(self, controller) -> None:
        complaint = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")

        await controller.generate_response(complaint.id, complaint.content)

        current = await controller.get_complaint(complaint.id)
        assert current.status == ComplaintStatus.PENDING_PAYMENT
        assert current.ai_response is None

    async def test_store_failure_is_contained(self, controller, store, monkeypatch) -> None:
        complaint = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")

        async def broken(*args, **kwargs):
            raise ConnectionError("store offline")

        monkeypatch.setattr(InMemoryRecordStore, "update_if_status", broken)
        await controller.generate_response(complaint.id, complaint.content)  # should not raise


# -----------------------------------------------------------------------
# Webhooks
# -----------------------------------------------------------------------


def _completed_event(session: SessionStatus, event_id: str = "evt_1") -> WebhookEvent:
    return WebhookEvent(event_id=event_id, event_type=WebhookEventType.CHECKOUT_COMPLETED, session=session)


class TestHandleWebhook:
    async def test_completed_event_reconciles(self, controller, gateway) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)
        gateway.queue_event(_completed_event(gateway.sessions[checkout.session_id]))

        await controller.handle_webhook(b"{}", "valid")
        await controller.tasks.drain()

        assert (await controller.get_complaint(complaint.id)).status == ComplaintStatus.RESOLVED
        assert len(await controller.list_payments(complaint.id)) == 1

    async def test_webhook_and_verify_race(self, controller, gateway) -> None:
        complaint, checkout = await _paid_complaint(controller, gateway)
        gateway.queue_event(_completed_event(gateway.sessions[checkout.session_id]))

        await asyncio.gather(
            controller.handle_webhook(b"{}", "valid"),
            controller.reconcile_payment(checkout.session_id, complaint.id),
        )
        await controller.tasks.drain()

        assert len(await controller.list_payments(complaint.id)) == 1
        assert (await controller.get_complaint(complaint.id)).status == ComplaintStatus.RESOLVED

    async def test_invalid_signature_propagates(self, controller) -> None:
        with pytest.raises(GatewayError) as excinfo:
            await controller.handle_webhook(b"{}", "forged")
        assert excinfo.value.signature_invalid is True

    async def test_unknown_complaint_is_ignored(self, controller, gateway) -> None:
        session = SessionStatus(session_id="cs_x", paid=True, status="paid", metadata={"complaintId": "404"})
        gateway.queue_event(_completed_event(session))

        await controller.handle_webhook(b"{}", "valid")  # should not raise

    async def test_missing_complaint_id_is_ignored(self, controller, gateway) -> None:
        session = SessionStatus(session_id="cs_x", paid=True, status="paid", metadata={})
        gateway.queue_event(_completed_event(session))

        await controller.handle_webhook(b"{}", "valid")
        assert gateway.status_calls == 0

    async def test_expired_and_other_events_change_nothing(self, controller, gateway) -> None:
        complaint = await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        session = SessionStatus(
            session_id="cs_x", paid=False, status="expired", metadata={"complaintId": str(complaint.id)}
        )
        gateway.queue_event(
            WebhookEvent(event_id="evt_2", event_type=WebhookEventType.CHECKOUT_EXPIRED, session=session)
        )
        gateway.queue_event(WebhookEvent(event_id="evt_3", event_type="invoice.paid"))

        await controller.handle_webhook(b"{}", "valid")
        await controller.handle_webhook(b"{}", "valid")

        assert (await controller.get_complaint(complaint.id)).status == ComplaintStatus.PENDING_PAYMENT


# -----------------------------------------------------------------------
# Admin reads
# -----------------------------------------------------------------------


class TestAdminReads:
    async def test_list_complaints_newest_first(self, controller) -> None:
        for i in range(3):
            await controller.submit_complaint(f"Complaint number {i} about noise", "a@b.com")

        complaints = await controller.list_complaints()

        assert [c.id for c in complaints] == [3, 2, 1]

    async def test_list_payments_unknown_complaint(self, controller) -> None:
        with pytest.raises(NotFoundError):
            await controller.list_payments(5)

    async def test_daily_counts_zero_filled_oldest_first(self, controller, store) -> None:
        await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        await controller.submit_complaint(COMPLAINT_TEXT, "a@b.com")
        await store.update_by_id(COMPLAINTS, 1, {"created_at": datetime(2026, 3, 8, 23, 30, tzinfo=UTC)})
        await store.update_by_id(COMPLAINTS, 2, {"created_at": datetime(2026, 3, 10, 9, 0, tzinfo=UTC)})
        await store.update_by_id(COMPLAINTS, 3, {"created_at": datetime(2026, 1, 1, tzinfo=UTC)})

        counts = await controller.daily_counts(days=3, today=date(2026, 3, 10))

        assert [(c.date, c.count) for c in counts] == [
            ("2026-03-08", 1),
            ("2026-03-09", 0),
            ("2026-03-10", 1),
        ]

    async def test_daily_counts_default_window(self, controller) -> None:
        counts = await controller.daily_counts()
        assert len(counts) == 30
        assert all(c.count == 0 for c in counts)
        assert counts[-1].date == datetime.now(UTC).date().isoformat()


# -----------------------------------------------------------------------
# BackgroundTasks
# -----------------------------------------------------------------------


class TestBackgroundTasks:
    async def test_drain_waits_for_spawned_tasks(self) -> None:
        tasks = BackgroundTasks()
        done: list[int] = []

        async def work(n: int) -> None:
            await asyncio.sleep(0)
            done.append(n)

        tasks.spawn(work(1))
        tasks.spawn(work(2))
        assert tasks.pending == 2

        await tasks.drain()

        assert sorted(done) == [1, 2]
        assert tasks.pending == 0

    async def test_drain_survives_failing_task(self) -> None:
        tasks = BackgroundTasks()

        async def boom() -> None:
            raise RuntimeError("boom")

        tasks.spawn(boom())
        await tasks.drain()
        assert tasks.pending == 0
