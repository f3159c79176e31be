"""Shared fixtures: in-memory store, scripted payment gateway, scripted generator."""

from __future__ import annotations

import asyncio

import pytest

from config.settings import Settings
from src.services.errors import GatewayError
from src.services.lifecycle import ComplaintLifecycleController
from src.services.payments import SessionHandle, SessionStatus, WebhookEvent
from src.services.store import InMemoryRecordStore


class FakeGateway:
    """Payment gateway double.

    Sessions are created unpaid; tests flip them with :meth:`mark_paid`.
    Webhook events are queued with :meth:`queue_event` and any signature
    other than ``"valid"`` is rejected.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, SessionStatus] = {}
        self.created: list[dict] = []
        self.status_calls = 0
        self._events: list[WebhookEvent] = []
        self._counter = 0

    async def create_session(self, amount, currency, metadata, success_url, cancel_url) -> SessionHandle:
        self._counter += 1
        session_id = f"cs_test_{self._counter}"
        self.created.append(
            {
                "amount": amount,
                "currency": currency,
                "metadata": dict(metadata),
                "success_url": success_url,
                "cancel_url": cancel_url,
            }
        )
        self.sessions[session_id] = SessionStatus(
            session_id=session_id,
            paid=False,
            status="unpaid",
            metadata=dict(metadata),
            amount_total=amount,
        )
        return SessionHandle(session_id=session_id, url=f"https://checkout.test/{session_id}")

    def mark_paid(self, session_id: str, *, transaction_id: str = "pi_test_1") -> None:
        session = self.sessions[session_id]
        session.paid = True
        session.status = "paid"
        session.transaction_id = transaction_id

    def add_session(self, session: SessionStatus) -> None:
        self.sessions[session.session_id] = session

    async def get_session_status(self, session_id: str) -> SessionStatus:
        self.status_calls += 1
        # Yield so concurrent reconcilers interleave at the gateway call.
        await asyncio.sleep(0)
        if session_id not in self.sessions:
            raise GatewayError(f"No such checkout session: {session_id}")
        return self.sessions[session_id]

    def queue_event(self, event: WebhookEvent) -> None:
        self._events.append(event)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> WebhookEvent:
        if signature != "valid":
            raise GatewayError("Webhook signature verification failed", signature_invalid=True)
        return self._events.pop(0)


class FakeGenerator:
    """Text generator double returning a fixed reply, or raising *error*."""

    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply if reply is not None else (
            '{"responseText": "Your concern has entered procedural review.", "complexityScore": 7}'
        )
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env="development",
        public_base_url="http://localhost:5000",
        filing_fee_cents=500,
        stripe_secret_key="sk_test_x",
        stripe_publishable_key="pk_test_x",
        stripe_webhook_secret="whsec_x",
        admin_api_key="",
        gcp_project_id="",
        redis_url="",
        log_format="console",
    )


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def make_generator() -> type[FakeGenerator]:
    return FakeGenerator


@pytest.fixture
def controller(store, gateway, generator, settings) -> ComplaintLifecycleController:
    return ComplaintLifecycleController(store=store, gateway=gateway, generator=generator, settings=settings)
