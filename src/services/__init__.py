"""Grievance desk service layer -- record store, lifecycle, payments, and response generation.

The Stripe and Vertex AI integrations (``src.services.payments`` and
``src.services.llm``) are imported from their modules directly, so that
``import src.services`` does not pull in the vendor SDKs.
"""

from __future__ import annotations

from src.services.errors import (
    GatewayError,
    GenerationFailure,
    GrievanceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from src.services.lifecycle import BackgroundTasks, ComplaintLifecycleController
from src.services.response_parser import GeneratedResponse, parse_generated_response
from src.services.store import InMemoryRecordStore, RecordStore, RedisRecordStore, create_record_store

__all__ = [
    "BackgroundTasks",
    "ComplaintLifecycleController",
    "GatewayError",
    "GeneratedResponse",
    "GenerationFailure",
    "GrievanceError",
    "InMemoryRecordStore",
    "InvalidStateError",
    "NotFoundError",
    "RecordStore",
    "RedisRecordStore",
    "ValidationError",
    "create_record_store",
    "parse_generated_response",
]
