"""Error taxonomy for the complaint lifecycle.

The controller raises these; the HTTP layer maps them to responses in
``src/main.py``.  :class:`GenerationFailure` never leaves the controller.
"""

from __future__ import annotations


class GrievanceError(Exception):
    """Base class for all lifecycle errors."""


class ValidationError(GrievanceError):
    """Malformed input at submission time."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class NotFoundError(GrievanceError):
    """The referenced complaint does not exist."""

    def __init__(self, complaint_id: int) -> None:
        super().__init__(f"Complaint {complaint_id} not found")
        self.complaint_id = complaint_id


class InvalidStateError(GrievanceError):
    """Operation attempted against a complaint in the wrong lifecycle state."""

    def __init__(self, complaint_id: int, status: str, message: str | None = None) -> None:
        super().__init__(message or f"Complaint {complaint_id} has already been processed (status: {status})")
        self.complaint_id = complaint_id
        self.status = status


class GatewayError(GrievanceError):
    """The payment gateway call failed or a webhook signature did not verify."""

    def __init__(self, message: str, *, signature_invalid: bool = False) -> None:
        super().__init__(message)
        self.signature_invalid = signature_invalid


class GenerationFailure(GrievanceError):
    """Response generation failed or produced unusable output."""
