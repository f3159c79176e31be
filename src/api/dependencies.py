"""Shared FastAPI dependencies for the v1 routers."""

from __future__ import annotations

from fastapi import HTTPException, Request

from src.services.lifecycle import ComplaintLifecycleController


def get_lifecycle(request: Request) -> ComplaintLifecycleController:
    """Return the lifecycle controller created during application startup."""
    lifecycle = getattr(request.app.state, "lifecycle", None)
    if lifecycle is None:
        raise HTTPException(status_code=503, detail="Complaint service not available")
    return lifecycle
