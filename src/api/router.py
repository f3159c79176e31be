"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the
FastAPI application only needs to include a single router.

Includes:
    * Complaints: filing and status polling
    * Payments: Stripe checkout, session verification, webhook
    * Admin: complaint listing and daily statistics
    * Health: liveness and readiness probes
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api.v1 import admin, complaints, health, payments

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(complaints.router)
api_router.include_router(payments.router)
api_router.include_router(admin.router)
api_router.include_router(health.router)
