"""Admin API key authentication for the reporting endpoints.

Provides a FastAPI dependency that validates the ``X-Admin-API-Key``
header against the ``ADMIN_API_KEY`` configured on the application's
settings.  Uses constant-time comparison to prevent timing attacks.
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def require_admin_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """FastAPI dependency that enforces admin API key authentication.

    Returns the validated key on success; raises 401/403/503 on failure.

    Usage::

        @router.get("/admin/complaints", dependencies=[Depends(require_admin_api_key)])
        async def list_complaints(...): ...
    """
    settings = request.app.state.settings
    configured_key = settings.admin_api_key

    if not configured_key:
        # Development without a configured key: allow, but say so.
        if not settings.is_production:
            logger.warning(
                "auth.admin_key_not_configured",
                note="Admin API key not set; allowing request in development mode",
            )
            return ""
        logger.error("auth.admin_key_not_configured_production")
        raise HTTPException(
            status_code=503,
            detail="Admin authentication is not configured.",
        )

    if not api_key:
        logger.warning(
            "auth.missing_api_key",
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=401,
            detail="Missing X-Admin-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not hmac.compare_digest(api_key.encode(), configured_key.encode()):
        logger.warning(
            "auth.invalid_api_key",
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=403,
            detail="Invalid API key.",
        )

    return api_key
