"""Grievance desk FastAPI application entry point.

Creates the FastAPI app, configures middleware and error handlers,
includes routers, and manages the lifecycle of the backend services
(record store, Stripe gateway, response generator, lifecycle controller).
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import Settings
from src.api.router import api_router
from src.services.errors import GatewayError, InvalidStateError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from src.services.lifecycle import PaymentGateway, TextGenerator
    from src.services.store import RecordStore

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging(settings: Settings) -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


async def _validation_error_handler(request: Request, exc: ValidationError) -> ORJSONResponse:
    return ORJSONResponse(status_code=400, content={"message": exc.message, "field": exc.field})


async def _not_found_handler(request: Request, exc: NotFoundError) -> ORJSONResponse:
    return ORJSONResponse(status_code=404, content={"message": "Complaint not found"})


async def _invalid_state_handler(request: Request, exc: InvalidStateError) -> ORJSONResponse:
    return ORJSONResponse(status_code=409, content={"message": str(exc), "status": exc.status})


async def _gateway_error_handler(request: Request, exc: GatewayError) -> ORJSONResponse:
    if exc.signature_invalid:
        logger.warning("api.webhook_rejected", path=request.url.path)
        return ORJSONResponse(status_code=400, content={"message": f"Webhook Error: {exc!s}"})
    logger.error("api.gateway_failed", path=request.url.path, error=str(exc))
    return ORJSONResponse(status_code=502, content={"message": "Payment processor request failed"})


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    store: RecordStore | None = None,
    gateway: PaymentGateway | None = None,
    generator: TextGenerator | None = None,
) -> FastAPI:
    """Build the application.

    *settings* is constructed from the environment when omitted.  The
    keyword collaborators replace the Redis/in-memory store, the Stripe
    gateway and the Vertex AI generator, which is how tests run the app
    without external services.
    """
    settings = settings if settings is not None else Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage startup and shutdown of the grievance desk services.

        On startup:
          1. Configure logging
          2. Open the record store
          3. Create the Stripe gateway and the response generator
          4. Create the lifecycle controller
          5. Store everything on ``app.state``

        On shutdown:
          - Let in-flight response generation finish (bounded).
          - Close the record store.
        """
        _configure_logging(settings)
        logger.info("app.startup", env=settings.env)

        app.state.start_time = time.time()

        # -- 1. Record store ------------------------------------------------
        from src.services.store import create_record_store

        record_store = store if store is not None else create_record_store(
            settings.redis_url or None,
            namespace=settings.redis_namespace,
        )
        app.state.store = record_store
        logger.info("app.store_initialised")

        # -- 2. Stripe gateway ----------------------------------------------
        payment_gateway = gateway
        if payment_gateway is None:
            from src.services.payments import StripeGateway

            if not settings.stripe_secret_key:
                logger.warning("app.stripe_not_configured")
            payment_gateway = StripeGateway(
                secret_key=settings.stripe_secret_key,
                webhook_secret=settings.stripe_webhook_secret,
                product_name=settings.fee_product_name,
            )
        logger.info("app.gateway_initialised")

        # -- 3. Response generator (Vertex AI / Gemini) ---------------------
        response_generator = generator
        if response_generator is None:
            from src.services.llm import ResponseGenerator

            if not settings.gcp_project_id:
                logger.warning(
                    "app.llm_not_configured",
                    note="GCP project not set; complaints will receive the fallback letter",
                )
            response_generator = ResponseGenerator(
                project_id=settings.gcp_project_id,
                region=settings.vertex_ai_location,
                model_name=settings.vertex_ai_model,
                timeout_seconds=settings.llm_timeout_seconds,
            )
        logger.info("app.llm_initialised", model=settings.vertex_ai_model)

        # -- 4. Lifecycle controller ----------------------------------------
        from src.services.lifecycle import ComplaintLifecycleController

        lifecycle = ComplaintLifecycleController(
            store=record_store,
            gateway=payment_gateway,
            generator=response_generator,
            settings=settings,
        )
        app.state.lifecycle = lifecycle
        logger.info("app.startup_complete")

        yield

        # -- Shutdown -------------------------------------------------------
        logger.info("app.shutdown_start", pending_tasks=lifecycle.tasks.pending)
        try:
            await asyncio.wait_for(lifecycle.tasks.drain(), timeout=settings.llm_timeout_seconds)
        except TimeoutError:
            logger.warning("app.shutdown_tasks_abandoned", pending_tasks=lifecycle.tasks.pending)
        await record_store.close()
        logger.info("app.shutdown_complete")

    app = FastAPI(
        title="Grievance Desk API",
        description=(
            "File a complaint, pay the filing fee, and receive an official "
            "response from the Department of Complaints."
        ),
        version="0.1.0",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )
    app.state.settings = settings

    # -- CORS middleware ----------------------------------------------------
    # allow_credentials=True must not be combined with allow_origins=["*"].
    if settings.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origin_list,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type", "Authorization", "X-Admin-API-Key"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:3000", "http://localhost:5000", "http://127.0.0.1:5000"],
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
            allow_headers=["Content-Type", "Accept", "Authorization", "X-Admin-API-Key"],
        )

    # -- Error handlers -----------------------------------------------------
    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(NotFoundError, _not_found_handler)
    app.add_exception_handler(InvalidStateError, _invalid_state_handler)
    app.add_exception_handler(GatewayError, _gateway_error_handler)

    # -- Routers ------------------------------------------------------------
    app.include_router(api_router)

    @app.get("/api", response_class=ORJSONResponse)
    async def api_info() -> dict:
        """API information endpoint."""
        return {
            "name": "Grievance Desk API",
            "version": app.version,
            "docs": "/docs",
            "health": "/api/v1/health",
            "filing_fee_cents": settings.filing_fee_cents,
            "currency": settings.currency,
            "endpoints": {
                "complaints": "/api/v1/complaints",
                "checkout": "/api/v1/stripe/create-checkout-session",
                "verify": "/api/v1/stripe/verify-session",
                "webhook": "/api/v1/stripe/webhook",
                "admin": "/api/v1/admin",
            },
        }

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
    )
