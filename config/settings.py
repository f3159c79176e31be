"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``GRIEVANCE_`` prefix; Stripe, GCP and infrastructure
settings use their canonical environment variable names via
``validation_alias``.

A single :class:`Settings` instance is built by ``create_app`` and passed
to every service that needs it.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the grievance desk.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``GRIEVANCE_``; Stripe / GCP /
    infra keys use their standard names (configured via
    ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="GRIEVANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"
    public_base_url: str = Field(default="http://localhost:5000", validation_alias="PUBLIC_BASE_URL")
    cors_origins: str = Field(default="", validation_alias="CORS_ORIGINS")

    # ── Server ─────────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"  # noqa: S104
    api_port: int = Field(default=8000, validation_alias="PORT")
    api_workers: int = Field(default=1, ge=1)

    # ── Filing fee ─────────────────────────────────────────────────────
    filing_fee_cents: int = Field(default=500, gt=0)
    currency: str = "usd"
    fee_product_name: str = "Complaint Filing Fee"

    # ── Stripe ─────────────────────────────────────────────────────────
    stripe_secret_key: str = Field(default="", validation_alias="STRIPE_SECRET_KEY")
    stripe_publishable_key: str = Field(default="", validation_alias="STRIPE_PUBLISHABLE_KEY")
    stripe_webhook_secret: str = Field(default="", validation_alias="STRIPE_WEBHOOK_SECRET")

    # ── Vertex AI / Gemini ─────────────────────────────────────────────
    gcp_project_id: str = Field(default="", validation_alias="GCP_PROJECT_ID")
    vertex_ai_model: str = Field(default="gemini-2.0-flash", validation_alias="VERTEX_AI_MODEL")
    vertex_ai_location: str = Field(default="us-central1", validation_alias="VERTEX_AI_LOCATION")
    llm_timeout_seconds: float = Field(default=60.0, gt=0)

    # ── Record store ───────────────────────────────────────────────────
    # Empty means the process-local in-memory store.
    redis_url: str = Field(default="", validation_alias="REDIS_URL")
    redis_namespace: str = "grievance:"

    # ── Admin API Key ──────────────────────────────────────────────────
    admin_api_key: str = Field(default="", validation_alias="ADMIN_API_KEY")

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Admin reporting ────────────────────────────────────────────────
    stats_window_days: int = Field(default=30, gt=0)

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
