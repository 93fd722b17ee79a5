"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. Engine-specific
settings use the ``YOJANA_`` prefix; GCP / infrastructure settings use
their canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the Yojana Match engine.

    Environment variables are loaded from a ``.env`` file when present.
    Engine keys are prefixed with ``YOJANA_``; GCP / infra keys use their
    standard names (configured via ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="YOJANA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── GCP ────────────────────────────────────────────────────────────
    gcp_project_id: str = Field(default="", validation_alias="GCP_PROJECT_ID")
    gcp_region: str = Field(default="asia-south1", validation_alias="GCP_REGION")

    # ── Vertex AI / Gemini ─────────────────────────────────────────────
    vertex_ai_model: str = Field(default="gemini-2.0-flash", validation_alias="VERTEX_AI_MODEL")
    vertex_ai_location: str = Field(default="asia-south1", validation_alias="VERTEX_AI_LOCATION")

    # ── Redis ──────────────────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=8000, validation_alias="API_PORT")
    cors_origins: str = Field(default="", validation_alias="CORS_ORIGINS")  # comma-separated

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Retrieval ──────────────────────────────────────────────────────
    match_top_k: int = Field(default=10, ge=1)
    retrieval_timeout_seconds: float = Field(default=0.8, gt=0)
    retrieval_overfetch: int = Field(default=3, ge=1)  # search top_k * overfetch before filtering
    embedding_dim: int = Field(default=768, ge=8)

    # ── Scoring ────────────────────────────────────────────────────────
    weight_eligibility: float = Field(default=0.6, ge=0, le=1)
    weight_deadline: float = Field(default=0.15, ge=0, le=1)
    weight_benefit: float = Field(default=0.25, ge=0, le=1)
    deadline_horizon_days: int = Field(default=90, ge=1)
    near_match_max_missing: int = Field(default=2, ge=1)

    # ── Criteria interpretation ────────────────────────────────────────
    interpretation_timeout_seconds: float = Field(default=5.0, gt=0)
    interpretation_confidence_threshold: float = Field(default=0.6, ge=0, le=1)
    interpretation_cache_ttl: int = 2_592_000  # 30 days; keys are versioned

    # ── Concurrency lanes ──────────────────────────────────────────────
    interactive_concurrency: int = Field(default=32, ge=1)
    sweep_concurrency: int = Field(default=4, ge=1)

    # ── Re-evaluation sweeps ───────────────────────────────────────────
    sweep_batch_size: int = Field(default=100, ge=1)
    sweep_workers: int = Field(default=2, ge=1)
    new_scheme_sweep_deadline_hours: int = 24
    targeted_sweep_deadline_hours: int = 1
    history_max_profiles_per_scheme: int = 50_000
    enable_reevaluation: bool = True

    @model_validator(mode="after")
    def _check_weights(self) -> Settings:
        total = self.weight_eligibility + self.weight_deadline + self.weight_benefit
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 1.0 (got {total:.4f})")
        if self.weight_eligibility <= max(self.weight_deadline, self.weight_benefit):
            raise ValueError("weight_eligibility must dominate the other scoring weights")
        return self

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Module-level singleton: import ``settings`` everywhere.
settings = Settings()
