"""
Application configuration via environment variables.

Uses Pydantic BaseSettings to load and validate all config from env vars
or a .env.local file. Every setting has a sensible default for local
development so the app can start with minimal configuration.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment selector."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class SessionBackend(str, Enum):
    """Where recording sessions live."""

    MEMORY = "memory"
    REDIS = "redis"


class Settings(BaseSettings):
    """
    Central configuration for the Clinic Intake Service.

    Values are loaded from environment variables first, falling back
    to a `.env.local` file in the project root. Secrets should NEVER
    be committed — use `.env.example` as the template.
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── Language Understanding ───────────────────────────────────
    openai_api_key: str = Field(default="", description="API key for the chat-completions provider")
    llm_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI-compatible API base URL")
    llm_model: str = Field(default="gpt-4o-mini", description="Model used for extraction and intent classification")
    llm_temperature: float = Field(default=0.1, ge=0.0, le=1.0, description="Sampling temperature for extraction")
    llm_timeout_seconds: float = Field(default=30.0, gt=0, le=120, description="Hard timeout per model call")

    # ── Extraction ───────────────────────────────────────────────
    extraction_max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts for retryable extraction failures")
    extraction_backoff_seconds: float = Field(default=0.5, ge=0.0, description="Base delay for exponential backoff")
    auto_commit_min_confidence: float = Field(
        default=0.6, ge=0.0, le=1.0,
        description="Below this, extracted appointments need explicit confirmation",
    )

    # ── Supabase ─────────────────────────────────────────────────
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service-role key")
    supabase_schema: str = Field(default="api", description="Postgres schema holding clinic tables")

    # ── Sessions ─────────────────────────────────────────────────
    session_backend: SessionBackend = SessionBackend.MEMORY
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")

    # ── Clinic ───────────────────────────────────────────────────
    clinic_name: str = Field(default="Dental Clinic", description="Name used in conversational replies")
    clinic_timezone: str = Field(default="UTC", description="IANA zone used as the reference for relative dates")
    deprecated_filter_fields: list[str] = Field(
        default_factory=list,
        description="Filter fields removed from the live research schema",
    )

    # ── API ──────────────────────────────────────────────────────
    rate_limit_max: int = Field(default=100, ge=1, description="Requests per window per client IP")
    rate_limit_window_seconds: int = Field(default=60, ge=1, description="Rate limit window length")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Derived helpers ──────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached Settings instance.

    Using lru_cache ensures we read env vars exactly once, and every
    module that calls ``get_settings()`` gets the same object.
    """
    return Settings()
