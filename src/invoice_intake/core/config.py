from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"
    secret_key: str = "change-me"
    access_token_exp_minutes: int = 60 * 24

    database_url: str = "sqlite:///./invoice_intake.db"
    redis_url: str = "redis://localhost:6379/0"

    # "sql" keeps sessions, usage counters and entitlements in the database;
    # "memory" keeps them in-process (single instance / offline only).
    state_backend: Literal["sql", "memory"] = "sql"

    storage_backend: Literal["local", "s3"] = "local"
    local_storage_path: Path = Path(".local_storage")

    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_bucket: str = "invoice-intake"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4.1-mini"
    ai_timeout_seconds: float = 45.0
    ai_retry_limit: int = 2
    ai_retry_base_delay_seconds: float = 0.8
    ai_max_output_tokens: int = 2048

    max_file_size_bytes: int = 10 * 1024 * 1024
    max_pdf_pages: int = 20
    upload_ttl_seconds: int = 60 * 60
    session_ttl_seconds: int = 24 * 60 * 60

    free_daily_limit: int = 3
    usage_salt: str = ""

    history_retention_days: int = 30

    sweep_interval_seconds: int = 15 * 60
    sweep_batch_limit: int = 200

    @field_validator("free_daily_limit", mode="before")
    @classmethod
    def _positive_daily_limit(cls, value):
        try:
            limit = int(value)
        except (TypeError, ValueError):
            return 3
        return limit if limit > 0 else 3

    @field_validator("history_retention_days", mode="before")
    @classmethod
    def _clamp_retention(cls, value):
        try:
            days = int(value)
        except (TypeError, ValueError):
            return 30
        return min(90, max(30, days))


settings = Settings()
