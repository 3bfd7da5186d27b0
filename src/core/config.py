"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
from typing import Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Conflict engine settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "Catalog Sync Conflict Engine"
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ── PostgreSQL ───────────────────────────────────────────────
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "catalog_sync"
    postgres_user: str = "catalog_sync"
    postgres_password: str = "catalog_sync_dev_password"
    database_url: str | None = None
    database_pool_size: int = 20

    # ── Canonical catalog API ────────────────────────────────────
    catalog_api_url: str = "http://localhost:8100"
    catalog_api_token: SecretStr = SecretStr("")

    # ── ERP API ──────────────────────────────────────────────────
    erp_api_url: str = "http://localhost:8200"
    erp_api_token: SecretStr = SecretStr("")

    # ── Outbound HTTP ────────────────────────────────────────────
    http_timeout_seconds: float = 30.0
    http_max_retries: int = 3

    # ── Conflict engine defaults ─────────────────────────────────
    conflict_price_tolerance: float = 0.05
    conflict_stock_tolerance: float = 0.10
    conflict_source_precedence: Literal["local", "remote"] = "remote"
    conflict_detection_concurrency: int = 16
    conflict_bulk_concurrency: int = 8
    conflict_auto_resolve_on_detect: bool = False
    conflict_export_page_size: int = 500

    @field_validator("conflict_price_tolerance", "conflict_stock_tolerance")
    @classmethod
    def check_tolerance(cls, v: float) -> float:
        """Tolerances are fractions, e.g. 0.05 for 5%."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("tolerance must be between 0 and 1")
        return v

    @field_validator("conflict_detection_concurrency", "conflict_bulk_concurrency")
    @classmethod
    def check_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("concurrency must be at least 1")
        return v

    @model_validator(mode="after")
    def build_derived_urls(self) -> Settings:
        """Build database_url from components if not set."""
        if not self.database_url:
            self.database_url = (
                f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        return self


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
