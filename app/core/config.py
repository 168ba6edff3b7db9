"""Application configuration loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hard cap on exported rows regardless of configuration.
MAX_EXPORT_ROWS = 50_000


class Settings(BaseSettings):
    """Validated application settings from env and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    APP_ENV: Literal["dev", "prod"] = "dev"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"

    # SQLite file produced by `python -m app.ingest`; opened read-only by the API
    DATABASE_PATH: str = "data/vulnerabilities.db"
    # Nested JSON export consumed by the ingest job
    SOURCE_JSON_PATH: str = "public/data/vulnerabilities.json"

    EXPORT_MAX_ROWS: int = MAX_EXPORT_ROWS
    INGEST_BATCH_SIZE: int = 1000

    # Chart sizes
    TOP_PACKAGES: int = 10
    TREND_MONTHS: int = 12

    @field_validator("DATABASE_PATH", "SOURCE_JSON_PATH")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("DATABASE_PATH and SOURCE_JSON_PATH must be set and non-empty")
        return v.strip()

    @field_validator("API_V1_PREFIX")
    @classmethod
    def validate_api_prefix(cls, v: str) -> str:
        s = (v or "").strip().rstrip("/")
        if not s.startswith("/"):
            raise ValueError("API_V1_PREFIX must start with '/' (e.g. /api/v1)")
        return s

    @field_validator("EXPORT_MAX_ROWS")
    @classmethod
    def validate_export_max_rows(cls, v: int) -> int:
        if v < 1 or v > MAX_EXPORT_ROWS:
            raise ValueError(
                f"EXPORT_MAX_ROWS must be between 1 and {MAX_EXPORT_ROWS}"
            )
        return v

    @field_validator("INGEST_BATCH_SIZE")
    @classmethod
    def validate_ingest_batch_size(cls, v: int) -> int:
        if v < 1 or v > 100_000:
            raise ValueError("INGEST_BATCH_SIZE must be between 1 and 100000")
        return v

    @field_validator("TOP_PACKAGES")
    @classmethod
    def validate_top_packages(cls, v: int) -> int:
        if v < 1 or v > 100:
            raise ValueError("TOP_PACKAGES must be between 1 and 100")
        return v

    @field_validator("TREND_MONTHS")
    @classmethod
    def validate_trend_months(cls, v: int) -> int:
        if v < 1 or v > 120:
            raise ValueError("TREND_MONTHS must be between 1 and 120 (up to 10 years)")
        return v


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance (safe to call from dependencies)."""
    return Settings()
