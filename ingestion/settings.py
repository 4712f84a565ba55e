"""Configuration models for the review ingestion pipeline."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Optional

from pydantic import (
    Field,
    NonNegativeInt,
    PositiveInt,
    SecretStr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings shared by the API, the CLI and Celery workers."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    postgres_dsn: str = Field(..., alias="POSTGRES_DSN", description="Review store connection string.")
    redis_url: str = Field(
        "redis://localhost:6379/0",
        alias="REVIEWS_REDIS_URL",
        description="Celery broker/backend Redis DSN.",
    )
    serpapi_api_key: Optional[SecretStr] = Field(None, alias="SERPAPI_API_KEY", description="SerpAPI key.")
    serpapi_endpoint: str = Field(
        "https://serpapi.com/search",
        alias="SERPAPI_ENDPOINT",
        description="SerpAPI search endpoint.",
    )
    serpapi_engine: str = Field("google_product_reviews", alias="SERPAPI_ENGINE", description="SerpAPI engine.")
    serpapi_timeout_seconds: PositiveInt = Field(15, alias="SERPAPI_TIMEOUT_SECONDS", description="Per-call timeout.")
    serpapi_max_attempts: PositiveInt = Field(3, alias="SERPAPI_MAX_ATTEMPTS", description="Attempts per query.")
    serpapi_backoff_base_ms: NonNegativeInt = Field(
        500,
        alias="SERPAPI_BACKOFF_BASE_MS",
        description="Delay before the second attempt; doubles afterwards.",
    )
    serpapi_result_limit: PositiveInt = Field(20, alias="SERPAPI_RESULT_LIMIT", description="Reviews requested per call.")
    snapshot_freshness_hours: PositiveInt = Field(
        24,
        alias="SNAPSHOT_FRESHNESS_HOURS",
        description="Age below which a cached raw snapshot is reused.",
    )
    snapshot_stale_on_error: bool = Field(
        False,
        alias="SNAPSHOT_STALE_ON_ERROR",
        description="Serve a stale snapshot when the provider fails.",
    )
    review_source_tag: str = Field("amazon-serpapi", alias="REVIEW_SOURCE_TAG", description="Provenance tag.")
    refresh_batch_limit: PositiveInt = Field(500, alias="REFRESH_BATCH_LIMIT", description="GTINs per refresh run.")
    refresh_inter_item_delay_ms: NonNegativeInt = Field(
        250,
        alias="REFRESH_INTER_ITEM_DELAY_MS",
        description="Pause between GTINs during a refresh run.",
    )
    refresh_interval_minutes: NonNegativeInt = Field(
        0,
        alias="REFRESH_INTERVAL_MINUTES",
        description="Beat interval for refresh-all (0 disables).",
    )
    clean_max_age_days: PositiveInt = Field(90, alias="CLEAN_MAX_AGE_DAYS", description="Retention for unapproved reviews.")
    summary_sample_size: PositiveInt = Field(10, alias="SUMMARY_SAMPLE_SIZE", description="Reviews embedded in a summary.")
    summary_cache_max_age_seconds: NonNegativeInt = Field(
        3600,
        alias="SUMMARY_CACHE_MAX_AGE_SECONDS",
        description="Shared cache freshness for summary responses.",
    )
    summary_stale_while_revalidate_seconds: NonNegativeInt = Field(
        86_400,
        alias="SUMMARY_STALE_WHILE_REVALIDATE_SECONDS",
        description="Stale-while-revalidate window for summary responses.",
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL", description="Root log level.")
    log_json: bool = Field(False, alias="LOG_JSON", description="Emit logs as JSON lines.")

    @field_validator("postgres_dsn")
    @classmethod
    def _validate_postgres_dsn(cls, value: str) -> str:
        if "://" not in value:
            raise ValueError("POSTGRES_DSN must be a valid DSN string.")
        return value

    @field_validator("serpapi_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: int) -> int:
        if value > 60:
            raise ValueError("SERPAPI_TIMEOUT_SECONDS must be 60 or less.")
        return value

    @field_validator("review_source_tag")
    @classmethod
    def _validate_source_tag(cls, value: str) -> str:
        tag = value.strip()
        if not tag:
            raise ValueError("REVIEW_SOURCE_TAG must not be blank.")
        return tag

    @property
    def snapshot_freshness_window(self) -> timedelta:
        return timedelta(hours=int(self.snapshot_freshness_hours))

    @property
    def cache_control_header(self) -> str:
        return (
            f"public, s-maxage={int(self.summary_cache_max_age_seconds)}, "
            f"stale-while-revalidate={int(self.summary_stale_while_revalidate_seconds)}"
        )

    def has_provider_key(self) -> bool:
        return bool(self.serpapi_api_key and self.serpapi_api_key.get_secret_value().strip())


@lru_cache()
def get_settings() -> Settings:
    """Return settings loaded from the environment."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"Environment validation failed: {exc}") from exc


def reset_settings_cache() -> None:
    """Clear the Settings LRU cache (for tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
