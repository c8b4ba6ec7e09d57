"""Sync-layer configuration pulled from environment variables via pydantic."""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the forecast sync layer."""
    model_config = SettingsConfigDict(env_prefix="FORECAST_SYNC_", extra="ignore")

    api_base_url: str = "http://localhost:8080"
    api_token: str | None = None
    data_source: str = "real"  # options: real, mock

    fetch_timeout_seconds: float = Field(default=10.0, gt=0)
    fetch_max_retries: int = Field(default=6, ge=0)

    stale_threshold_seconds: float = Field(default=300, ge=0)
    very_old_threshold_seconds: float = Field(default=24 * 60 * 60, ge=0)

    cache_schema_version: str = "1.0"
    forecast_cache_key: str = "weatherForecastCache"
    hourly_cache_key: str = "weatherHourlyCache"
    hourly_cache_max_age_seconds: float = Field(default=7 * 24 * 60 * 60, ge=0)
    dismissal_key_prefix: str = "offlineBannerDismissed_"

    storage_backend: str = "file"  # options: file, memory, redis
    storage_path: str = ".forecast_sync/storage.json"
    storage_quota_bytes: int | None = 5 * 1024 * 1024
    storage_redis_url: str | None = None
    storage_redis_prefix: str = "forecast_sync:"

    refresh_on_reconnect: bool = True

    log_level: str = "INFO"
    log_job_name: str = "forecast_sync"

    @field_validator("api_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("storage_backend", "data_source", mode="after")
    @classmethod
    def lower_case(cls, v: str) -> str:
        return str(v).strip().lower()


settings = Settings()


if __name__ == "__main__":
    logger.logger.setLevel("DEBUG")
    logger.debug(
        "Loaded settings: %s",
        settings.model_dump_json(indent=4, exclude={"api_token"}),
        extra={"api_base_url": mask_url(settings.api_base_url)},
    )
