from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from intake.services.score_gate import validate_threshold


class Settings(BaseSettings):
    app_name: str = "intake-controller"
    environment: str = "dev"
    scraper_base_url: str = "http://localhost:8081"
    textanalyzer_base_url: str = "http://localhost:8082"
    upstream_timeout_seconds: float = 600.0
    redis_url: str | None = None
    url_cache_ttl_days: int = Field(default=30, ge=1)
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    link_score_threshold: float = 0.5
    tombstone_period_low_score_days: int = Field(default=30, ge=1)
    tombstone_period_manual_days: int = Field(default=90, ge=1)
    request_ttl_seconds: int = Field(default=900, ge=1)
    sweep_interval_seconds: float = 60.0
    worker_concurrency: int = Field(default=10, ge=1)
    job_timeout_seconds: float = 900.0
    otel_enabled: bool = True
    otel_service_name: str = "intake-controller"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="INTAKE_", extra="ignore")

    @field_validator("link_score_threshold")
    @classmethod
    def _check_threshold(cls, value: float) -> float:
        return validate_threshold(value)


@lru_cache
def get_settings() -> Settings:
    return Settings()
