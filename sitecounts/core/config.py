from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CacheBackendKind = Literal["memory", "redis", "none"]


class Settings(BaseSettings):
    environment: str = "dev"
    related_category: str = "baz"
    related_meta_value: str = "Accepted"
    related_target_size: int = Field(default=5, ge=0)
    related_max_attempts: int = Field(default=1000, ge=0)
    related_cache_ttl_seconds: float = Field(default=300.0, ge=0)
    cache_backend: CacheBackendKind = "memory"
    cache_key_prefix: str = "sitecounts"
    redis_url: str | None = None
    otel_enabled: bool = True
    otel_service_name: str = "site-counts"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="SC_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
