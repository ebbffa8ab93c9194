from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "realestate-service"


class ServiceSettings(BaseSettings):
    """Settings shared by the real estate platform services."""

    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(default="text")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=8081)
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    tracing_excluded_urls: str = Field(default="health,metrics")
    database_url: str | None = Field(default=None)
    database_create_schema: bool = Field(default=False)
    redis_url: str | None = Field(default=None)
    realtime_channel: str = Field(default="support-cases:events", min_length=1)
    realtime_relay_retry_seconds: float = Field(default=1.0, gt=0.0)
    sendgrid_api_key: str | None = Field(default=None)
    sendgrid_base_url: str = Field(default="https://api.sendgrid.com")
    notification_sender: str = Field(default="noreply@realestate.local")
    notification_recipients: list[str] = Field(default_factory=list)
    notification_timeout_seconds: float = Field(default=5.0, gt=0.0)

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="SUPPORT_", extra="ignore"
    )


@lru_cache
def get_settings() -> ServiceSettings:
    """Return cached service settings."""

    return ServiceSettings()
