"""
Shared configuration management for Switchboard services.

Every setting can be overridden through the environment using the
``SWITCHBOARD_`` prefix (``SWITCHBOARD_LOG_LEVEL=debug``) or a ``.env``
file in the working directory.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_VERSION = "1.0.0"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="SWITCHBOARD_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local", description="Deployment environment name")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


class FlagServiceConfig(ServiceConfig):
    """Configuration for the flag evaluation service."""

    service_name: str = "flags"
    port: int = 8020

    # Evaluation recording
    recording_sink: Literal["memory", "log", "redis"] = Field(default="log")
    recording_stream: str = Field(default="flag-evaluations")
    recording_stream_maxlen: int = Field(default=100000, ge=1)
    recording_queue_size: int = Field(default=10000, ge=1)
    recording_drain_timeout: float = Field(default=5.0, ge=0)

    # Flag snapshots loaded into the in-memory store at startup
    seed_file: Optional[str] = Field(default=None)


def get_flag_service_config(**overrides) -> FlagServiceConfig:
    """Get configuration for the flag evaluation service."""
    return FlagServiceConfig(**overrides)
