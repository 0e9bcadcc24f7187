"""Configuration management for docklink.

This module provides a flat Settings class read from the environment
(and an optional .env file) with grouped accessors for each concern.

Usage:
    from docklink.config import settings

    # Grouped access
    settings.engine.get_base_url()
    settings.stream.stream_chunk_size

    # Flat access
    settings.docker_host
    settings.exec_poll_interval
"""

from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .engine import EngineConfig
from .logging import LoggingConfig
from .stream import StreamConfig

_SUPPORTED_SCHEMES = ("unix://", "tcp://", "http://", "https://")


class Settings(BaseSettings):
    """docklink settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Engine endpoint
    docker_host: str = Field(
        default="unix:///var/run/docker.sock",
        description="Engine endpoint: unix://, tcp://, http:// or https://",
    )
    docker_api_version: Optional[str] = Field(
        default=None, description="API version path prefix, e.g. v1.43"
    )
    docker_timeout: float = Field(
        default=60.0,
        gt=0,
        le=3600,
        description="Timeout in seconds for request/response calls",
    )
    default_stop_grace: int = Field(
        default=10,
        ge=0,
        le=3600,
        description="Seconds the engine waits before killing on stop/restart",
    )

    # Streams
    stream_chunk_size: int = Field(default=4096, ge=1, le=1024 * 1024)
    stream_max_frame_size: Optional[int] = Field(
        default=None,
        ge=0,
        le=0xFFFFFFFF,
        description="Optional cap on frame payload length; unset accepts any 32-bit length",
    )
    exec_poll_interval: float = Field(
        default=0.25,
        gt=0,
        le=60,
        description="Seconds between exec inspect calls while waiting for exit",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @validator("docker_host")
    def validate_docker_host(cls, v):
        """Reject endpoints with an unsupported scheme."""
        if not v.startswith(_SUPPORTED_SCHEMES):
            raise ValueError(
                f"docker_host must start with one of {', '.join(_SUPPORTED_SCHEMES)}"
            )
        return v

    @validator("docker_api_version")
    def normalize_api_version(cls, v):
        """Accept both '1.43' and 'v1.43'."""
        if not v:
            return None
        v = v.strip().strip("/")
        return v if v.startswith("v") else f"v{v}"

    @validator("log_format")
    def validate_log_format(cls, v):
        """Only json and console renderers exist."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @property
    def engine(self) -> EngineConfig:
        """Access engine configuration group."""
        return EngineConfig(
            docker_host=self.docker_host,
            docker_api_version=self.docker_api_version,
            docker_timeout=self.docker_timeout,
            default_stop_grace=self.default_stop_grace,
        )

    @property
    def stream(self) -> StreamConfig:
        """Access stream configuration group."""
        return StreamConfig(
            stream_chunk_size=self.stream_chunk_size,
            stream_max_frame_size=self.stream_max_frame_size,
            exec_poll_interval=self.exec_poll_interval,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(log_level=self.log_level, log_format=self.log_format)


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "EngineConfig",
    "StreamConfig",
    "LoggingConfig",
]
