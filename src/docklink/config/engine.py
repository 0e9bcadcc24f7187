"""Engine connection configuration."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class EngineConfig(BaseSettings):
    """Docker Engine endpoint settings."""

    docker_host: str = Field(default="unix:///var/run/docker.sock")
    docker_api_version: Optional[str] = Field(default=None)
    docker_timeout: float = Field(default=60.0, gt=0, le=3600)
    default_stop_grace: int = Field(default=10, ge=0, le=3600)

    @property
    def is_unix_socket(self) -> bool:
        """Whether the engine is reached over a unix domain socket."""
        return self.docker_host.startswith("unix://")

    @property
    def socket_path(self) -> Optional[str]:
        """Filesystem path of the engine socket, if any."""
        if not self.is_unix_socket:
            return None
        return self.docker_host[len("unix://"):]

    def get_base_url(self) -> str:
        """Base URL used for HTTP requests against the engine."""
        if self.is_unix_socket:
            base = "http://docker"
        elif self.docker_host.startswith("tcp://"):
            base = "http://" + self.docker_host[len("tcp://"):]
        else:
            base = self.docker_host.rstrip("/")
        if self.docker_api_version:
            return f"{base}/{self.docker_api_version}"
        return base

    class Config:
        env_prefix = ""
        extra = "ignore"
