"""Attach stream and wait configuration."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class StreamConfig(BaseSettings):
    """Limits for attach/exec streams and exec exit polling."""

    stream_chunk_size: int = Field(default=4096, ge=1, le=1024 * 1024)
    # None accepts every length the 32-bit header can carry
    stream_max_frame_size: Optional[int] = Field(default=None, ge=0, le=0xFFFFFFFF)
    exec_poll_interval: float = Field(default=0.25, gt=0, le=60)

    class Config:
        env_prefix = ""
        extra = "ignore"
