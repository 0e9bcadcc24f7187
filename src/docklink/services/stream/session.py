"""Attach sessions.

An AttachSession ties one process handle to one hijacked engine stream
and the demuxer reading it. Output is either drained in one go or pumped
into a sink by a background task; input can be written at any time and
never waits on the read side.
"""

import asyncio
from typing import TYPE_CHECKING, Optional, Union

import structlog

from .demux import DemuxResult, DemuxStats, OutputSink, StreamDemuxer

if TYPE_CHECKING:
    from ...models.process import ProcessHandle
    from ..engine.transport import RawStream

logger = structlog.get_logger(__name__)


class AttachSession:
    """One open output (and optional input) stream of a process."""

    def __init__(
        self,
        handle: "ProcessHandle",
        stream: "RawStream",
        tty: bool,
        max_frame_size: Optional[int] = None,
    ):
        self.handle = handle
        self._stream = stream
        self._demuxer = StreamDemuxer(
            stream.chunks(),
            tty=tty,
            handle_id=handle.id,
            max_frame_size=max_frame_size,
        )
        self._task: Optional[asyncio.Task] = None
        self.result: Optional[Union[DemuxResult, DemuxStats]] = None

    @property
    def tty(self) -> bool:
        return self._demuxer.tty

    @property
    def closed(self) -> bool:
        return self._stream.closed

    @property
    def task(self) -> Optional[asyncio.Task]:
        """Background task of a live session, if one was started."""
        return self._task

    def run(self, sink: OutputSink) -> asyncio.Task:
        """Start delivering output to ``sink`` in a background task."""
        if self._task is not None:
            raise RuntimeError("Session output is already being consumed")
        self._task = asyncio.create_task(
            self._pump(sink), name=f"attach-{self.handle.short_id}"
        )
        return self._task

    async def _pump(self, sink: OutputSink) -> DemuxStats:
        try:
            self.result = await self._demuxer.pump(sink)
            logger.debug(
                "Attach session finished",
                handle_id=self.handle.short_id,
                frames=self.result.frames,
                bytes_delivered=self.result.bytes_delivered,
            )
            return self.result
        finally:
            await self._stream.close()

    async def drain(self, limit: Optional[int] = None) -> DemuxResult:
        """Collect all output until the stream ends (or ``limit`` bytes)."""
        if self._task is not None:
            raise RuntimeError("Session output is already being consumed")
        try:
            self.result = await self._demuxer.drain(limit)
            return self.result
        finally:
            await self._stream.close()

    async def wait(self) -> Optional[DemuxStats]:
        """Wait for a live session to end; re-raises its failure."""
        if self._task is None:
            return None
        return await self._task

    async def write(self, data: Union[bytes, str]) -> None:
        """Send input to the process."""
        if not self.handle.endpoints.stdin:
            raise ConnectionError(f"Process {self.handle.short_id} has no stdin attached")
        if isinstance(data, str):
            data = data.encode("utf-8")
        await self._stream.write(data)

    async def close_write(self) -> None:
        """Signal end of input."""
        await self._stream.close_write()

    async def close(self) -> None:
        """Detach: close the transport and let the read loop finish.

        The loop stops after the last complete frame already received;
        a failure inside the loop is logged here and stays available
        through ``wait()``.
        """
        await self._stream.close()
        if self._task is not None:
            if not self._task.done():
                await asyncio.wait({self._task})
            if not self._task.cancelled() and self._task.exception() is not None:
                error = self._task.exception()
                logger.error(
                    "Attach session failed",
                    handle_id=self.handle.short_id,
                    error=str(error),
                    error_type=type(error).__name__,
                )
        logger.debug("Attach session closed", handle_id=self.handle.short_id)

    async def __aenter__(self) -> "AttachSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
