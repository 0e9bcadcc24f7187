"""Stream demultiplexing for attach, exec start and log streams.

A StreamDemuxer wraps any async source of transport bytes and hands out
(channel, payload) pairs, either collected into a DemuxResult (buffered
drain) or pushed into an OutputSink as each frame completes (live pump).

Whether the stream is framed is decided once, from the session's TTY
flag: TTY streams carry raw terminal bytes on a single channel and never
go through the FrameDecoder.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
    Protocol,
    Tuple,
    Union,
    runtime_checkable,
)

import structlog

from ...config import settings
from ...models.errors import MalformedFrame
from .frames import Channel, FrameBuffer, FrameDecoder

logger = structlog.get_logger(__name__)


@runtime_checkable
class OutputSink(Protocol):
    """Receives demultiplexed output.

    ``on_data`` is called from the task running the read loop, one call
    at a time. If it returns an awaitable, the next transport read waits
    for it.
    """

    def on_data(self, channel: Channel, data: bytes) -> Optional[Awaitable[None]]:
        ...


@dataclass
class DemuxResult:
    """Output collected per channel, in arrival order within each channel."""

    stdout: List[bytes] = field(default_factory=list)
    stderr: List[bytes] = field(default_factory=list)
    tty: List[bytes] = field(default_factory=list)
    truncated_bytes: int = 0

    def append(self, channel: Channel, data: bytes) -> None:
        if channel is Channel.STDOUT:
            self.stdout.append(data)
        elif channel is Channel.STDERR:
            self.stderr.append(data)
        else:
            self.tty.append(data)

    def stdout_bytes(self) -> bytes:
        return b"".join(self.stdout)

    def stderr_bytes(self) -> bytes:
        return b"".join(self.stderr)

    def tty_bytes(self) -> bytes:
        return b"".join(self.tty)

    def stdout_text(self) -> str:
        """Decode stdout bytes to string."""
        return self.stdout_bytes().decode("utf-8", errors="replace")

    def stderr_text(self) -> str:
        """Decode stderr bytes to string."""
        return self.stderr_bytes().decode("utf-8", errors="replace")

    def tty_text(self) -> str:
        return self.tty_bytes().decode("utf-8", errors="replace")


@dataclass
class DemuxStats:
    """Counters for a live pump."""

    frames: int = 0
    bytes_delivered: int = 0
    truncated_bytes: int = 0


class BufferingSink:
    """Sink that keeps everything it receives."""

    def __init__(self):
        self.result = DemuxResult()

    def on_data(self, channel: Channel, data: bytes) -> None:
        self.result.append(channel, data)


class CallbackSink:
    """Adapts a plain ``callback(data, channel)`` function to a sink.

    Coroutine functions are awaited.
    """

    def __init__(self, callback: Callable[[bytes, Channel], Union[None, Awaitable[None]]]):
        self._callback = callback

    def on_data(self, channel: Channel, data: bytes) -> Optional[Awaitable[None]]:
        return self._callback(data, channel)


class LoggingSink:
    """Sink that logs each chunk as text."""

    def __init__(self, handle_id: Optional[str] = None, max_chars: int = 200):
        self._handle_id = handle_id
        self._max_chars = max_chars

    def on_data(self, channel: Channel, data: bytes) -> None:
        text = data.decode("utf-8", errors="replace")
        logger.info(
            "Process output",
            handle_id=self._handle_id[:12] if self._handle_id else None,
            channel=channel.name.lower(),
            output=text[: self._max_chars],
            size=len(data),
        )


async def read_chunks(
    reader: asyncio.StreamReader, chunk_size: Optional[int] = None
) -> AsyncIterator[bytes]:
    """Yield chunks from a stream reader until EOF."""
    chunk_size = chunk_size or settings.stream_chunk_size
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            return
        yield chunk


class StreamDemuxer:
    """Splits one transport byte stream into per-channel output."""

    def __init__(
        self,
        source: AsyncIterator[bytes],
        tty: bool = False,
        handle_id: Optional[str] = None,
        max_frame_size: Optional[int] = None,
    ):
        """Initialize the demuxer.

        Args:
            source: Async iterator of transport bytes
            tty: Raw (unframed) stream; fixed for the lifetime of the demuxer
            handle_id: Id of the process the stream belongs to, for errors
            max_frame_size: Largest acceptable frame payload
        """
        self._source = source
        self._tty = bool(tty)
        self._handle_id = handle_id
        self._frames = None if self._tty else FrameBuffer(FrameDecoder(max_frame_size))
        self._bytes_read = 0
        self.truncated_bytes = 0

    @property
    def tty(self) -> bool:
        return self._tty

    @property
    def bytes_read(self) -> int:
        """Transport bytes consumed so far."""
        return self._bytes_read

    async def _chunks(self, limit: Optional[int]) -> AsyncIterator[bytes]:
        async for chunk in self._source:
            if limit is not None:
                remaining = limit - self._bytes_read
                if remaining <= 0:
                    return
                chunk = chunk[:remaining]
            self._bytes_read += len(chunk)
            yield chunk
            if limit is not None and self._bytes_read >= limit:
                return

    async def iter_output(
        self, limit: Optional[int] = None
    ) -> AsyncIterator[Tuple[Channel, bytes]]:
        """Yield (channel, payload) pairs as complete frames arrive.

        Args:
            limit: Stop after this many transport bytes

        Raises:
            MalformedFrame: after yielding every frame decoded before the
                bad header
        """
        async for chunk in self._chunks(limit):
            if self._tty:
                if chunk:
                    yield Channel.TTY, bytes(chunk)
                continue

            try:
                frames = self._frames.feed(chunk)
            except MalformedFrame as e:
                for frame in e.partial or []:
                    if frame.payload:
                        yield frame.channel, frame.payload
                e.handle_id = e.handle_id or self._handle_id
                raise

            for frame in frames:
                # Empty frames are valid but carry nothing to deliver
                if frame.payload:
                    yield frame.channel, frame.payload

        if self._frames is not None and self._frames.pending:
            self.truncated_bytes = self._frames.pending
            logger.warning(
                "Stream ended inside a frame",
                handle_id=self._handle_id[:12] if self._handle_id else None,
                pending_bytes=self.truncated_bytes,
                position=self._frames.position,
            )

    async def drain(self, limit: Optional[int] = None) -> DemuxResult:
        """Read the transport to completion (or ``limit`` bytes).

        Returns:
            DemuxResult with per-channel chunk lists

        Raises:
            MalformedFrame: with ``partial`` set to the DemuxResult decoded
                before the failure
        """
        result = DemuxResult()
        try:
            async for channel, data in self.iter_output(limit):
                result.append(channel, data)
        except MalformedFrame as e:
            e.partial = result
            logger.error(
                "Malformed frame in stream",
                handle_id=self._handle_id[:12] if self._handle_id else None,
                offset=e.offset,
                tag=e.tag,
                decoded_stdout=len(result.stdout),
                decoded_stderr=len(result.stderr),
            )
            raise
        result.truncated_bytes = self.truncated_bytes
        logger.debug(
            "Stream drained",
            handle_id=self._handle_id[:12] if self._handle_id else None,
            tty=self._tty,
            bytes_read=self._bytes_read,
            stdout_chunks=len(result.stdout),
            stderr_chunks=len(result.stderr),
        )
        return result

    async def pump(self, sink: OutputSink, limit: Optional[int] = None) -> DemuxStats:
        """Deliver each frame to ``sink`` as it arrives.

        The next transport read only happens once the sink call (and any
        awaitable it returned) has finished.

        Raises:
            MalformedFrame: with ``partial`` set to the DemuxStats of what
                was delivered
        """
        stats = DemuxStats()
        try:
            async for channel, data in self.iter_output(limit):
                outcome = sink.on_data(channel, data)
                if inspect.isawaitable(outcome):
                    await outcome
                stats.frames += 1
                stats.bytes_delivered += len(data)
        except MalformedFrame as e:
            e.partial = stats
            logger.error(
                "Malformed frame in live stream",
                handle_id=self._handle_id[:12] if self._handle_id else None,
                offset=e.offset,
                tag=e.tag,
                delivered_frames=stats.frames,
            )
            raise
        stats.truncated_bytes = self.truncated_bytes
        return stats
