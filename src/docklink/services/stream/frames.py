"""Multiplexed stream framing used by attach, exec start and logs.

When a process runs without a TTY the engine multiplexes stdout and
stderr onto one byte stream. Each frame has an 8-byte header:
  - byte 0: stream type (1 = stdout, 2 = stderr)
  - bytes 1-3: padding
  - bytes 4-7: payload length (big-endian uint32)
followed by exactly ``length`` payload bytes.

With a TTY there is no framing at all; those streams never reach this
module.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Tuple

from ...models.errors import MalformedFrame

HEADER_SIZE = 8
_HEADER_FORMAT = ">BxxxI"  # 1 byte type, 3 padding, 4 byte length


class Channel(IntEnum):
    """Logical output channel of a session."""

    TTY = 0  # raw sessions only, never a frame tag
    STDOUT = 1
    STDERR = 2


_TAGS = {1: Channel.STDOUT, 2: Channel.STDERR}


@dataclass(frozen=True)
class Frame:
    """One complete frame."""

    channel: Channel
    payload: bytes

    @property
    def length(self) -> int:
        return len(self.payload)


def encode_frame(channel: Channel, payload: bytes) -> bytes:
    """Build the wire form of a frame."""
    if channel not in _TAGS.values():
        raise ValueError(f"Channel {channel!r} cannot be framed")
    return struct.pack(_HEADER_FORMAT, int(channel), len(payload)) + payload


def parse_stream_header(header: bytes) -> Tuple[int, int]:
    """Parse an 8-byte frame header into (stream_type, payload_length)."""
    stream_type, payload_length = struct.unpack(_HEADER_FORMAT, header)
    return stream_type, payload_length


class FrameDecoder:
    """Stateless decoder turning a byte buffer into complete frames.

    ``decode`` only ever advances past whole frames, so a caller can keep
    appending transport bytes to the same buffer and call it again.
    """

    def __init__(self, max_frame_size: Optional[int] = None):
        """Initialize the decoder.

        Args:
            max_frame_size: Optional cap on payload length; None accepts
                any length the header can express
        """
        self._max_frame_size = max_frame_size

    def decode_one(self, buffer: bytes, offset: int = 0) -> Tuple[Optional[Frame], int]:
        """Decode a single frame at ``offset``.

        Returns:
            (frame, new_offset), or (None, offset) when the buffer does not
            yet hold a whole frame

        Raises:
            MalformedFrame: unknown stream type, or a length above the
                configured cap
        """
        available = len(buffer) - offset
        if available < HEADER_SIZE:
            return None, offset

        stream_type, length = parse_stream_header(
            bytes(buffer[offset:offset + HEADER_SIZE])
        )
        channel = _TAGS.get(stream_type)
        if channel is None:
            raise MalformedFrame(
                f"Unknown stream type {stream_type}",
                offset=offset,
                tag=stream_type,
            )
        if self._max_frame_size is not None and length > self._max_frame_size:
            raise MalformedFrame(
                f"Frame length {length} exceeds limit "
                f"{self._max_frame_size}",
                offset=offset,
                tag=stream_type,
            )

        end = offset + HEADER_SIZE + length
        if len(buffer) < end:
            return None, offset

        payload = bytes(buffer[offset + HEADER_SIZE:end])
        return Frame(channel, payload), end

    def decode(self, buffer: bytes, offset: int = 0) -> Tuple[List[Frame], int]:
        """Decode every complete frame from ``offset`` onwards.

        Frames decoded before a malformed header are attached to the
        exception as ``partial``.
        """
        frames: List[Frame] = []
        while True:
            try:
                frame, new_offset = self.decode_one(buffer, offset)
            except MalformedFrame as e:
                e.partial = frames
                raise
            if frame is None:
                return frames, offset
            frames.append(frame)
            offset = new_offset


class FrameBuffer:
    """Append-only byte buffer with a read cursor over a FrameDecoder."""

    # Consumed bytes are dropped once they pass this size
    _COMPACT_THRESHOLD = 64 * 1024

    def __init__(self, decoder: Optional[FrameDecoder] = None):
        self._decoder = decoder or FrameDecoder()
        self._buffer = bytearray()
        self._cursor = 0
        self._consumed = 0  # bytes compacted away, for absolute offsets

    @property
    def pending(self) -> int:
        """Bytes received but not yet part of a complete frame."""
        return len(self._buffer) - self._cursor

    @property
    def position(self) -> int:
        """Absolute transport offset of the cursor."""
        return self._consumed + self._cursor

    def feed(self, data: bytes) -> List[Frame]:
        """Append transport bytes and return the frames they completed."""
        self._buffer.extend(data)
        try:
            frames, self._cursor = self._decoder.decode(self._buffer, self._cursor)
        except MalformedFrame as e:
            e.offset += self._consumed
            raise
        if self._cursor >= self._COMPACT_THRESHOLD:
            del self._buffer[:self._cursor]
            self._consumed += self._cursor
            self._cursor = 0
        return frames
