"""Attach stream handling.

This package provides the data plane for attach and exec sessions:
- frames.py: FrameDecoder for the multiplexed stream format
- demux.py: StreamDemuxer, sinks and DemuxResult
- session.py: AttachSession tying a process handle to an open stream
"""

from .frames import Channel, Frame, FrameBuffer, FrameDecoder, encode_frame
from .demux import (
    BufferingSink,
    CallbackSink,
    DemuxResult,
    DemuxStats,
    LoggingSink,
    OutputSink,
    StreamDemuxer,
    read_chunks,
)
from .session import AttachSession

__all__ = [
    "Channel",
    "Frame",
    "FrameBuffer",
    "FrameDecoder",
    "encode_frame",
    "BufferingSink",
    "CallbackSink",
    "DemuxResult",
    "DemuxStats",
    "LoggingSink",
    "OutputSink",
    "StreamDemuxer",
    "read_chunks",
    "AttachSession",
]
