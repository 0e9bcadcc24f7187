"""docklink - asyncio client for the Docker engine API."""

from .client import DockerClient
from .models import (
    AttachFlags,
    AttachUnsupported,
    CreationRejected,
    DockLinkException,
    Image,
    ImagePullFailed,
    InvalidState,
    MalformedFrame,
    ProcessHandle,
    ProcessKind,
    ProcessState,
    WaitOutcome,
)
from .services import LifecycleController, RunResult, WaitCoordinator
from .services.stream import (
    AttachSession,
    BufferingSink,
    CallbackSink,
    Channel,
    DemuxResult,
    FrameDecoder,
    StreamDemuxer,
)

__version__ = "0.1.0"

__all__ = [
    "DockerClient",
    "AttachFlags",
    "AttachUnsupported",
    "CreationRejected",
    "DockLinkException",
    "Image",
    "ImagePullFailed",
    "InvalidState",
    "MalformedFrame",
    "ProcessHandle",
    "ProcessKind",
    "ProcessState",
    "WaitOutcome",
    "LifecycleController",
    "RunResult",
    "WaitCoordinator",
    "AttachSession",
    "BufferingSink",
    "CallbackSink",
    "Channel",
    "DemuxResult",
    "FrameDecoder",
    "StreamDemuxer",
]
