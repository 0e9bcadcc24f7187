"""Data models for docklink."""

from .errors import (
    ErrorType,
    ErrorDetail,
    ErrorResponse,
    DockLinkException,
    MalformedFrame,
    CreationRejected,
    InvalidState,
    AttachUnsupported,
    ImagePullFailed,
)
from .image import Image
from .process import (
    AttachFlags,
    ProcessHandle,
    ProcessKind,
    ProcessState,
    WaitOutcome,
)

__all__ = [
    # Error models
    "ErrorType",
    "ErrorDetail",
    "ErrorResponse",
    "DockLinkException",
    "MalformedFrame",
    "CreationRejected",
    "InvalidState",
    "AttachUnsupported",
    "ImagePullFailed",
    # Image models
    "Image",
    # Process models
    "AttachFlags",
    "ProcessHandle",
    "ProcessKind",
    "ProcessState",
    "WaitOutcome",
]
