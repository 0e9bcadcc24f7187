"""Error models and exception classes for docklink."""

import time
from enum import Enum
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, Field


class ErrorType(str, Enum):
    """Error type enumeration."""

    MALFORMED_FRAME = "malformed_frame"
    CREATION_REJECTED = "creation_rejected"
    INVALID_STATE = "invalid_state"
    ATTACH_UNSUPPORTED = "attach_unsupported"
    PULL_FAILED = "pull_failed"
    INTERNAL = "internal"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Name of the offending value")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Serializable form of a docklink error."""

    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    handle_id: Optional[str] = Field(None, description="Process handle involved")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")

    class Config:
        use_enum_values = True


# Custom Exception Classes


class DockLinkException(Exception):
    """Base exception for docklink."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL,
        details: Optional[List[ErrorDetail]] = None,
        handle_id: Optional[str] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.details = details or []
        self.handle_id = handle_id
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            handle_id=self.handle_id,
            details=self.details if self.details else None,
        )


class MalformedFrame(DockLinkException):
    """Stream bytes do not match the multiplexed framing format.

    ``offset`` is the position of the bad header in the transport bytes,
    ``partial`` holds whatever was decoded before it (a DemuxResult when
    raised by the demuxer).
    """

    def __init__(
        self,
        message: str,
        offset: int = 0,
        tag: Optional[int] = None,
        partial: Any = None,
        **kwargs,
    ):
        self.offset = offset
        self.tag = tag
        self.partial = partial
        details = [ErrorDetail(field="offset", message=str(offset), code="frame_offset")]
        if tag is not None:
            details.append(ErrorDetail(field="tag", message=str(tag), code="frame_tag"))
        super().__init__(
            message=message,
            error_type=ErrorType.MALFORMED_FRAME,
            details=details,
            **kwargs,
        )


class CreationRejected(DockLinkException):
    """The engine refused to create a container or exec instance."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        image: Optional[str] = None,
        **kwargs,
    ):
        self.status_code = status_code
        self.image = image
        details = []
        if status_code is not None:
            details.append(
                ErrorDetail(field="status_code", message=str(status_code), code="http_status")
            )
        if image:
            details.append(ErrorDetail(field="Image", message=image, code="image"))
        super().__init__(
            message=message,
            error_type=ErrorType.CREATION_REJECTED,
            details=details,
            **kwargs,
        )


class InvalidState(DockLinkException):
    """Operation requested while the handle is in an incompatible state."""

    def __init__(self, operation: str, state: Any, handle_id: Optional[str] = None):
        self.operation = operation
        self.state = state
        state_name = getattr(state, "value", state)
        super().__init__(
            message=f"Cannot {operation} process {handle_id or '<none>'} in state {state_name}",
            error_type=ErrorType.INVALID_STATE,
            details=[
                ErrorDetail(field="operation", message=operation),
                ErrorDetail(field="state", message=str(state_name)),
            ],
            handle_id=handle_id,
        )


class AttachUnsupported(DockLinkException):
    """Attach requested for channels not declared at creation."""

    def __init__(
        self,
        channels: Iterable[str],
        handle_id: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.channels = sorted(channels)
        super().__init__(
            message=message
            or f"Channels not declared at creation: {', '.join(self.channels)}",
            error_type=ErrorType.ATTACH_UNSUPPORTED,
            details=[ErrorDetail(field=c, message="not declared") for c in self.channels],
            handle_id=handle_id,
        )


class ImagePullFailed(DockLinkException):
    """The engine reported an error while pulling an image."""

    def __init__(self, image: str, message: str):
        self.image = image
        super().__init__(
            message=f"Failed to pull {image}: {message}",
            error_type=ErrorType.PULL_FAILED,
            details=[ErrorDetail(field="image", message=image)],
        )
