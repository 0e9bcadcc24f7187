"""Engine API access.

This package provides the request/response side of the engine API:
- transport.py: httpx client, hijacked raw streams and request history
- containers.py: container and exec endpoints
- images.py: image endpoints
"""

from .transport import EngineTransport, RawStream, RequestHistory, encode_params
from .containers import ContainerAPI
from .images import ImageAPI

__all__ = [
    "EngineTransport",
    "RawStream",
    "RequestHistory",
    "encode_params",
    "ContainerAPI",
    "ImageAPI",
]
