"""Pytest configuration and shared fixtures."""

import asyncio
import json
import os
from typing import Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Keep tests independent of the developer's engine settings
os.environ.setdefault("DOCKER_HOST", "tcp://127.0.0.1:2375")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from docklink.config.engine import EngineConfig
from docklink.models.process import AttachFlags, ProcessHandle, ProcessKind, ProcessState
from docklink.services.engine import ContainerAPI, EngineTransport, ImageAPI, RequestHistory
from docklink.services.engine.transport import RawStream
from docklink.services.stream.frames import Channel, encode_frame


TEST_ENGINE = EngineConfig(docker_host="tcp://127.0.0.1:2375", docker_timeout=5.0)
CONTAINER_ID = "3f4e5d6c7b8a90123456789abcdef0123456789abcdef0123456789abcdef01"
EXEC_ID = "e1e2e3e4e5e6e7e8e9e0f1f2f3f4f5f6f7f8f9f0a1a2a3a4a5a6a7a8a9a0b1b2"


def frames(*chunks: Tuple[int, bytes]) -> bytes:
    """Encode (channel, payload) pairs as one multiplexed byte string."""
    return b"".join(encode_frame(Channel(tag), payload) for tag, payload in chunks)


async def chunked(data: bytes, size: int = 1):
    """Async source yielding ``data`` in ``size``-byte chunks."""
    for i in range(0, len(data), size):
        yield data[i:i + size]


def json_response(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode())


class EngineStub:
    """Routes requests to canned responses, keyed by (method, path).

    Paths are matched without the query string. Unrouted requests get
    204 No Content.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: List[httpx.Request] = []

    def on(self, method: str, path: str, payload=None, status_code: int = 200, handler=None):
        if handler is None:
            def handler(request, payload=payload, status_code=status_code):
                if payload is None:
                    return httpx.Response(status_code)
                return json_response(payload, status_code)
        self.routes[(method, path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(204)
        return handler(request)

    def paths(self, method: Optional[str] = None) -> List[str]:
        return [
            r.url.path for r in self.calls if method is None or r.method == method
        ]


def make_writer() -> MagicMock:
    """Stand-in for an asyncio.StreamWriter."""
    writer = MagicMock(spec=asyncio.StreamWriter)
    writer.drain = AsyncMock()
    writer.wait_closed = AsyncMock()
    writer.can_write_eof.return_value = True
    return writer


def make_raw_stream(data: bytes = b"", eof: bool = True) -> RawStream:
    """RawStream over an in-memory reader pre-fed with ``data``."""
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return RawStream(reader, make_writer(), 101, {}, chunk_size=7)


@pytest.fixture
def engine():
    """Fresh request router."""
    return EngineStub()


@pytest.fixture
def history():
    return RequestHistory()


@pytest.fixture
def transport(engine, history):
    """EngineTransport talking to the stub engine."""
    return EngineTransport(
        engine_config=TEST_ENGINE,
        history=history,
        transport=httpx.MockTransport(engine),
    )


@pytest.fixture
def containers(transport):
    return ContainerAPI(transport)


@pytest.fixture
def images(transport):
    return ImageAPI(transport)


@pytest.fixture
def mock_containers():
    """ContainerAPI with every call mocked."""
    api = AsyncMock(spec=ContainerAPI)
    api.create.return_value = {"Id": CONTAINER_ID, "Warnings": []}
    api.wait.return_value = {"StatusCode": 0}
    api.exec_create.return_value = {"Id": EXEC_ID}
    api.inspect.return_value = None
    api.exec_inspect.return_value = None
    return api


@pytest.fixture
def container_handle():
    return ProcessHandle(id=CONTAINER_ID)


@pytest.fixture
def running_container():
    return ProcessHandle(
        id=CONTAINER_ID,
        endpoints=AttachFlags(stdin=True),
        state=ProcessState.RUNNING,
    )


@pytest.fixture
def exec_handle():
    return ProcessHandle(
        id=EXEC_ID,
        kind=ProcessKind.EXEC,
        parent_id=CONTAINER_ID,
    )
