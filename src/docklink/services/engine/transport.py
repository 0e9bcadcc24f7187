"""HTTP transport to the engine.

Ordinary request/response calls go through an ``httpx.AsyncClient``.
Attach and exec start need the engine's connection hijack: the HTTP
connection turns into a raw duplex byte stream after the response
headers. httpx only hands the socket over (``network_stream``) for a
``101 Switching Protocols`` reply, while the engine may also answer a
hijack with ``200 OK`` and then stream without a body length. Those
calls therefore open a dedicated socket and speak HTTP/1.1 by hand up
to the end of the response headers, accepting either status.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import httpx
import structlog

from ...config import settings
from ...config.engine import EngineConfig
from ..stream.demux import read_chunks

logger = structlog.get_logger(__name__)

Connector = Callable[[], Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class RequestHistory:
    """Records every request sent through a transport.

    Passed into the transport explicitly; tests use it to assert on the
    exact calls made.
    """

    def __init__(self):
        self._requests: List[httpx.Request] = []

    async def record(self, request: httpx.Request) -> None:
        self._requests.append(request)

    def add(self, request: httpx.Request) -> None:
        self._requests.append(request)

    @property
    def requests(self) -> List[httpx.Request]:
        return list(self._requests)

    @property
    def last_request(self) -> Optional[httpx.Request]:
        return self._requests[-1] if self._requests else None

    @property
    def count(self) -> int:
        return len(self._requests)

    def clear(self) -> None:
        self._requests.clear()


def encode_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Drop None values and encode booleans as 1/0."""
    if not params:
        return None
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = int(value)
        encoded[key] = value
    return encoded


class RawStream:
    """A hijacked engine connection carrying raw stream bytes both ways."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        status_code: int,
        headers: Dict[str, str],
        chunk_size: Optional[int] = None,
    ):
        self.reader = reader
        self.writer = writer
        self.status_code = status_code
        self.headers = headers
        self._chunk_size = chunk_size or settings.stream_chunk_size
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def chunks(self) -> AsyncIterator[bytes]:
        """Async iterator over incoming bytes until the engine closes."""
        return read_chunks(self.reader, self._chunk_size)

    async def write(self, data: bytes) -> None:
        """Send bytes to the process's stdin."""
        if self._closed:
            raise ConnectionError("Stream is closed")
        self.writer.write(data)
        await self.writer.drain()

    async def close_write(self) -> None:
        """Half-close: the process sees EOF on stdin, output keeps flowing."""
        if not self._closed and self.writer.can_write_eof():
            self.writer.write_eof()
            await self.writer.drain()

    async def close(self) -> None:
        """Close the connection; pending reads see EOF."""
        if self._closed:
            return
        self._closed = True
        self.reader.feed_eof()
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error while closing raw stream", error=str(e))


async def _read_status_line(reader: asyncio.StreamReader) -> int:
    line = await reader.readline()
    if not line:
        raise httpx.RemoteProtocolError("Engine closed the connection: empty response")
    parts = line.decode("latin-1").split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
        raise httpx.RemoteProtocolError(f"Engine sent a malformed status line: {line!r}")
    return int(parts[1])


async def _read_headers(reader: asyncio.StreamReader) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    while True:
        line = await reader.readline()
        if line in (b"\r\n", b"\n", b""):
            return headers
        key, _, value = line.decode("latin-1").partition(":")
        headers[key.strip().lower()] = value.strip()


class EngineTransport:
    """Sends requests to the engine and opens raw streams."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        history: Optional[RequestHistory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connector: Optional[Connector] = None,
        engine_config: Optional[EngineConfig] = None,
        chunk_size: Optional[int] = None,
    ):
        """Initialize the transport.

        Args:
            base_url: Base URL for requests (derived from DOCKER_HOST by default)
            timeout: Timeout for request/response calls in seconds
            history: Optional recorder for every request sent
            transport: httpx transport override (tests use httpx.MockTransport)
            connector: Opens the socket for hijacked streams
            engine_config: Engine settings, defaults to the global settings
            chunk_size: Read size for hijacked streams
        """
        self._config = engine_config or settings.engine
        self.base_url = base_url or self._config.get_base_url()
        self.timeout = timeout or self._config.docker_timeout
        self.history = history
        self._connector = connector
        self._chunk_size = chunk_size

        if transport is None and self._config.is_unix_socket:
            transport = httpx.AsyncHTTPTransport(uds=self._config.socket_path)

        event_hooks = {"request": [history.record]} if history else None
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            timeout=httpx.Timeout(timeout=float(self.timeout)),
            event_hooks=event_hooks,
        )

        logger.debug(
            "Initialized engine transport",
            base_url=self.base_url,
            timeout=self.timeout,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        timeout: Any = httpx.USE_CLIENT_DEFAULT,
    ) -> httpx.Response:
        """Send one request and return the buffered response.

        Raises:
            httpx.HTTPStatusError: non-2xx response
            httpx.HTTPError: transport failures
        """
        response = await self._client.request(
            method,
            path,
            params=encode_params(params),
            json=json,
            content=content,
            timeout=timeout,
        )
        logger.debug(
            "Engine request",
            method=method,
            path=path,
            status_code=response.status_code,
        )
        response.raise_for_status()
        return response

    async def request_optional(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[httpx.Response]:
        """Like ``request`` but a 404 yields None instead of an error."""
        response = await self._client.request(method, path, params=encode_params(params))
        logger.debug(
            "Engine request",
            method=method,
            path=path,
            status_code=response.status_code,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        timeout: Any = httpx.USE_CLIENT_DEFAULT,
    ) -> AsyncIterator[httpx.Response]:
        """Send a request and yield the response with an unread body."""
        async with self._client.stream(
            method,
            path,
            params=encode_params(params),
            json=json,
            timeout=timeout,
        ) as response:
            logger.debug(
                "Engine stream opened",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            if response.is_error:
                await response.aread()
                response.raise_for_status()
            yield response

    async def _connect(self) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self._connector is not None:
            return await self._connector()
        if self._config.is_unix_socket:
            return await asyncio.open_unix_connection(self._config.socket_path)
        url = urlsplit(self.base_url)
        port = url.port or (443 if url.scheme == "https" else 80)
        return await asyncio.open_connection(
            url.hostname, port, ssl=url.scheme == "https" or None
        )

    async def open_stream(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> RawStream:
        """Send a request asking the engine to hijack the connection.

        Returns:
            RawStream positioned at the first byte after the response headers

        Raises:
            httpx.HTTPStatusError: the engine answered with anything other
                than 101 or 200
        """
        request = self._client.build_request(
            method,
            path,
            params=encode_params(params),
            json=json,
            headers={"Connection": "Upgrade", "Upgrade": "tcp"},
        )
        if self.history is not None:
            self.history.add(request)

        reader, writer = await self._connect()
        try:
            writer.write(self._serialize(request))
            await writer.drain()
            status_code = await _read_status_line(reader)
            headers = await _read_headers(reader)
        except BaseException:
            writer.close()
            raise

        if status_code not in (101, 200):
            try:
                length = int(headers.get("content-length", "0"))
                body = await reader.readexactly(length) if length else b""
            finally:
                writer.close()
            response = httpx.Response(
                status_code, headers=headers, content=body, request=request
            )
            response.raise_for_status()

        logger.debug(
            "Engine stream hijacked",
            method=method,
            path=path,
            status_code=status_code,
        )
        return RawStream(
            reader, writer, status_code, headers, chunk_size=self._chunk_size
        )

    @staticmethod
    def _serialize(request: httpx.Request) -> bytes:
        target = request.url.raw_path.decode("ascii")
        lines = [f"{request.method} {target} HTTP/1.1"]
        body = request.content
        headers = dict(request.headers)
        headers["content-length"] = str(len(body))
        for key, value in headers.items():
            lines.append(f"{key}: {value}")
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
