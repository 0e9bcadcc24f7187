"""DockerClient: one object wiring transport, endpoints and lifecycle."""

from typing import Any, Dict, Optional

import httpx
import structlog

from .config import settings
from .config.engine import EngineConfig
from .config.stream import StreamConfig
from .models.errors import InvalidState
from .models.image import Image
from .models.process import ProcessHandle, ProcessState
from .services.engine import ContainerAPI, EngineTransport, ImageAPI, RequestHistory
from .services.lifecycle import LifecycleController
from .services.wait import WaitCoordinator

logger = structlog.get_logger(__name__)


class DockerClient:
    """Entry point for talking to a container engine.

    Usage:
        async with DockerClient() as client:
            handle = await client.lifecycle.create({"Image": "alpine", "Cmd": ["true"]})
            await client.lifecycle.start(handle)
            outcome = await client.lifecycle.wait(handle, timeout=30)
    """

    def __init__(
        self,
        engine_config: Optional[EngineConfig] = None,
        history: Optional[RequestHistory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connector=None,
        stream_config: Optional[StreamConfig] = None,
    ):
        """Initialize the client.

        Args:
            engine_config: Endpoint settings, defaults to the environment
            history: Records every request sent, useful in tests
            transport: httpx transport override for request/response calls
            connector: Coroutine returning (reader, writer) for hijacked streams
            stream_config: Stream read size, frame cap and exec poll interval,
                defaults to the environment
        """
        self.engine_config = engine_config or settings.engine
        self.stream_config = stream_config or settings.stream
        self.transport = EngineTransport(
            engine_config=self.engine_config,
            history=history,
            transport=transport,
            connector=connector,
            chunk_size=self.stream_config.stream_chunk_size,
        )
        self.containers = ContainerAPI(self.transport)
        self.images = ImageAPI(self.transport)
        self.waiter = WaitCoordinator(
            self.containers, poll_interval=self.stream_config.exec_poll_interval
        )
        self.lifecycle = LifecycleController(
            self.containers,
            waiter=self.waiter,
            stop_grace=self.engine_config.default_stop_grace,
            max_frame_size=self.stream_config.stream_max_frame_size,
        )

    @property
    def history(self) -> RequestHistory:
        return self.transport.history

    async def ping(self) -> bool:
        """True if the engine answers /_ping."""
        try:
            response = await self.transport.request("GET", "/_ping")
        except httpx.HTTPError as e:
            logger.warning("Engine ping failed", error=str(e))
            return False
        return response.text.strip() == "OK"

    async def version(self) -> Dict[str, Any]:
        response = await self.transport.request("GET", "/version")
        return response.json()

    async def info(self) -> Dict[str, Any]:
        response = await self.transport.request("GET", "/info")
        return response.json()

    async def commit(
        self,
        handle: ProcessHandle,
        repository: Optional[str] = None,
        tag: Optional[str] = None,
        message: Optional[str] = None,
        author: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> Image:
        """Snapshot a container into an image."""
        if handle.is_exec or handle.state is ProcessState.REMOVED:
            raise InvalidState("commit", handle.state, handle.id)
        reply = await self.containers.commit(
            handle.id,
            repository=repository,
            tag=tag,
            message=message,
            author=author,
            config=config,
        )
        return Image(repository=repository or "", tag=tag or "latest", id=reply.get("Id"))

    async def close(self) -> None:
        await self.transport.close()

    async def __aenter__(self) -> "DockerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
