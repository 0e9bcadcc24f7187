"""Container and exec endpoints of the engine API.

These are thin request/response wrappers; lifecycle rules live in the
LifecycleController.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from ...models.process import AttachFlags
from ..stream.demux import DemuxResult, StreamDemuxer
from .transport import EngineTransport, RawStream

logger = structlog.get_logger(__name__)


class ContainerAPI:
    """Calls against /containers, /exec and /commit."""

    def __init__(self, transport: EngineTransport):
        self._transport = transport

    async def create(self, config: Dict[str, Any], name: Optional[str] = None) -> Dict[str, Any]:
        """Create a container.

        Returns:
            The engine's reply, ``{"Id": ..., "Warnings": [...]}``
        """
        response = await self._transport.request(
            "POST", "/containers/create", params={"name": name}, json=config
        )
        return response.json()

    async def inspect(self, container_id: str) -> Optional[Dict[str, Any]]:
        """Low-level container information, or None if it does not exist."""
        response = await self._transport.request_optional(
            "GET", f"/containers/{container_id}/json"
        )
        return response.json() if response is not None else None

    async def list(
        self, all: bool = False, filters: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        response = await self._transport.request(
            "GET", "/containers/json", params={"all": all, "filters": filters}
        )
        return response.json()

    async def start(self, container_id: str) -> None:
        await self._transport.request("POST", f"/containers/{container_id}/start")

    async def stop(self, container_id: str, timeout: Optional[int] = None) -> None:
        # The engine may take the whole grace period before answering
        await self._transport.request(
            "POST",
            f"/containers/{container_id}/stop",
            params={"t": timeout},
            timeout=None,
        )

    async def restart(self, container_id: str, timeout: Optional[int] = None) -> None:
        await self._transport.request(
            "POST",
            f"/containers/{container_id}/restart",
            params={"t": timeout},
            timeout=None,
        )

    async def kill(self, container_id: str, signal: str = "SIGKILL") -> None:
        await self._transport.request(
            "POST", f"/containers/{container_id}/kill", params={"signal": signal}
        )

    async def remove(
        self, container_id: str, volumes: bool = False, force: bool = False
    ) -> None:
        await self._transport.request(
            "DELETE",
            f"/containers/{container_id}",
            params={"v": volumes, "force": force},
        )

    async def wait(self, container_id: str, condition: Optional[str] = None) -> Dict[str, Any]:
        """Block until the container stops; no client-side timeout."""
        response = await self._transport.request(
            "POST",
            f"/containers/{container_id}/wait",
            params={"condition": condition},
            timeout=None,
        )
        return response.json()

    async def export(self, container_id: str) -> AsyncIterator[bytes]:
        """Stream the container filesystem as a tar archive."""
        async with self._transport.stream(
            "GET", f"/containers/{container_id}/export", timeout=None
        ) as response:
            async for chunk in response.aiter_bytes():
                yield chunk

    async def changes(self, container_id: str) -> List[Dict[str, Any]]:
        """Filesystem changes since creation."""
        response = await self._transport.request(
            "GET", f"/containers/{container_id}/changes"
        )
        return response.json() or []

    async def top(self, container_id: str, ps_args: Optional[str] = None) -> List[Dict[str, str]]:
        """Processes running inside the container, one dict per process."""
        response = await self._transport.request(
            "GET", f"/containers/{container_id}/top", params={"ps_args": ps_args}
        )
        data = response.json()
        titles = data.get("Titles") or []
        return [dict(zip(titles, row)) for row in data.get("Processes") or []]

    async def logs(
        self,
        container_id: str,
        stdout: bool = True,
        stderr: bool = True,
        timestamps: bool = False,
        tail: str = "all",
        tty: bool = False,
    ) -> DemuxResult:
        """Fetch the container's logs, split per channel."""
        params = {
            "stdout": stdout,
            "stderr": stderr,
            "timestamps": timestamps,
            "tail": tail,
        }
        async with self._transport.stream(
            "GET", f"/containers/{container_id}/logs", params=params
        ) as response:
            demuxer = StreamDemuxer(
                response.aiter_bytes(), tty=tty, handle_id=container_id
            )
            return await demuxer.drain()

    async def attach_stream(
        self, container_id: str, flags: AttachFlags, logs: bool = False
    ) -> RawStream:
        """Open the hijacked attach stream of a container."""
        params = dict(flags.to_query())
        params["logs"] = logs
        return await self._transport.open_stream(
            "POST", f"/containers/{container_id}/attach", params=params
        )

    async def exec_create(
        self,
        container_id: str,
        command: List[str],
        flags: AttachFlags,
        env: Optional[List[str]] = None,
        workdir: Optional[str] = None,
        user: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create an exec instance; returns ``{"Id": ...}``."""
        config: Dict[str, Any] = {
            "AttachStdin": flags.stdin,
            "AttachStdout": flags.stdout,
            "AttachStderr": flags.stderr,
            "Tty": flags.tty,
            "Cmd": list(command),
        }
        if env:
            config["Env"] = list(env)
        if workdir:
            config["WorkingDir"] = workdir
        if user:
            config["User"] = user
        response = await self._transport.request(
            "POST", f"/containers/{container_id}/exec", json=config
        )
        return response.json()

    async def exec_start(self, exec_id: str, tty: bool = False) -> None:
        """Start an exec instance detached."""
        await self._transport.request(
            "POST", f"/exec/{exec_id}/start", json={"Detach": True, "Tty": tty}
        )

    async def exec_start_stream(self, exec_id: str, tty: bool = False) -> RawStream:
        """Start an exec instance and hijack its output stream."""
        return await self._transport.open_stream(
            "POST", f"/exec/{exec_id}/start", json={"Detach": False, "Tty": tty}
        )

    async def exec_inspect(self, exec_id: str) -> Optional[Dict[str, Any]]:
        response = await self._transport.request_optional("GET", f"/exec/{exec_id}/json")
        return response.json() if response is not None else None

    async def commit(
        self,
        container_id: str,
        repository: Optional[str] = None,
        tag: Optional[str] = None,
        message: Optional[str] = None,
        author: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Create an image from a container; returns ``{"Id": ...}``."""
        params = {
            "container": container_id,
            "repo": repository,
            "tag": tag,
            "comment": message,
            "author": author,
        }
        response = await self._transport.request(
            "POST", "/commit", params=params, json=config or {}
        )
        logger.info(
            "Committed container",
            container_id=container_id[:12],
            repository=repository,
            tag=tag,
        )
        return response.json()
