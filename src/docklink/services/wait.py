"""Blocking waits for process exit.

Containers are waited on with the engine's wait endpoint. Exec instances
have no such endpoint, so their exit is detected by polling exec inspect.
Either way the wait is bounded locally with ``asyncio.wait_for``; hitting
the timeout only abandons the local request, the remote process keeps
running.
"""

import asyncio
import time
from typing import Optional

import structlog

from ..config import settings
from ..models.errors import DockLinkException, InvalidState
from ..models.process import ProcessHandle, ProcessState, WaitOutcome
from .engine.containers import ContainerAPI

logger = structlog.get_logger(__name__)


class WaitCoordinator:
    """Waits for process handles to exit."""

    def __init__(self, containers: ContainerAPI, poll_interval: Optional[float] = None):
        """Initialize the coordinator.

        Args:
            containers: Container/exec endpoints
            poll_interval: Seconds between exec inspect calls
        """
        self._containers = containers
        self._poll_interval = poll_interval or settings.exec_poll_interval

    async def wait(
        self, handle: Optional[ProcessHandle], timeout: Optional[float] = None
    ) -> WaitOutcome:
        """Block until the process exits or ``timeout`` seconds pass.

        Returns:
            WaitOutcome with the exit code, or ``timed_out=True`` and no
            exit code; the handle is left untouched on timeout, and also
            when it was restarted before the exit arrived

        Raises:
            InvalidState: no handle yet, or the handle was removed
        """
        if handle is None or not handle.id:
            raise InvalidState("wait", "uncreated")
        if handle.state is ProcessState.REMOVED:
            raise InvalidState("wait", handle.state, handle.id)
        if handle.state is ProcessState.EXITED and handle.exit_code is not None:
            return WaitOutcome(exit_code=handle.exit_code)

        run = handle.run
        start_time = time.perf_counter()
        try:
            exit_code = await asyncio.wait_for(self._wait_remote(handle), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Wait timed out",
                handle_id=handle.short_id,
                kind=handle.kind.value,
                timeout=timeout,
            )
            return WaitOutcome(timed_out=True)

        async with handle.lock:
            if handle.run != run:
                # Restarted while waiting; this exit belongs to the old run
                logger.debug(
                    "Discarding exit of a previous run",
                    handle_id=handle.short_id,
                    exit_code=exit_code,
                )
                return WaitOutcome(exit_code=exit_code)
            if handle.state is not ProcessState.REMOVED and handle.record_exit(exit_code):
                elapsed_ms = (time.perf_counter() - start_time) * 1000
                logger.info(
                    "Process exited",
                    handle_id=handle.short_id,
                    kind=handle.kind.value,
                    exit_code=exit_code,
                    waited_ms=f"{elapsed_ms:.1f}",
                )
            recorded = handle.exit_code if handle.exit_code is not None else exit_code
        return WaitOutcome(exit_code=recorded)

    async def _wait_remote(self, handle: ProcessHandle) -> int:
        if handle.is_exec:
            return await self._poll_exec(handle)

        # A created container is "not running" already; wait for its first exit
        condition = "next-exit" if handle.state is ProcessState.CREATED else None
        reply = await self._containers.wait(handle.id, condition=condition)
        error = reply.get("Error") or {}
        if error.get("Message"):
            logger.warning(
                "Engine reported an error while waiting",
                handle_id=handle.short_id,
                error=error["Message"],
            )
        return int(reply["StatusCode"])

    async def _poll_exec(self, handle: ProcessHandle) -> int:
        while True:
            info = await self._containers.exec_inspect(handle.id)
            if info is None:
                raise DockLinkException(
                    f"Exec instance {handle.short_id} no longer exists",
                    handle_id=handle.id,
                )
            if not info.get("Running") and info.get("ExitCode") is not None:
                return int(info["ExitCode"])
            await asyncio.sleep(self._poll_interval)
