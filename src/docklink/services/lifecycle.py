"""Process lifecycle management.

The LifecycleController drives ProcessHandles through

    CREATED -> RUNNING -> EXITED -> REMOVED

and refuses operations the current state does not allow. Stop and kill
only ask the engine to terminate; the handle stays RUNNING until a wait
(or an inspect showing a terminal state) confirms the exit.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import httpx
import structlog

from ..config import settings
from ..models.errors import AttachUnsupported, CreationRejected, InvalidState
from ..models.process import (
    AttachFlags,
    ProcessHandle,
    ProcessKind,
    ProcessState,
    WaitOutcome,
)
from .engine.containers import ContainerAPI
from .stream.demux import OutputSink
from .stream.session import AttachSession
from .wait import WaitCoordinator

logger = structlog.get_logger(__name__)

# Engine replies that mean "this cannot be created", as opposed to
# transport or server failures
_REJECTION_STATUSES = (400, 404, 409)


@dataclass
class RunResult:
    """Outcome of LifecycleController.run."""

    handle: ProcessHandle
    outcome: Optional[WaitOutcome] = None
    session: Optional[AttachSession] = None


def _engine_message(error: httpx.HTTPStatusError) -> str:
    try:
        return error.response.json().get("message") or error.response.text
    except ValueError:
        return error.response.text or str(error)


class LifecycleController:
    """Creates, starts, attaches to, stops and removes processes."""

    def __init__(
        self,
        containers: ContainerAPI,
        waiter: Optional[WaitCoordinator] = None,
        stop_grace: Optional[int] = None,
        max_frame_size: Optional[int] = None,
    ):
        """Initialize the controller.

        Args:
            containers: Container/exec endpoints
            waiter: Wait coordinator, created over ``containers`` if omitted
            stop_grace: Default seconds before stop/restart escalate to a kill
            max_frame_size: Largest frame accepted on attach streams
        """
        self._containers = containers
        self._waiter = waiter or WaitCoordinator(containers)
        self._stop_grace = stop_grace if stop_grace is not None else settings.default_stop_grace
        self._max_frame_size = max_frame_size

    @property
    def waiter(self) -> WaitCoordinator:
        return self._waiter

    @staticmethod
    def _require(
        handle: Optional[ProcessHandle], operation: str, allowed: Iterable[ProcessState]
    ) -> None:
        if handle is None:
            raise InvalidState(operation, "uncreated")
        if not handle.in_state(allowed):
            raise InvalidState(operation, handle.state, handle.id)

    @staticmethod
    def _require_container(handle: ProcessHandle, operation: str) -> None:
        if handle.is_exec:
            raise InvalidState(operation, "exec", handle.id)

    async def create(
        self, spec: Dict[str, Any], name: Optional[str] = None
    ) -> ProcessHandle:
        """Create a container from ``spec`` (the engine's create body).

        Raises:
            CreationRejected: the engine refused the create body (unknown image,
                invalid config, name conflict); never retried
        """
        try:
            reply = await self._containers.create(spec, name=name)
        except httpx.HTTPStatusError as e:
            if e.response.status_code not in _REJECTION_STATUSES:
                raise
            message = _engine_message(e)
            logger.warning(
                "Container creation rejected",
                image=spec.get("Image"),
                status_code=e.response.status_code,
                error=message,
            )
            raise CreationRejected(
                f"Engine rejected container config: {message}",
                status_code=e.response.status_code,
                image=spec.get("Image"),
            ) from e

        for warning in reply.get("Warnings") or []:
            logger.warning("Engine warning on create", warning=warning)

        handle = ProcessHandle(
            id=reply["Id"],
            kind=ProcessKind.CONTAINER,
            endpoints=AttachFlags.from_config(spec),
            name=name,
            spec=dict(spec),
        )
        logger.info(
            "Created container",
            handle_id=handle.short_id,
            image=spec.get("Image"),
            tty=handle.endpoints.tty,
        )
        return handle

    def _check_channels(self, handle: ProcessHandle, flags: Optional[AttachFlags]) -> AttachFlags:
        requested = flags or handle.endpoints
        missing = handle.endpoints.missing(requested)
        if missing:
            raise AttachUnsupported(missing, handle_id=handle.id)
        return requested

    async def _open_session(
        self, handle: ProcessHandle, flags: Optional[AttachFlags], logs: bool = False
    ) -> AttachSession:
        requested = self._check_channels(handle, flags)
        if handle.is_exec:
            stream = await self._containers.exec_start_stream(
                handle.id, tty=handle.endpoints.tty
            )
        else:
            stream = await self._containers.attach_stream(handle.id, requested, logs=logs)
        # Framing is fixed by how the process was created, not by the request
        session = AttachSession(
            handle, stream, tty=handle.endpoints.tty, max_frame_size=self._max_frame_size
        )
        logger.debug(
            "Attach session opened",
            handle_id=handle.short_id,
            kind=handle.kind.value,
            channels=sorted(requested.channels),
            tty=session.tty,
        )
        return session

    async def start(
        self,
        handle: ProcessHandle,
        sink: Optional[OutputSink] = None,
        flags: Optional[AttachFlags] = None,
    ) -> Optional[AttachSession]:
        """Start a created (or exited) process.

        With a sink, the attach stream is opened before the start request
        so no early output is lost, and output is pumped into the sink.

        Returns:
            The live AttachSession when a sink was given
        """
        allowed = (
            (ProcessState.CREATED,)
            if handle.is_exec
            else (ProcessState.CREATED, ProcessState.EXITED)
        )
        async with handle.lock:
            self._require(handle, "start", allowed)
            session = None
            if sink is not None:
                session = await self._open_session(handle, flags)
                session.run(sink)
            try:
                if handle.is_exec:
                    if session is None:
                        await self._containers.exec_start(handle.id, tty=handle.endpoints.tty)
                else:
                    await self._containers.start(handle.id)
            except BaseException:
                if session is not None:
                    await session.close()
                raise

            if handle.state is ProcessState.EXITED:
                handle.reset_run()
            handle.state = ProcessState.RUNNING

        logger.info(
            "Started process",
            handle_id=handle.short_id,
            kind=handle.kind.value,
            attached=session is not None,
        )
        return session

    async def attach(
        self,
        handle: ProcessHandle,
        sink: Optional[OutputSink] = None,
        flags: Optional[AttachFlags] = None,
        logs: bool = False,
    ) -> AttachSession:
        """Open an attach session.

        For exec instances the engine only offers output when the exec
        starts, so attaching a created exec starts it.

        Raises:
            AttachUnsupported: a requested channel was not declared at
                creation, or the exec is already running
        """
        async with handle.lock:
            self._require(handle, "attach", (ProcessState.CREATED, ProcessState.RUNNING))
            if handle.is_exec:
                if handle.state is not ProcessState.CREATED:
                    raise AttachUnsupported(
                        [],
                        handle_id=handle.id,
                        message="Exec output can only be attached when the exec starts",
                    )
                session = await self._open_session(handle, flags)
                handle.state = ProcessState.RUNNING
            else:
                session = await self._open_session(handle, flags, logs=logs)

        if sink is not None:
            session.run(sink)
        return session

    async def interact(
        self, handle: ProcessHandle, sink: Optional[OutputSink] = None
    ) -> AttachSession:
        """Attach with every declared channel, stdin included."""
        return await self.attach(handle, sink=sink, flags=handle.endpoints)

    async def stop(self, handle: ProcessHandle, grace_period: Optional[int] = None) -> None:
        """Ask the engine to stop the container; does not wait for exit."""
        self._require(handle, "stop", (ProcessState.RUNNING,))
        self._require_container(handle, "stop")
        grace = grace_period if grace_period is not None else self._stop_grace
        await self._containers.stop(handle.id, timeout=grace)
        logger.info("Stop requested", handle_id=handle.short_id, grace_period=grace)

    async def kill(self, handle: ProcessHandle, signal: str = "SIGKILL") -> None:
        """Send a signal to the container; does not wait for exit."""
        self._require(handle, "kill", (ProcessState.RUNNING,))
        self._require_container(handle, "kill")
        await self._containers.kill(handle.id, signal=signal)
        logger.info("Kill requested", handle_id=handle.short_id, signal=signal)

    async def restart(self, handle: ProcessHandle, grace_period: Optional[int] = None) -> None:
        """Restart the container; a new run begins."""
        grace = grace_period if grace_period is not None else self._stop_grace
        async with handle.lock:
            self._require(handle, "restart", (ProcessState.RUNNING, ProcessState.EXITED))
            self._require_container(handle, "restart")
            await self._containers.restart(handle.id, timeout=grace)
            handle.reset_run()
            handle.state = ProcessState.RUNNING
        logger.info("Restarted container", handle_id=handle.short_id, grace_period=grace)

    async def remove(
        self, handle: ProcessHandle, purge_volumes: bool = False
    ) -> None:
        """Remove a process that is not running.

        Exec instances are cleaned up by the engine with their container,
        so removing one only retires the local handle.

        Raises:
            InvalidState: the handle is RUNNING (stop or kill it first)
        """
        async with handle.lock:
            self._require(handle, "remove", (ProcessState.CREATED, ProcessState.EXITED))
            if not handle.is_exec:
                await self._containers.remove(handle.id, volumes=purge_volumes)
            handle.state = ProcessState.REMOVED
        logger.info(
            "Removed process",
            handle_id=handle.short_id,
            kind=handle.kind.value,
            purge_volumes=purge_volumes,
        )

    async def exec(
        self,
        handle: ProcessHandle,
        command: List[str],
        flags: Optional[AttachFlags] = None,
        env: Optional[List[str]] = None,
        workdir: Optional[str] = None,
        user: Optional[str] = None,
    ) -> ProcessHandle:
        """Create an exec instance inside a running container.

        Returns:
            A new CREATED handle of kind EXEC; start or attach it to run

        Raises:
            CreationRejected: the engine refused the exec
        """
        self._require(handle, "exec", (ProcessState.RUNNING,))
        self._require_container(handle, "exec")
        flags = flags or AttachFlags()
        try:
            reply = await self._containers.exec_create(
                handle.id, command, flags, env=env, workdir=workdir, user=user
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code not in _REJECTION_STATUSES:
                raise
            raise CreationRejected(
                f"Engine rejected exec: {_engine_message(e)}",
                status_code=e.response.status_code,
                handle_id=handle.id,
            ) from e

        exec_handle = ProcessHandle(
            id=reply["Id"],
            kind=ProcessKind.EXEC,
            endpoints=flags,
            parent_id=handle.id,
            spec={"Cmd": list(command)},
        )
        logger.info(
            "Created exec instance",
            handle_id=exec_handle.short_id,
            parent_id=handle.short_id,
            command=command,
        )
        return exec_handle

    async def inspect(self, handle: ProcessHandle) -> Optional[Dict[str, Any]]:
        """Refresh runtime information from the engine.

        A RUNNING handle that the engine reports as finished is moved to
        EXITED with the reported exit code.

        Returns:
            The inspect payload, or None if the engine no longer knows it
        """
        self._require(
            handle,
            "inspect",
            (ProcessState.CREATED, ProcessState.RUNNING, ProcessState.EXITED),
        )
        if handle.is_exec:
            info = await self._containers.exec_inspect(handle.id)
        else:
            info = await self._containers.inspect(handle.id)
        if info is None:
            return None

        async with handle.lock:
            handle.runtime_info = info
            exit_code = self._terminal_exit_code(handle, info)
            if (
                exit_code is not None
                and handle.state is ProcessState.RUNNING
                and handle.record_exit(exit_code)
            ):
                logger.info(
                    "Process exit observed on inspect",
                    handle_id=handle.short_id,
                    exit_code=exit_code,
                )
        return info

    @staticmethod
    def _terminal_exit_code(handle: ProcessHandle, info: Dict[str, Any]) -> Optional[int]:
        if handle.is_exec:
            if not info.get("Running") and info.get("ExitCode") is not None:
                return int(info["ExitCode"])
            return None
        state = info.get("State") or {}
        if state.get("Running") or state.get("Status") not in ("exited", "dead"):
            return None
        return int(state.get("ExitCode", 0))

    async def wait(
        self, handle: Optional[ProcessHandle], timeout: Optional[float] = None
    ) -> WaitOutcome:
        """See WaitCoordinator.wait.

        When the wait observes the exit, runtime information is refreshed
        so ``handle.runtime_info`` reflects the finished process.
        """
        was_exited = handle is not None and handle.state is ProcessState.EXITED
        outcome = await self._waiter.wait(handle, timeout)
        if not outcome.timed_out and not was_exited and handle.state is ProcessState.EXITED:
            await self.inspect(handle)
        return outcome

    async def run(
        self,
        spec: Dict[str, Any],
        sink: Optional[OutputSink] = None,
        daemon: bool = False,
        timeout: Optional[float] = None,
        name: Optional[str] = None,
    ) -> RunResult:
        """Create and start a container, optionally attached, and wait.

        Args:
            spec: Container create body
            sink: Receives output; attaching happens before the start
            daemon: Return right after starting instead of waiting
            timeout: Bound on the wait in seconds
            name: Container name
        """
        handle = await self.create(spec, name=name)
        session = await self.start(handle, sink=sink)
        result = RunResult(handle=handle, session=session)
        if daemon:
            return result

        result.outcome = await self.wait(handle, timeout)
        if session is not None and not result.outcome.timed_out:
            await session.wait()
        return result
