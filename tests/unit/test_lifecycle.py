"""Unit tests for LifecycleController."""

import asyncio

import httpx
import pytest

from docklink.models.errors import AttachUnsupported, CreationRejected, InvalidState
from docklink.models.process import AttachFlags, ProcessKind, ProcessState
from docklink.services.lifecycle import LifecycleController
from docklink.services.stream.demux import BufferingSink
from docklink.services.wait import WaitCoordinator

from conftest import CONTAINER_ID, EXEC_ID, frames, make_raw_stream


def status_error(status_code: int, message: str) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://docker/containers/create")
    response = httpx.Response(status_code, json={"message": message}, request=request)
    return httpx.HTTPStatusError(message, request=request, response=response)


@pytest.fixture
def controller(mock_containers):
    waiter = WaitCoordinator(mock_containers, poll_interval=0.001)
    return LifecycleController(mock_containers, waiter=waiter, stop_grace=7)


class TestCreate:
    """Test container creation."""

    @pytest.mark.asyncio
    async def test_create_returns_created_handle(self, controller, mock_containers):
        spec = {"Image": "ubuntu", "Cmd": ["echo", "hi"], "AttachStdin": True, "Tty": True}

        handle = await controller.create(spec, name="web")

        assert handle.id == CONTAINER_ID
        assert handle.state is ProcessState.CREATED
        assert handle.kind is ProcessKind.CONTAINER
        assert handle.endpoints == AttachFlags(stdin=True, stdout=True, stderr=True, tty=True)
        assert handle.exit_code is None
        mock_containers.create.assert_awaited_once_with(spec, name="web")

    @pytest.mark.asyncio
    async def test_create_rejected(self, controller, mock_containers):
        """Test engine refusal becomes CreationRejected with no handle."""
        mock_containers.create.side_effect = status_error(404, "No such image: nope:latest")

        with pytest.raises(CreationRejected) as exc_info:
            await controller.create({"Image": "nope"})

        error = exc_info.value
        assert error.handle_id is None
        assert error.status_code == 404
        assert error.image == "nope"
        assert "No such image" in error.message
        assert mock_containers.create.await_count == 1

    @pytest.mark.asyncio
    async def test_server_error_propagates(self, controller, mock_containers):
        mock_containers.create.side_effect = status_error(500, "daemon broke")
        with pytest.raises(httpx.HTTPStatusError):
            await controller.create({"Image": "ubuntu"})

    def test_handle_id_is_immutable(self, container_handle):
        with pytest.raises(AttributeError):
            container_handle.id = "other"


class TestStart:
    """Test starting processes."""

    @pytest.mark.asyncio
    async def test_start_without_sink(self, controller, mock_containers, container_handle):
        session = await controller.start(container_handle)

        assert session is None
        assert container_handle.state is ProcessState.RUNNING
        mock_containers.start.assert_awaited_once_with(CONTAINER_ID)
        mock_containers.attach_stream.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_attach_happens_before_start(self, controller, mock_containers, container_handle):
        """Test output produced right after start reaches the sink."""
        order = []

        async def attach_stream(*args, **kwargs):
            order.append("attach")
            return make_raw_stream(frames((1, b"hello world\n")))

        async def start(*args, **kwargs):
            order.append("start")

        mock_containers.attach_stream.side_effect = attach_stream
        mock_containers.start.side_effect = start
        sink = BufferingSink()

        session = await controller.start(container_handle, sink=sink)
        await session.wait()

        assert order == ["attach", "start"]
        assert sink.result.stdout_text() == "hello world\n"

    @pytest.mark.asyncio
    async def test_start_running_is_invalid(self, controller, running_container):
        with pytest.raises(InvalidState):
            await controller.start(running_container)

    @pytest.mark.asyncio
    async def test_restart_from_exited_clears_exit_code(
        self, controller, mock_containers, container_handle
    ):
        container_handle.record_exit(3)

        await controller.start(container_handle)

        assert container_handle.state is ProcessState.RUNNING
        assert container_handle.exit_code is None

    @pytest.mark.asyncio
    async def test_failed_start_closes_session(self, controller, mock_containers, container_handle):
        stream = make_raw_stream(eof=False)
        mock_containers.attach_stream.return_value = stream
        mock_containers.start.side_effect = status_error(500, "cannot start")

        with pytest.raises(httpx.HTTPStatusError):
            await controller.start(container_handle, sink=BufferingSink())

        assert stream.closed
        assert container_handle.state is ProcessState.CREATED


class TestAttach:
    """Test attaching to processes."""

    @pytest.mark.asyncio
    async def test_attach_undeclared_stdin(self, controller, mock_containers, container_handle):
        """Test channels not declared at creation are refused."""
        with pytest.raises(AttachUnsupported) as exc_info:
            await controller.attach(container_handle, flags=AttachFlags(stdin=True))

        assert exc_info.value.channels == ["stdin"]
        mock_containers.attach_stream.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_attach_running_drains(self, controller, mock_containers, running_container):
        mock_containers.attach_stream.return_value = make_raw_stream(
            frames((1, b"out"), (2, b"err"))
        )

        session = await controller.attach(running_container, logs=True)
        result = await session.drain()

        assert result.stdout == [b"out"]
        assert result.stderr == [b"err"]
        mock_containers.attach_stream.assert_awaited_once_with(
            CONTAINER_ID, running_container.endpoints, logs=True
        )

    @pytest.mark.asyncio
    async def test_tty_follows_creation(self, controller, mock_containers, container_handle):
        """Test the session framing comes from the handle, not the request."""
        container_handle.endpoints = AttachFlags(tty=True)
        mock_containers.attach_stream.return_value = make_raw_stream(b"raw")

        session = await controller.attach(container_handle, flags=AttachFlags(tty=False))

        assert session.tty is True
        assert (await session.drain()).tty_bytes() == b"raw"

    @pytest.mark.asyncio
    async def test_interact_uses_all_channels(self, controller, mock_containers, running_container):
        mock_containers.attach_stream.return_value = make_raw_stream(eof=False)

        session = await controller.interact(running_container)
        await session.write(b"ls\n")
        await session.close()

        flags = mock_containers.attach_stream.await_args.args[1]
        assert flags.stdin is True

    @pytest.mark.asyncio
    async def test_attach_exited_is_invalid(self, controller, container_handle):
        container_handle.record_exit(0)
        with pytest.raises(InvalidState):
            await controller.attach(container_handle)

    @pytest.mark.asyncio
    async def test_live_output_while_waiting(self, controller, mock_containers, running_container):
        """Test output reaches the sink before the wait for exit returns."""
        stream = make_raw_stream(eof=False)
        mock_containers.attach_stream.return_value = stream
        exited = asyncio.Event()

        async def wait(*args, **kwargs):
            await exited.wait()
            return {"StatusCode": 0}

        mock_containers.wait.side_effect = wait
        sink = BufferingSink()

        session = await controller.attach(running_container, sink=sink)
        waiting = asyncio.create_task(controller.wait(running_container, timeout=5))

        stream.reader.feed_data(frames((1, b"hello ")))
        await asyncio.sleep(0.01)
        assert sink.result.stdout == [b"hello "]
        assert not waiting.done()

        stream.reader.feed_data(frames((1, b"world")))
        stream.reader.feed_eof()
        await session.wait()
        exited.set()
        outcome = await waiting

        assert sink.result.stdout == [b"hello ", b"world"]
        assert outcome.exit_code == 0
        assert running_container.state is ProcessState.EXITED


class TestStopKillRestart:
    """Test termination requests."""

    @pytest.mark.asyncio
    async def test_stop_uses_default_grace(self, controller, mock_containers, running_container):
        """Test stop only asks the engine; the handle waits for confirmation."""
        await controller.stop(running_container)

        mock_containers.stop.assert_awaited_once_with(CONTAINER_ID, timeout=7)
        assert running_container.state is ProcessState.RUNNING

    @pytest.mark.asyncio
    async def test_stop_then_wait(self, controller, mock_containers, running_container):
        mock_containers.wait.return_value = {"StatusCode": 143}

        await controller.stop(running_container, grace_period=1)
        outcome = await controller.wait(running_container, timeout=5)

        assert outcome.exit_code == 143
        assert running_container.state is ProcessState.EXITED

    @pytest.mark.asyncio
    async def test_stop_created_is_invalid(self, controller, container_handle):
        with pytest.raises(InvalidState):
            await controller.stop(container_handle)

    @pytest.mark.asyncio
    async def test_kill_sends_signal(self, controller, mock_containers, running_container):
        await controller.kill(running_container, signal="SIGINT")
        mock_containers.kill.assert_awaited_once_with(CONTAINER_ID, signal="SIGINT")

    @pytest.mark.asyncio
    async def test_restart_resets_run(self, controller, mock_containers, container_handle):
        container_handle.record_exit(1)

        await controller.restart(container_handle)

        assert container_handle.state is ProcessState.RUNNING
        assert container_handle.exit_code is None
        mock_containers.restart.assert_awaited_once_with(CONTAINER_ID, timeout=7)

    @pytest.mark.asyncio
    async def test_restart_during_wait_keeps_new_run(
        self, controller, mock_containers, running_container
    ):
        """Test an exit reported for the previous run is not recorded after a restart."""
        released = asyncio.Event()

        async def wait(*args, **kwargs):
            await released.wait()
            return {"StatusCode": 137}

        mock_containers.wait.side_effect = wait
        waiting = asyncio.create_task(controller.wait(running_container, timeout=5))
        await asyncio.sleep(0.01)

        await controller.restart(running_container)
        released.set()
        outcome = await waiting

        assert outcome.exit_code == 137
        assert running_container.state is ProcessState.RUNNING
        assert running_container.exit_code is None
        assert running_container.run == 1

    @pytest.mark.asyncio
    async def test_stop_exec_is_invalid(self, controller, exec_handle):
        exec_handle.state = ProcessState.RUNNING
        with pytest.raises(InvalidState):
            await controller.stop(exec_handle)


class TestRemove:
    """Test removal rules."""

    @pytest.mark.asyncio
    async def test_remove_running_is_invalid(self, controller, mock_containers, running_container):
        """Test a running container must be stopped first."""
        with pytest.raises(InvalidState) as exc_info:
            await controller.remove(running_container)

        assert exc_info.value.operation == "remove"
        assert exc_info.value.state is ProcessState.RUNNING
        assert running_container.state is ProcessState.RUNNING
        mock_containers.remove.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_exited(self, controller, mock_containers, running_container):
        running_container.record_exit(0)

        await controller.remove(running_container, purge_volumes=True)

        assert running_container.state is ProcessState.REMOVED
        mock_containers.remove.assert_awaited_once_with(CONTAINER_ID, volumes=True)

    @pytest.mark.asyncio
    async def test_remove_created(self, controller, mock_containers, container_handle):
        await controller.remove(container_handle)
        assert container_handle.state is ProcessState.REMOVED

    @pytest.mark.asyncio
    async def test_removed_rejects_everything(self, controller, container_handle):
        await controller.remove(container_handle)

        with pytest.raises(InvalidState):
            await controller.start(container_handle)
        with pytest.raises(InvalidState):
            await controller.wait(container_handle)
        with pytest.raises(InvalidState):
            await controller.remove(container_handle)


class TestExec:
    """Test exec instances."""

    @pytest.mark.asyncio
    async def test_exec_creates_child_handle(self, controller, mock_containers, running_container):
        exec_handle = await controller.exec(running_container, ["ls"], env=["X=1"])

        assert exec_handle.id == EXEC_ID
        assert exec_handle.kind is ProcessKind.EXEC
        assert exec_handle.parent_id == CONTAINER_ID
        assert exec_handle.state is ProcessState.CREATED
        mock_containers.exec_create.assert_awaited_once_with(
            CONTAINER_ID, ["ls"], AttachFlags(), env=["X=1"], workdir=None, user=None
        )

    @pytest.mark.asyncio
    async def test_exec_requires_running_parent(self, controller, container_handle):
        with pytest.raises(InvalidState):
            await controller.exec(container_handle, ["ls"])

    @pytest.mark.asyncio
    async def test_exec_rejected(self, controller, mock_containers, running_container):
        mock_containers.exec_create.side_effect = status_error(409, "container is paused")
        with pytest.raises(CreationRejected):
            await controller.exec(running_container, ["ls"])

    @pytest.mark.asyncio
    async def test_exec_output_and_exit_are_independent(
        self, controller, mock_containers, running_container
    ):
        """Test an exec's output and exit code do not touch the parent."""
        mock_containers.exec_start_stream.return_value = make_raw_stream(
            frames((1, b"from exec\n"))
        )
        mock_containers.exec_inspect.return_value = {"Running": False, "ExitCode": 5}
        exec_handle = await controller.exec(running_container, ["sh", "-c", "exit 5"])
        sink = BufferingSink()

        session = await controller.start(exec_handle, sink=sink)
        await session.wait()
        outcome = await controller.wait(exec_handle, timeout=5)

        assert sink.result.stdout_text() == "from exec\n"
        assert outcome.exit_code == 5
        assert exec_handle.state is ProcessState.EXITED
        assert running_container.state is ProcessState.RUNNING
        assert running_container.exit_code is None
        mock_containers.exec_start.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exec_start_detached(self, controller, mock_containers, running_container):
        exec_handle = await controller.exec(running_container, ["true"])
        await controller.start(exec_handle)
        mock_containers.exec_start.assert_awaited_once_with(EXEC_ID, tty=False)
        assert exec_handle.state is ProcessState.RUNNING

    @pytest.mark.asyncio
    async def test_exec_attach_once(self, controller, mock_containers, running_container):
        mock_containers.exec_start_stream.return_value = make_raw_stream()
        exec_handle = await controller.exec(running_container, ["true"])

        session = await controller.attach(exec_handle)
        await session.drain()

        assert exec_handle.state is ProcessState.RUNNING
        with pytest.raises(AttachUnsupported):
            await controller.attach(exec_handle)


class TestInspect:
    """Test runtime information refresh."""

    @pytest.mark.asyncio
    async def test_inspect_observes_exit(self, controller, mock_containers, running_container):
        mock_containers.inspect.return_value = {
            "State": {"Status": "exited", "Running": False, "ExitCode": 9}
        }

        info = await controller.inspect(running_container)

        assert running_container.runtime_info is info
        assert running_container.state is ProcessState.EXITED
        assert running_container.exit_code == 9

    @pytest.mark.asyncio
    async def test_inspect_running(self, controller, mock_containers, running_container):
        mock_containers.inspect.return_value = {"State": {"Status": "running", "Running": True}}
        await controller.inspect(running_container)
        assert running_container.state is ProcessState.RUNNING

    @pytest.mark.asyncio
    async def test_wait_refreshes_runtime_info(self, controller, mock_containers, running_container):
        """Test the handle's runtime information describes the exited process."""
        info = {"State": {"Status": "exited", "Running": False, "ExitCode": 3}}
        mock_containers.wait.return_value = {"StatusCode": 3}
        mock_containers.inspect.return_value = info

        outcome = await controller.wait(running_container, timeout=5)

        assert outcome.exit_code == 3
        assert running_container.runtime_info == info
        mock_containers.inspect.assert_awaited_once_with(CONTAINER_ID)

    @pytest.mark.asyncio
    async def test_repeat_wait_does_not_inspect(self, controller, mock_containers, running_container):
        running_container.record_exit(0)
        await controller.wait(running_container)
        mock_containers.inspect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inspect_missing(self, controller, mock_containers, running_container):
        mock_containers.inspect.return_value = None
        assert await controller.inspect(running_container) is None


class TestRun:
    """Test the create-start-wait shortcut."""

    @pytest.mark.asyncio
    async def test_run_waits_for_exit(self, controller, mock_containers):
        mock_containers.attach_stream.return_value = make_raw_stream(frames((1, b"done\n")))
        mock_containers.wait.return_value = {"StatusCode": 0}
        sink = BufferingSink()

        result = await controller.run({"Image": "busybox", "Cmd": ["echo", "done"]}, sink=sink)

        assert result.outcome.exit_code == 0
        assert result.handle.state is ProcessState.EXITED
        assert sink.result.stdout_text() == "done\n"

    @pytest.mark.asyncio
    async def test_run_daemon_returns_immediately(self, controller, mock_containers):
        result = await controller.run({"Image": "nginx"}, daemon=True)

        assert result.outcome is None
        assert result.handle.state is ProcessState.RUNNING
        mock_containers.wait.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_timeout(self, controller, mock_containers):
        async def never_exits(*args, **kwargs):
            await asyncio.sleep(10)

        mock_containers.wait.side_effect = never_exits

        result = await controller.run({"Image": "busybox"}, timeout=0.001)

        assert result.outcome.timed_out is True
        assert result.handle.state is ProcessState.RUNNING
