"""Process handle data models.

A ProcessHandle is the local representative of something the engine runs:
a container or an exec instance inside a running container. Both share
one lifecycle:

    CREATED -> RUNNING -> EXITED -> REMOVED

State and exit code are only written by the lifecycle controller and the
wait coordinator, under the handle's lock.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Set


class ProcessState(str, Enum):
    """Lifecycle state of a process handle."""

    CREATED = "created"
    RUNNING = "running"
    EXITED = "exited"
    REMOVED = "removed"


class ProcessKind(str, Enum):
    """What the engine is running for this handle."""

    CONTAINER = "container"
    EXEC = "exec"


@dataclass(frozen=True)
class AttachFlags:
    """Attach capabilities declared at creation time."""

    stdin: bool = False
    stdout: bool = True
    stderr: bool = True
    tty: bool = False

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AttachFlags":
        """Read flags from a container create body or an exec config.

        The engine attaches stdout and stderr unless told otherwise.
        """
        return cls(
            stdin=bool(config.get("AttachStdin", False)),
            stdout=bool(config.get("AttachStdout", True)),
            stderr=bool(config.get("AttachStderr", True)),
            tty=bool(config.get("Tty", False)),
        )

    @property
    def channels(self) -> Set[str]:
        """Names of the declared I/O channels."""
        return {
            name for name in ("stdin", "stdout", "stderr") if getattr(self, name)
        }

    def missing(self, requested: "AttachFlags") -> Set[str]:
        """Channels requested but not declared."""
        return requested.channels - self.channels

    def to_query(self) -> Dict[str, int]:
        """Query parameters for the attach endpoint."""
        return {
            "stream": 1,
            "stdin": int(self.stdin),
            "stdout": int(self.stdout),
            "stderr": int(self.stderr),
        }


@dataclass(frozen=True)
class WaitOutcome:
    """Result of one wait call."""

    exit_code: Optional[int] = None
    timed_out: bool = False


@dataclass(eq=False)
class ProcessHandle:
    """A container or exec instance known to the engine."""

    id: str
    kind: ProcessKind = ProcessKind.CONTAINER
    endpoints: AttachFlags = field(default_factory=AttachFlags)
    parent_id: Optional[str] = None
    name: Optional[str] = None
    spec: Dict[str, Any] = field(default_factory=dict)
    state: ProcessState = ProcessState.CREATED
    exit_code: Optional[int] = None
    runtime_info: Dict[str, Any] = field(default_factory=dict)
    run: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __setattr__(self, key, value):
        if key == "id" and "id" in self.__dict__:
            raise AttributeError("ProcessHandle.id is immutable once assigned")
        super().__setattr__(key, value)

    def __hash__(self):
        return hash((self.kind, self.id))

    def __eq__(self, other):
        if not isinstance(other, ProcessHandle):
            return False
        return self.kind == other.kind and self.id == other.id

    @property
    def short_id(self) -> str:
        """Id truncated the way the engine's CLI prints it."""
        return self.id[:12]

    @property
    def is_exec(self) -> bool:
        return self.kind is ProcessKind.EXEC

    @property
    def lock(self) -> asyncio.Lock:
        """Lock serializing state and exit code writes."""
        return self._lock

    def in_state(self, states: Iterable[ProcessState]) -> bool:
        return self.state in set(states)

    def record_exit(self, exit_code: int) -> bool:
        """Record the exit code of the current run.

        Returns False if an exit code is already recorded; the first
        confirmed value wins.
        """
        if self.exit_code is not None:
            return False
        self.exit_code = exit_code
        self.state = ProcessState.EXITED
        return True

    def reset_run(self) -> None:
        """Forget the previous run's exit code before a new start."""
        self.exit_code = None
        self.run += 1
