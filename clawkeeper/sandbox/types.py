"""Type definitions for commands running inside the gateway container."""

from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel


class ProcessStatus(str, Enum):
    """Lifecycle of a process started through a command executor."""

    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (ProcessStatus.STARTING, ProcessStatus.RUNNING)


class ProcessLogs(BaseModel):
    """Accumulated output of a process."""

    stdout: str = ""
    stderr: str = ""


@runtime_checkable
class ProcessHandle(Protocol):
    """A process known to a command executor."""

    id: str
    command: str
    start_time: datetime | None

    @property
    def status(self) -> ProcessStatus: ...

    @property
    def exit_code(self) -> int | None: ...

    async def get_logs(self) -> ProcessLogs: ...

    async def kill(self) -> None: ...


@runtime_checkable
class CommandExecutor(Protocol):
    """Ability to run shell commands inside the container."""

    async def start(self, command: str, env: dict[str, str] | None = None) -> ProcessHandle: ...

    async def list(self) -> list[ProcessHandle]: ...
