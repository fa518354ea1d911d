"""Shared fakes for the command executor seam."""

import base64
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from clawkeeper.config import GatewayEnv, StatePaths
from clawkeeper.sandbox.types import ProcessLogs, ProcessStatus

MOUNT_LINE = "s3fs on /data/openclaw type fuse.s3fs (rw,nosuid,nodev)\n"


def identity_output(content: bytes | None) -> str:
    """What the health gate's identity read prints for ``content``; None means absent."""
    if content is None:
        return "missing\n"
    return f"present {base64.b64encode(content).decode()}\n"


HEALTHY_IDENTITY = identity_output(b"# Identity\n" + b"x" * 120)
EMPTY_IDENTITY = identity_output(b"")


class FakeProcess:
    """A process handle with canned output."""

    def __init__(
        self,
        stdout: str = "",
        stderr: str = "",
        command: str = "",
        status: ProcessStatus = ProcessStatus.COMPLETED,
        exit_code: int | None = 0,
        process_id: str = "proc-1",
    ):
        self.id = process_id
        self.command = command
        self.start_time = datetime.now(UTC)
        self.status = status
        self.exit_code = exit_code
        self._logs = ProcessLogs(stdout=stdout, stderr=stderr)
        self.kill = AsyncMock()

    async def get_logs(self) -> ProcessLogs:
        return self._logs


class FakeExecutor:
    """
    Executor returning one queued output per ``start`` call.

    Queue items are strings (stdout of a completed process) or FakeProcess
    instances. Every command is recorded in ``commands``.
    """

    def __init__(self, outputs: list | None = None, processes: list | None = None):
        self.outputs = list(outputs or [])
        self.processes = list(processes or [])
        self.commands: list[str] = []
        self.envs: list[dict[str, str] | None] = []

    async def start(self, command: str, env: dict[str, str] | None = None) -> FakeProcess:
        self.commands.append(command)
        self.envs.append(env)
        item = self.outputs.pop(0) if self.outputs else ""
        proc = item if isinstance(item, FakeProcess) else FakeProcess(stdout=item)
        if not proc.command:
            proc.command = command
        return proc

    async def list(self) -> list:
        return list(self.processes)


@pytest.fixture
def r2_env() -> GatewayEnv:
    """Settings with R2 credentials present."""
    return GatewayEnv(
        anthropic_api_key="sk-test",
        r2_access_key_id="test-key-id",
        r2_secret_access_key="test-secret",
        cf_account_id="test-account",
    )


@pytest.fixture
def bare_env() -> GatewayEnv:
    return GatewayEnv()


@pytest.fixture
def state_paths(tmp_path: Path) -> StatePaths:
    """State, mount and template locations under a temporary directory."""
    return StatePaths(
        state_dir=tmp_path / "state",
        mount_path=tmp_path / "durable",
        template_file=tmp_path / "templates" / "openclaw.json.template",
    )
