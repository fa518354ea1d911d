"""Tests for the local command executor."""

import asyncio
import os
import signal
import time

import psutil
import pytest

from clawkeeper.sandbox.executor import (
    MAX_LOG_LINES,
    CommandTimeoutError,
    LocalCommandExecutor,
    run_command,
    wait_for_process,
)
from clawkeeper.sandbox.types import CommandExecutor, ProcessStatus


@pytest.fixture
def executor() -> LocalCommandExecutor:
    return LocalCommandExecutor(discover_system_processes=False)


class TestLocalCommandExecutor:
    def test_satisfies_protocol(self, executor):
        assert isinstance(executor, CommandExecutor)

    @pytest.mark.asyncio
    async def test_captures_output(self, executor):
        proc, logs = await run_command(executor, "echo hello; echo oops >&2", 5_000)

        assert proc.status == ProcessStatus.COMPLETED
        assert proc.exit_code == 0
        assert logs.stdout == "hello\n"
        assert logs.stderr == "oops\n"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failed(self, executor):
        proc, _ = await run_command(executor, "exit 3", 5_000)

        assert proc.status == ProcessStatus.FAILED
        assert proc.exit_code == 3

    @pytest.mark.asyncio
    async def test_environment_is_merged(self, executor):
        _, logs = await run_command(
            executor, 'echo "$CLAWKEEPER_TEST_VALUE"', 5_000, env={"CLAWKEEPER_TEST_VALUE": "42"}
        )
        assert logs.stdout.strip() == "42"

    @pytest.mark.asyncio
    async def test_started_processes_are_listed(self, executor):
        proc = await executor.start("sleep 5")
        try:
            listed = await executor.list()
            assert proc in listed
            assert proc.status.is_active
        finally:
            await proc.kill()

        assert not proc.status.is_active

    @pytest.mark.asyncio
    async def test_timeout_kills_command(self, executor):
        with pytest.raises(CommandTimeoutError):
            await run_command(executor, "sleep 5", 100)

        assert all(not proc.status.is_active for proc in await executor.list())

    @pytest.mark.asyncio
    async def test_finished_commands_are_not_tracked(self, executor):
        for _ in range(50):
            await run_command(executor, "true", 5_000)

        assert await executor.list() == []

    @pytest.mark.asyncio
    async def test_output_keeps_only_the_tail(self, executor):
        _, logs = await run_command(executor, f"seq 1 {MAX_LOG_LINES + 500}", 5_000)

        lines = logs.stdout.splitlines()
        assert len(lines) == MAX_LOG_LINES
        assert lines[-1] == str(MAX_LOG_LINES + 500)

    @pytest.mark.asyncio
    async def test_wait_for_process_returns_after_exit(self, executor):
        proc = await executor.start("true")
        await wait_for_process(proc, 5_000, interval_ms=10)
        assert proc.status == ProcessStatus.COMPLETED


class TestSystemProcessDiscovery:
    @pytest.mark.asyncio
    async def test_discovers_processes_started_elsewhere(self):
        starter = LocalCommandExecutor(discover_system_processes=False)
        proc = await starter.start("exec sleep 7.5")
        try:
            observer = LocalCommandExecutor()
            listed = await observer.list()
            matches = [p for p in listed if "sleep 7.5" in p.command]

            assert matches
            assert matches[0].id.startswith("pid-")
            assert matches[0].status.is_active
        finally:
            await proc.kill()


class TestDetachedExecution:
    """Commands started in their own session with output in files."""

    @pytest.fixture
    def executor(self, tmp_path) -> LocalCommandExecutor:
        return LocalCommandExecutor(discover_system_processes=False, detached=True, log_dir=tmp_path)

    @pytest.mark.asyncio
    async def test_captures_output(self, executor, tmp_path):
        proc, logs = await run_command(executor, "echo hello; echo oops >&2; exit 2", 5_000)

        assert proc.status == ProcessStatus.FAILED
        assert proc.exit_code == 2
        assert logs.stdout == "hello\n"
        assert logs.stderr == "oops\n"
        assert (tmp_path / f"{proc.id}.out").is_file()

    @pytest.mark.asyncio
    async def test_runs_in_own_session(self, executor):
        proc = await executor.start("exec sleep 30")
        try:
            assert os.getsid(proc.pid) == proc.pid
            assert await executor.list() == [proc]
        finally:
            await proc.kill()

        assert not proc.status.is_active
        assert await executor.list() == []

    def test_outlives_the_event_loop(self, tmp_path):
        async def start() -> int:
            executor = LocalCommandExecutor(
                discover_system_processes=False, detached=True, log_dir=tmp_path
            )
            return (await executor.start("exec sleep 30")).pid

        pid = asyncio.run(start())
        try:
            time.sleep(0.5)
            assert psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        finally:
            os.killpg(pid, signal.SIGKILL)
