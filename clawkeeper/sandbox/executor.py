"""
Shell command execution inside the gateway container.

``LocalCommandExecutor`` runs commands with ``bash -c`` and keeps the tail of
their output so callers can poll status and read logs the same way they would
against a remote sandbox API. Processes it did not start are discovered
through ``psutil`` so a gateway launched by another caller is still visible.

Handles are tracked only while their command runs. Callers keep the handle
``start`` returned if they need the logs of a finished command.
"""

import asyncio
import contextlib
import itertools
import os
import signal
import subprocess
import tempfile
import time
from collections import deque
from datetime import UTC, datetime
from pathlib import Path

import psutil

from ..config import POLL_INTERVAL_MS
from ..log_config import get_logger
from .types import CommandExecutor, ProcessHandle, ProcessLogs, ProcessStatus

log = get_logger("executor", service="sandbox")

# Lines of stdout and of stderr kept per process
MAX_LOG_LINES = 1000


class CommandTimeoutError(Exception):
    """Raised when a command does not finish within its time bound."""

    def __init__(self, command: str, timeout_ms: int):
        super().__init__(f"Command did not finish within {timeout_ms}ms: {command[:80]}")
        self.command = command
        self.timeout_ms = timeout_ms


def _status_for(code: int | None) -> ProcessStatus:
    if code is None:
        return ProcessStatus.RUNNING
    return ProcessStatus.COMPLETED if code == 0 else ProcessStatus.FAILED


class LocalProcess:
    """A shell command launched by ``LocalCommandExecutor`` with piped output."""

    def __init__(self, process_id: str, command: str, process: asyncio.subprocess.Process):
        self.id = process_id
        self.command = command
        self.pid = process.pid
        self.start_time: datetime | None = datetime.now(UTC)
        self._process = process
        self._stdout: deque[str] = deque(maxlen=MAX_LOG_LINES)
        self._stderr: deque[str] = deque(maxlen=MAX_LOG_LINES)
        self._watcher = asyncio.create_task(self._watch())

    @property
    def status(self) -> ProcessStatus:
        return _status_for(self._process.returncode)

    @property
    def exit_code(self) -> int | None:
        return self._process.returncode

    @property
    def finished(self) -> bool:
        """True once the process exited and its output was fully collected."""
        return self._watcher.done()

    async def _drain(self, stream: asyncio.StreamReader | None, sink: deque[str]) -> None:
        if stream is None:
            return
        async for line in stream:
            sink.append(line.decode(errors="replace"))

    async def _watch(self) -> None:
        await asyncio.gather(
            self._drain(self._process.stdout, self._stdout),
            self._drain(self._process.stderr, self._stderr),
        )
        await self._process.wait()

    async def get_logs(self) -> ProcessLogs:
        # Let pending output reach the buffers before reading them
        if self._watcher.done() or self._process.returncode is not None:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(asyncio.shield(self._watcher), timeout=1.0)
        return ProcessLogs(stdout="".join(self._stdout), stderr="".join(self._stderr))

    async def kill(self) -> None:
        if self._process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            self._process.kill()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._process.wait(), timeout=5.0)


def _read_tail(path: Path, lines: int = MAX_LOG_LINES) -> str:
    try:
        with path.open(errors="replace") as f:
            return "".join(deque(f, maxlen=lines))
    except FileNotFoundError:
        return ""


class DetachedProcess:
    """
    A shell command running in its own session with output sent to files.

    The process outlives the event loop and the interpreter that started it,
    so a one-shot command can leave a long-running gateway behind.
    """

    def __init__(
        self,
        process_id: str,
        command: str,
        popen: subprocess.Popen,
        stdout_path: Path,
        stderr_path: Path,
    ):
        self.id = process_id
        self.command = command
        self.pid = popen.pid
        self.start_time: datetime | None = datetime.now(UTC)
        self.stdout_path = stdout_path
        self.stderr_path = stderr_path
        self._popen = popen

    @property
    def status(self) -> ProcessStatus:
        return _status_for(self._popen.poll())

    @property
    def exit_code(self) -> int | None:
        return self._popen.poll()

    @property
    def finished(self) -> bool:
        return self._popen.poll() is not None

    async def get_logs(self) -> ProcessLogs:
        return ProcessLogs(stdout=_read_tail(self.stdout_path), stderr=_read_tail(self.stderr_path))

    async def kill(self) -> None:
        if self._popen.poll() is not None:
            return
        # The shell leads its own process group; take its children down with it
        with contextlib.suppress(ProcessLookupError):
            os.killpg(self._popen.pid, signal.SIGKILL)
        with contextlib.suppress(subprocess.TimeoutExpired):
            await asyncio.to_thread(self._popen.wait, 5.0)


class SystemProcess:
    """An OS process discovered by ``psutil`` rather than launched here."""

    def __init__(self, proc: psutil.Process, command: str, create_time: float | None):
        self.id = f"pid-{proc.pid}"
        self.command = command
        self.pid = proc.pid
        self.start_time = datetime.fromtimestamp(create_time, UTC) if create_time else None
        self._proc = proc

    @property
    def status(self) -> ProcessStatus:
        try:
            if self._proc.status() in (psutil.STATUS_ZOMBIE, psutil.STATUS_DEAD):
                return ProcessStatus.COMPLETED
        except psutil.NoSuchProcess:
            return ProcessStatus.COMPLETED
        return ProcessStatus.RUNNING

    @property
    def exit_code(self) -> int | None:
        return None

    async def get_logs(self) -> ProcessLogs:
        # Output of processes started elsewhere is not captured
        return ProcessLogs()

    async def kill(self) -> None:
        with contextlib.suppress(psutil.NoSuchProcess):
            self._proc.kill()


def _scan_system_processes(known: set[int]) -> list[SystemProcess]:
    found = []
    for proc in psutil.process_iter(["pid", "cmdline", "create_time"]):
        try:
            if proc.info["pid"] in known:
                continue
            cmdline = proc.info.get("cmdline") or []
            if not cmdline:
                continue
            found.append(SystemProcess(proc, " ".join(cmdline), proc.info.get("create_time")))
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return found


class LocalCommandExecutor:
    """
    Runs commands in the current container with ``bash -c``.

    With ``detached=True`` every command starts in a new session and writes
    its output under ``log_dir`` (a fresh temporary directory by default).
    One-shot callers use this so the gateway survives their exit.
    """

    SHELL = "/bin/bash"

    def __init__(
        self,
        discover_system_processes: bool = True,
        detached: bool = False,
        log_dir: Path | None = None,
    ):
        self.discover_system_processes = discover_system_processes
        self.detached = detached
        self.log_dir = log_dir
        self._processes: list[LocalProcess | DetachedProcess] = []
        self._ids = itertools.count(1)

    async def start(
        self, command: str, env: dict[str, str] | None = None
    ) -> LocalProcess | DetachedProcess:
        process_id = f"proc-{next(self._ids)}"
        full_env = {**os.environ, **(env or {})}
        if self.detached:
            handle = self._start_detached(process_id, command, full_env)
        else:
            process = await asyncio.create_subprocess_exec(
                self.SHELL,
                "-c",
                command,
                env=full_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            handle = LocalProcess(process_id, command, process)

        self._prune()
        self._processes.append(handle)
        log.debug("executor.start", process_id=handle.id, pid=handle.pid, detached=self.detached)
        return handle

    def _start_detached(self, process_id: str, command: str, env: dict[str, str]) -> DetachedProcess:
        if self.log_dir is None:
            self.log_dir = Path(tempfile.mkdtemp(prefix="clawkeeper-"))
        stdout_path = self.log_dir / f"{process_id}.out"
        stderr_path = self.log_dir / f"{process_id}.err"
        with stdout_path.open("wb") as stdout, stderr_path.open("wb") as stderr:
            popen = subprocess.Popen(
                [self.SHELL, "-c", command],
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                start_new_session=True,
            )
        return DetachedProcess(process_id, command, popen, stdout_path, stderr_path)

    def _prune(self) -> None:
        self._processes = [p for p in self._processes if not p.finished]

    async def list(self) -> list[ProcessHandle]:
        self._prune()
        handles: list[ProcessHandle] = list(self._processes)
        if not self.discover_system_processes:
            return handles

        known = {p.pid for p in self._processes} | {os.getpid()}
        handles.extend(await asyncio.to_thread(_scan_system_processes, known))
        return handles


async def wait_for_process(
    proc: ProcessHandle,
    timeout_ms: int,
    interval_ms: int = POLL_INTERVAL_MS,
) -> None:
    """
    Poll until the process leaves the starting/running states.

    Raises:
        CommandTimeoutError: if the process is still active after ``timeout_ms``
    """
    deadline = time.monotonic() + timeout_ms / 1000
    while proc.status.is_active:
        if time.monotonic() >= deadline:
            raise CommandTimeoutError(proc.command, timeout_ms)
        await asyncio.sleep(interval_ms / 1000)


async def run_command(
    executor: CommandExecutor,
    command: str,
    timeout_ms: int,
    env: dict[str, str] | None = None,
) -> tuple[ProcessHandle, ProcessLogs]:
    """Start a command, wait for it within ``timeout_ms``, and return its logs.

    A command that overruns its bound is killed before the timeout propagates.
    """
    proc = await executor.start(command, env=env)
    try:
        await wait_for_process(proc, timeout_ms)
    except CommandTimeoutError:
        with contextlib.suppress(Exception):
            await proc.kill()
        raise
    return proc, await proc.get_logs()
