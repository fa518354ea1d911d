"""
Gateway process supervision.

The supervisor never holds on to "its" process. Each call re-discovers the
gateway by command signature and non-terminal status, so it keeps working
across supervisor restarts and when several callers race to start it.
Correctness relies on ``find_existing`` never missing a live gateway, not on
locking.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

import httpx

from ..config import (
    GATEWAY_COMMAND_SIGNATURES,
    GATEWAY_PORT,
    POLL_INTERVAL_MS,
    RESTART_GRACE_MS,
    START_COMMAND,
    STARTUP_TIMEOUT_MS,
)
from ..log_config import get_logger
from ..sandbox.types import CommandExecutor, ProcessHandle, ProcessLogs
from .errors import (
    GatewayError,
    GatewayStartError,
    ResourceExhaustionError,
    StartupTimeoutError,
    has_oom_signature,
)
from .types import RestartResult

log = get_logger("supervisor", service="gateway")


def _output_tail(logs: ProcessLogs, lines: int = 50) -> str:
    output = "\n".join(part for part in (logs.stdout, logs.stderr) if part)
    return "\n".join(output.splitlines()[-lines:])


class GatewaySupervisor:
    """Discovers, starts and restarts the single gateway process."""

    PORT_PROBE_TIMEOUT = 2.0

    def __init__(
        self,
        executor: CommandExecutor,
        port: int = GATEWAY_PORT,
        start_command: str = START_COMMAND,
        signatures: tuple[str, ...] = GATEWAY_COMMAND_SIGNATURES,
    ):
        self.executor = executor
        self.port = port
        self.start_command = start_command
        self.signatures = signatures
        self._background_tasks: set[asyncio.Task] = set()

    def is_gateway_command(self, command: str) -> bool:
        return any(signature in command for signature in self.signatures)

    async def find_existing(self) -> ProcessHandle | None:
        """
        Return the first gateway process that is starting or running.

        Listing failures degrade to None.
        """
        try:
            for proc in await self.executor.list():
                if self.is_gateway_command(proc.command) and proc.status.is_active:
                    return proc
        except Exception as e:
            log.warn("gateway.list_error", exc=e)
        return None

    async def ensure_running(
        self,
        timeout_ms: int = STARTUP_TIMEOUT_MS,
        env_vars: dict[str, str] | None = None,
    ) -> ProcessHandle:
        """
        Start the gateway unless one is already running.

        Blocks until the gateway port answers or ``timeout_ms`` elapses.

        Raises:
            GatewayStartError: if the startup command cannot be launched
            StartupTimeoutError: if the port never became reachable
            ResourceExhaustionError: if the startup logs show the process ran out of memory
        """
        existing = await self.find_existing()
        if existing:
            log.debug("gateway.found_existing", process_id=existing.id, status=existing.status.value)
            return existing

        log.info("gateway.start", command=self.start_command)
        start_time = time.time()
        try:
            proc = await self.executor.start(self.start_command, env=env_vars)
        except Exception as e:
            log.error("gateway.start_error", exc=e)
            raise GatewayStartError(
                f"Failed to launch gateway: {e}",
                hint="The startup command could not be launched. Check the container image.",
            ) from e

        await self._wait_for_port(proc, timeout_ms)

        duration_ms = int((time.time() - start_time) * 1000)
        log.info("gateway.ready", process_id=proc.id, port=self.port, duration_ms=duration_ms)
        return proc

    async def _port_reachable(self, client: httpx.AsyncClient) -> bool:
        """Any HTTP response, whatever its status, means the port is open."""
        try:
            await client.get(f"http://localhost:{self.port}/", timeout=self.PORT_PROBE_TIMEOUT)
            return True
        except (httpx.ConnectError, httpx.TimeoutException):
            return False
        except httpx.HTTPError as e:
            log.debug("gateway.probe_error", exc=e)
            return True

    async def _wait_for_port(self, proc: ProcessHandle, timeout_ms: int) -> None:
        deadline = time.monotonic() + timeout_ms / 1000

        async with httpx.AsyncClient() as client:
            while time.monotonic() < deadline:
                if await self._port_reachable(client):
                    return
                if not proc.status.is_active:
                    logs = await proc.get_logs()
                    raise self._startup_failure(
                        f"Gateway process exited before opening port {self.port} "
                        f"(exit code {proc.exit_code})",
                        logs,
                    )
                await asyncio.sleep(POLL_INTERVAL_MS / 1000)

        logs = await proc.get_logs()
        raise self._startup_failure(
            f"Gateway did not open port {self.port} within {timeout_ms}ms", logs
        )

    def _startup_failure(self, message: str, logs: ProcessLogs) -> GatewayError:
        tail = _output_tail(logs)
        if has_oom_signature(tail):
            log.error("gateway.out_of_memory", message=message)
            return ResourceExhaustionError(message, details=tail)
        log.error("gateway.startup_timeout", message=message, output_tail=tail)
        return StartupTimeoutError(message, details=tail)

    async def restart(
        self,
        relaunch: Callable[[], Awaitable[object]] | None = None,
    ) -> RestartResult:
        """
        Kill the running gateway and start a new one in the background.

        The kill is awaited; the relaunch is not. Returns whether a previous
        process was found.
        """
        existing = await self.find_existing()

        if existing:
            log.info("gateway.kill", process_id=existing.id)
            try:
                await existing.kill()
            except Exception as e:
                log.error("gateway.kill_error", exc=e, process_id=existing.id)
            await asyncio.sleep(RESTART_GRACE_MS / 1000)

        task = asyncio.create_task(self._relaunch(relaunch or self.ensure_running))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

        return RestartResult(
            killed_previous=existing is not None,
            previous_process_id=existing.id if existing else None,
        )

    async def _relaunch(self, relaunch: Callable[[], Awaitable[object]]) -> None:
        try:
            await relaunch()
        except Exception as e:
            log.error("gateway.restart_failed", exc=e)

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending relaunches; used by one-shot callers such as the CLI."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks)
