"""
Public operations of the gateway core.

``GatewayService`` wires the supervisor, the R2 mounter and the backup engine
together around one command executor. Callers (the admin API, the CLI) must
have passed the access gate before invoking any mutating operation.
"""

from ..config import STARTUP_TIMEOUT_MS, GatewayEnv, StatePaths
from ..log_config import get_logger
from ..sandbox.types import CommandExecutor, ProcessHandle
from .env import build_env_vars
from .errors import ConfigurationMissingError, GatewayError
from .health import HealthGate
from .process import GatewaySupervisor
from .r2 import R2Storage
from .sync import BackupEngine
from .types import BackupListing, GoldenBackupResult, RestartResult, SyncResult

log = get_logger("service", service="gateway")


class GatewayService:
    def __init__(
        self,
        executor: CommandExecutor,
        storage: R2Storage | None = None,
        supervisor: GatewaySupervisor | None = None,
        engine: BackupEngine | None = None,
        paths: StatePaths | None = None,
    ):
        self.executor = executor
        self.paths = paths or StatePaths()
        self.storage = storage or R2Storage(executor, mount_path=str(self.paths.mount_path))
        self.supervisor = supervisor or GatewaySupervisor(executor)
        self.engine = engine or BackupEngine(
            executor,
            self.storage,
            health_gate=HealthGate(executor, self.paths),
            paths=self.paths,
        )

    async def ensure_gateway_running(
        self, env: GatewayEnv, timeout_ms: int = STARTUP_TIMEOUT_MS
    ) -> ProcessHandle:
        """
        Mount durable storage (best effort) and make sure the gateway runs.

        Raises:
            ConfigurationMissingError: if startup failed and no API key is configured
            GatewayError: for any other classified startup failure
        """
        mounted = await self.storage.mount(env)
        env_vars = build_env_vars(env, mounted)
        try:
            return await self.supervisor.ensure_running(timeout_ms=timeout_ms, env_vars=env_vars)
        except GatewayError as e:
            if not env.has_api_key:
                raise ConfigurationMissingError(
                    str(e),
                    hint="ANTHROPIC_API_KEY is not set. Add it to the container environment.",
                    details=e.details,
                ) from e
            raise

    async def find_existing_gateway_process(self) -> ProcessHandle | None:
        return await self.supervisor.find_existing()

    async def restart_gateway(self, env: GatewayEnv) -> RestartResult:
        return await self.supervisor.restart(relaunch=lambda: self.ensure_gateway_running(env))

    async def sync_to_durable(self, env: GatewayEnv) -> SyncResult:
        return await self.engine.sync_to_durable(env)

    async def create_golden_backup(self, env: GatewayEnv) -> GoldenBackupResult:
        return await self.engine.create_golden_backup(env)

    async def list_backups(self, env: GatewayEnv) -> BackupListing:
        return await self.engine.list_backups(env)

    async def restore_from_backup(self, env: GatewayEnv, kind: str, name: str) -> SyncResult:
        return await self.engine.restore_from_backup(env, kind, name)
