#!/usr/bin/env python3
"""
Gateway startup entrypoint - the command the supervisor launches.

Responsibilities, in order:
1. Exit quietly if a gateway is already running
2. Restore state from the durable volume when it is newer
3. Patch openclaw.json from the operator environment
4. Remove stale lock files left by a killed gateway
5. Replace this process with the gateway
"""

import asyncio
import json
import os
import sys
import time
from pathlib import Path

from ..config import GATEWAY_PORT, LEGACY_PRODUCT_NAME, PRODUCT_NAME, GatewayEnv, StatePaths
from ..gateway.config_rules import apply_config_rules
from ..gateway.process import GatewaySupervisor
from ..gateway.restore import minimal_config, restore_on_startup
from ..log_config import configure_logging, get_logger
from .executor import LocalCommandExecutor

# Only the gateway itself counts here; the entrypoint matches the wider signatures
RUNNING_GATEWAY_SIGNATURES = (f"{PRODUCT_NAME} gateway", f"{LEGACY_PRODUCT_NAME} gateway")


class GatewayStartup:
    """Prepares the container state and hands over to the gateway binary."""

    GATEWAY_BINARY = PRODUCT_NAME
    DEFAULT_BIND_MODE = "lan"

    def __init__(self, env: GatewayEnv | None = None, paths: StatePaths | None = None):
        self.env = env or GatewayEnv.from_environ()
        self.paths = paths or StatePaths()
        self.log = get_logger("entrypoint", service="sandbox", state_dir=str(self.paths.state_dir))

    @property
    def lock_files(self) -> list[Path]:
        return [Path(f"/tmp/{PRODUCT_NAME}-gateway.lock"), self.paths.state_dir / "gateway.lock"]

    async def gateway_already_running(self) -> bool:
        supervisor = GatewaySupervisor(
            LocalCommandExecutor(), signatures=RUNNING_GATEWAY_SIGNATURES
        )
        return await supervisor.find_existing() is not None

    def load_config(self) -> dict:
        """Read openclaw.json; an unreadable or invalid file starts over from the minimal config."""
        try:
            config = json.loads(self.paths.config_file.read_text())
        except FileNotFoundError:
            self.log.warn("config.missing", path=str(self.paths.config_file))
            return minimal_config(self.paths)
        except json.JSONDecodeError as e:
            self.log.warn("config.invalid_json", exc=e, path=str(self.paths.config_file))
            return minimal_config(self.paths)
        if not isinstance(config, dict):
            self.log.warn("config.not_an_object", path=str(self.paths.config_file))
            return minimal_config(self.paths)
        return config

    def patch_config(self) -> list[str]:
        config, applied = apply_config_rules(self.load_config(), self.env)
        self.paths.config_file.write_text(json.dumps(config, indent=2))
        self.log.info("config.patched", rules=applied)
        return applied

    def remove_stale_locks(self) -> None:
        for lock in self.lock_files:
            try:
                lock.unlink()
                self.log.info("lock.removed", path=str(lock))
            except FileNotFoundError:
                continue

    def gateway_argv(self) -> list[str]:
        argv = [
            self.GATEWAY_BINARY,
            "gateway",
            "--port",
            str(GATEWAY_PORT),
            "--verbose",
            "--allow-unconfigured",
            "--bind",
            self.env.bind_mode or self.DEFAULT_BIND_MODE,
        ]
        if self.env.gateway_token:
            argv += ["--token", self.env.gateway_token]
        return argv

    def prepare(self) -> None:
        startup_start = time.time()
        outcome = restore_on_startup(self.paths)
        applied = self.patch_config()
        self.remove_stale_locks()

        duration_ms = int((time.time() - startup_start) * 1000)
        self.log.info(
            "gateway.prepared",
            restored=outcome.restored,
            layout=outcome.layout,
            skills_restored=outcome.skills_restored,
            config_initialized=outcome.config_initialized,
            rules_applied=len(applied),
            duration_ms=duration_ms,
        )

    def run(self) -> int:
        if asyncio.run(self.gateway_already_running()):
            self.log.info("gateway.already_running")
            return 0

        self.prepare()

        argv = self.gateway_argv()
        # Never log the token
        self.log.info("gateway.exec", binary=argv[0], has_token=bool(self.env.gateway_token))
        os.chdir(self.paths.workspace_dir)
        os.execvp(argv[0], argv)
        return 1


def main() -> None:
    """Entry point for ``clawkeeper-start``."""
    configure_logging()
    sys.exit(GatewayStartup().run())


if __name__ == "__main__":
    main()
