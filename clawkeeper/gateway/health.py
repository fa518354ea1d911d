"""
Health gate for the local state directory.

A fresh container looks structurally valid (directories exist) but has no
accumulated identity content. Backing that up would overwrite a good backup,
so every sync and golden backup is refused until the state passes this gate.
Restores never consult it.
"""

import base64
import re
import shlex

from ..config import CONFIG_FILENAME, LEGACY_CONFIG_FILENAME, QUICK_CHECK_TIMEOUT_MS, StatePaths
from ..log_config import get_logger
from ..sandbox.executor import run_command
from ..sandbox.types import CommandExecutor
from .types import HealthStatus, IdentityState

log = get_logger("health", service="gateway")

MIN_IDENTITY_BYTES = 100
HEADING_PATTERN = re.compile(rb"^# ", re.MULTILINE)

IDENTITY_REASONS = {
    IdentityState.MISSING: "IDENTITY.md does not exist - appears to be fresh container",
    IdentityState.EMPTY: "IDENTITY.md is empty - appears to be fresh container",
    IdentityState.MINIMAL: "IDENTITY.md has minimal content - may be fresh/template state",
}


def classify_identity_document(content: bytes | None) -> IdentityState:
    """Classify identity document contents; ``None`` means the file is absent."""
    if content is None:
        return IdentityState.MISSING
    if not content:
        return IdentityState.EMPTY
    if HEADING_PATTERN.search(content) and len(content) > MIN_IDENTITY_BYTES:
        return IdentityState.HEALTHY
    return IdentityState.MINIMAL


def _config_check_command(paths: StatePaths) -> str:
    current = shlex.quote(str(paths.state_dir / CONFIG_FILENAME))
    legacy = shlex.quote(str(paths.state_dir / LEGACY_CONFIG_FILENAME))
    return f'test -f {current} && echo "ok" || (test -f {legacy} && echo "ok")'


def _identity_read_command(paths: StatePaths) -> str:
    # One base64 line keeps the bytes exact whatever the document holds
    identity = shlex.quote(str(paths.identity_file))
    return (
        f'if [ -f {identity} ]; then printf "present "; base64 -w0 < {identity}; echo; '
        'else echo "missing"; fi'
    )


def _parse_identity_output(stdout: str) -> bytes | None:
    """Decode the read command output into the document, or None when absent."""
    status, _, payload = stdout.strip().partition(" ")
    if status == "missing":
        return None
    if status == "present":
        return base64.b64decode(payload.strip(), validate=True)
    raise ValueError(f"Unexpected identity check output: {status[:40]!r}")


class HealthGate:
    """Classifies the state directory as healthy or not yet initialized."""

    def __init__(self, executor: CommandExecutor, paths: StatePaths | None = None):
        self.executor = executor
        self.paths = paths or StatePaths()

    async def check(self) -> HealthStatus:
        try:
            _proc, config_logs = await run_command(
                self.executor, _config_check_command(self.paths), QUICK_CHECK_TIMEOUT_MS
            )
            if "ok" not in config_logs.stdout:
                return HealthStatus(healthy=False, reason=f"Missing {CONFIG_FILENAME}")

            _proc, identity_logs = await run_command(
                self.executor, _identity_read_command(self.paths), QUICK_CHECK_TIMEOUT_MS
            )
            state = classify_identity_document(_parse_identity_output(identity_logs.stdout))
            if state is not IdentityState.HEALTHY:
                return HealthStatus(healthy=False, reason=IDENTITY_REASONS[state])

            return HealthStatus(healthy=True)
        except Exception as e:
            log.warn("health.check_error", exc=e)
            return HealthStatus(healthy=False, reason=f"Health check error: {e}")
