"""
Backup and restore of gateway state against the durable R2 volume.

Durable layout (current):

    <root>/openclaw/openclaw.json     mirrored state directory
    <root>/skills/                    mirrored skills subtree
    <root>/.last-sync                 sync marker
    <root>/backups/<timestamp>/       versioned backups, newest 5 kept
    <root>/golden-backup/<timestamp>/ golden backups, never pruned

Earlier releases wrote ``<root>/clawdbot/clawdbot.json`` or a flat
``<root>/clawdbot.json``; restores recognize both and migrate them.

Success of a sync is decided by re-reading the marker file rather than by the
mirror's exit status, which the sandbox process API does not report reliably.
"""

import re
import shlex
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from ..config import (
    CONFIG_FILENAME,
    COPY_TIMEOUT_MS,
    GOLDEN_BACKUP_DIR,
    LEGACY_CONFIG_FILENAME,
    LEGACY_PRODUCT_NAME,
    LISTING_TIMEOUT_MS,
    MAX_VERSIONED_BACKUPS,
    PRODUCT_NAME,
    QUICK_CHECK_TIMEOUT_MS,
    SYNC_MARKER,
    VERSIONED_BACKUP_DIR,
    GatewayEnv,
    StatePaths,
)
from ..log_config import get_logger
from ..sandbox.executor import run_command
from ..sandbox.types import CommandExecutor
from .errors import BackupNotFoundError, GatewayError, MalformedInputError
from .health import HealthGate
from .r2 import R2Storage
from .types import (
    BackupKind,
    BackupListing,
    GoldenBackupResult,
    SyncResult,
    VersionedBackupResult,
)

log = get_logger("sync", service="gateway")

NOT_CONFIGURED = "R2 storage is not configured"
MOUNT_FAILED = "Failed to mount R2 storage"
MARKER_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")
SAFE_NAME_PATTERN = re.compile(r"[^A-Za-z0-9_-]")
MIRROR_EXCLUDES = ("*.lock", "*.log", "*.tmp")


def backup_timestamp(now: datetime) -> str:
    """ISO-8601 UTC with ':' and '.' replaced, e.g. 2026-01-27T12-00-00-000Z."""
    now = now.astimezone(UTC)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def sanitize_backup_name(name: str) -> str:
    """Strip everything outside [A-Za-z0-9_-] so the name is safe in a path."""
    return SAFE_NAME_PATTERN.sub("", name)


def _q(path: Path | str) -> str:
    return shlex.quote(str(path))


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _rejected(error: GatewayError) -> SyncResult:
    log.warn("restore.rejected", exc=error, error_kind=error.kind)
    return SyncResult.from_error(error)


class BackupEngine:
    """Versioned, golden and mirrored backups of the local state directory."""

    def __init__(
        self,
        executor: CommandExecutor,
        storage: R2Storage,
        health_gate: HealthGate | None = None,
        paths: StatePaths | None = None,
        clock: Callable[[], datetime] = _utcnow,
        max_versioned_backups: int = MAX_VERSIONED_BACKUPS,
        trust_exit_codes: bool = False,
    ):
        self.executor = executor
        self.storage = storage
        self.paths = paths or StatePaths(mount_path=Path(storage.mount_path))
        self.health_gate = health_gate or HealthGate(executor, self.paths)
        self.clock = clock
        self.max_versioned_backups = max_versioned_backups
        # Some sandboxes report exit codes reliably; opt in to failing fast on them
        self.trust_exit_codes = trust_exit_codes

    @property
    def root(self) -> Path:
        return self.paths.mount_path

    async def _ensure_storage(self, env: GatewayEnv) -> str | None:
        """Return an error message if durable storage is unavailable."""
        if not env.has_r2_credentials:
            return NOT_CONFIGURED
        if not await self.storage.mount(env):
            return MOUNT_FAILED
        return None

    async def sync_to_durable(self, env: GatewayEnv) -> SyncResult:
        """
        Mirror local state onto the durable volume.

        1. Mount R2 if not already mounted
        2. Refuse to continue unless the local state passes the health gate
        3. Snapshot whatever is on the volume into a versioned backup
        4. rsync state and skills, then write the sync marker
        5. Verify by reading the marker back
        """
        error = await self._ensure_storage(env)
        if error:
            return SyncResult(success=False, error=error)

        health = await self.health_gate.check()
        if not health.healthy:
            log.warn("sync.skipped", reason=health.reason)
            return SyncResult(
                success=False,
                error="Sync skipped: source data is not healthy",
                skipped_reason=health.reason,
                details=(
                    "The local data appears to be a fresh/empty container. "
                    "Refusing to overwrite potentially good R2 backup."
                ),
            )

        # A failed snapshot must not block the sync itself
        backup = await self.create_versioned_backup()
        if not backup.success:
            log.warn("sync.versioned_backup_failed", error=backup.error)
        elif backup.path:
            log.info("sync.versioned_backup_created", path=backup.path)

        try:
            proc, mirror_logs = await run_command(
                self.executor, self._mirror_command(), COPY_TIMEOUT_MS
            )
            if self.trust_exit_codes and proc.exit_code not in (None, 0):
                return SyncResult(
                    success=False,
                    error="Sync failed",
                    details=mirror_logs.stderr or f"rsync exited with {proc.exit_code}",
                )

            _proc, marker_logs = await run_command(
                self.executor, f"cat {_q(self.root / SYNC_MARKER)}", QUICK_CHECK_TIMEOUT_MS
            )
            last_sync = marker_logs.stdout.strip()
            if last_sync and MARKER_PATTERN.match(last_sync):
                log.info("sync.complete", last_sync=last_sync)
                return SyncResult(success=True, last_sync=last_sync)

            log.error("sync.failed", stderr=mirror_logs.stderr)
            return SyncResult(
                success=False,
                error="Sync failed",
                details=mirror_logs.stderr or mirror_logs.stdout or "No timestamp file created",
            )
        except Exception as e:
            log.error("sync.error", exc=e)
            return SyncResult(success=False, error="Sync error", details=str(e))

    def _mirror_command(self) -> str:
        excludes = " ".join(f"--exclude={_q(pattern)}" for pattern in MIRROR_EXCLUDES)
        state = self.paths.state_dir
        marker = self.root / SYNC_MARKER
        return (
            f"rsync -r --no-times --delete {excludes} "
            f"{_q(f'{state}/')} {_q(f'{self.root / PRODUCT_NAME}/')} && "
            f"rsync -r --no-times --delete "
            f"{_q(f'{self.paths.skills_dir}/')} {_q(f'{self.root}/skills/')} && "
            f"date -Iseconds > {_q(marker)} && "
            f"cp {_q(marker)} {_q(self.paths.local_marker)}"
        )

    async def create_versioned_backup(self) -> VersionedBackupResult:
        """
        Copy the data currently on the volume into backups/<timestamp>/.

        Succeeds without a path when the volume holds nothing to protect.
        Keeps the newest ``max_versioned_backups`` entries.
        """
        backup_path = self.root / VERSIONED_BACKUP_DIR / backup_timestamp(self.clock())
        current = self.root / PRODUCT_NAME
        legacy = self.root / LEGACY_PRODUCT_NAME
        command = f"""
          if [ -f {_q(current / CONFIG_FILENAME)} ]; then
            SRC={_q(current)}
          elif [ -f {_q(legacy / LEGACY_CONFIG_FILENAME)} ]; then
            SRC={_q(legacy)}
          else
            echo "no_existing_data"
            exit 0
          fi
          mkdir -p {_q(backup_path)}
          cp -r "$SRC" {_q(backup_path)}/ 2>/dev/null || true
          cp -r {_q(self.root / "skills")} {_q(backup_path)}/ 2>/dev/null || true
          cp {_q(self.root / SYNC_MARKER)} {_q(backup_path)}/ 2>/dev/null || true
          echo "backed_up"
        """

        try:
            _proc, logs = await run_command(self.executor, command, COPY_TIMEOUT_MS)
            if "no_existing_data" in logs.stdout:
                return VersionedBackupResult(success=True)
            if "backed_up" not in logs.stdout:
                return VersionedBackupResult(
                    success=False, error=logs.stderr or "Backup command did not complete"
                )
        except Exception as e:
            return VersionedBackupResult(success=False, error=str(e))

        await self._prune_versioned_backups()
        return VersionedBackupResult(success=True, path=str(backup_path))

    async def _prune_versioned_backups(self) -> None:
        # Names sort in creation order, so the oldest come last in reverse order
        keep_from = self.max_versioned_backups + 1
        command = (
            f"cd {_q(self.root / VERSIONED_BACKUP_DIR)} 2>/dev/null && "
            f"ls -1 | sort -r | tail -n +{keep_from} | xargs -r rm -rf -- && echo pruned"
        )
        try:
            _proc, logs = await run_command(self.executor, command, LISTING_TIMEOUT_MS)
            if "pruned" not in logs.stdout:
                log.warn("sync.prune_incomplete", stderr=logs.stderr)
        except Exception as e:
            log.warn("sync.prune_error", exc=e)

    async def create_golden_backup(self, env: GatewayEnv) -> GoldenBackupResult:
        """Create a protected snapshot that is never rotated."""
        error = await self._ensure_storage(env)
        if error:
            return GoldenBackupResult(success=False, error=error)

        health = await self.health_gate.check()
        if not health.healthy:
            log.warn("golden_backup.skipped", reason=health.reason)
            return GoldenBackupResult(
                success=False,
                error=f"Cannot create golden backup: {health.reason}",
                skipped_reason=health.reason,
            )

        timestamp = backup_timestamp(self.clock())
        golden_path = self.root / GOLDEN_BACKUP_DIR / timestamp
        command = f"""
          mkdir -p {_q(golden_path)}
          cp -r {_q(self.paths.state_dir)}/. {_q(golden_path)}/ 2>/dev/null || true
          mkdir -p {_q(golden_path / "skills")}
          cp -r {_q(self.paths.skills_dir)}/. {_q(golden_path / "skills")}/ 2>/dev/null || true
          date -Iseconds > {_q(golden_path / ".created")}
          echo "golden_created"
        """

        try:
            _proc, logs = await run_command(self.executor, command, COPY_TIMEOUT_MS)
        except Exception as e:
            log.error("golden_backup.error", exc=e)
            return GoldenBackupResult(success=False, error=str(e))

        if "golden_created" in logs.stdout:
            log.info("golden_backup.created", path=str(golden_path))
            return GoldenBackupResult(success=True, path=str(golden_path), timestamp=timestamp)
        return GoldenBackupResult(
            success=False, error=logs.stderr or "Golden backup command did not complete"
        )

    async def list_backups(self, env: GatewayEnv) -> BackupListing:
        error = await self._ensure_storage(env)
        if error:
            return BackupListing(error=error)

        command = (
            f'echo "VERSIONED:"; ls -1 {_q(self.root / VERSIONED_BACKUP_DIR)} 2>/dev/null; '
            f'echo "GOLDEN:"; ls -1 {_q(self.root / GOLDEN_BACKUP_DIR)} 2>/dev/null; true'
        )
        try:
            _proc, logs = await run_command(self.executor, command, LISTING_TIMEOUT_MS)
        except Exception as e:
            return BackupListing(error=str(e))

        versioned_part, _, golden_part = logs.stdout.partition("GOLDEN:")
        versioned_part = versioned_part.split("VERSIONED:", 1)[-1]
        return BackupListing(
            versioned=sorted(line.strip() for line in versioned_part.splitlines() if line.strip()),
            golden=sorted(line.strip() for line in golden_part.splitlines() if line.strip()),
        )

    async def restore_from_backup(self, env: GatewayEnv, kind: str, name: str) -> SyncResult:
        """
        Copy a versioned or golden backup back over the live state directory.

        Handles the current, legacy structured and legacy flat layouts and
        renames a legacy config file to the current name.
        """
        try:
            backup_kind = BackupKind(kind)
        except ValueError:
            return _rejected(
                MalformedInputError(
                    f"Unknown backup type: {kind}",
                    hint="Backup type must be 'versioned' or 'golden'.",
                )
            )

        safe_name = sanitize_backup_name(name)
        if not safe_name:
            return _rejected(MalformedInputError(f"Invalid backup name: {name!r}"))

        error = await self._ensure_storage(env)
        if error:
            return SyncResult(success=False, error=error)

        namespace = GOLDEN_BACKUP_DIR if backup_kind is BackupKind.GOLDEN else VERSIONED_BACKUP_DIR
        backup_path = self.root / namespace / safe_name

        try:
            _proc, verify_logs = await run_command(
                self.executor,
                f'test -d {_q(backup_path)} && echo "exists"',
                QUICK_CHECK_TIMEOUT_MS,
            )
            if "exists" not in verify_logs.stdout:
                return _rejected(BackupNotFoundError(f"Backup not found: {backup_path}"))

            _proc, restore_logs = await run_command(
                self.executor, self._restore_command(backup_path), COPY_TIMEOUT_MS
            )
        except Exception as e:
            log.error("restore.error", exc=e, backup=safe_name)
            return SyncResult(success=False, error="Restore error", details=str(e))

        if "restored" in restore_logs.stdout:
            log.info("restore.complete", kind=backup_kind.value, backup=safe_name)
            return SyncResult(
                success=True,
                details=f"Restored from {backup_kind.value} backup: {safe_name}",
            )
        return SyncResult(
            success=False,
            error="Restore command did not complete",
            details=restore_logs.stderr,
        )

    def _restore_command(self, backup_path: Path) -> str:
        state = self.paths.state_dir
        skills = self.paths.skills_dir
        return f"""
          mkdir -p {_q(state)}
          if [ -d {_q(backup_path / PRODUCT_NAME)} ]; then
            cp -r {_q(backup_path / PRODUCT_NAME)}/. {_q(state)}/
          elif [ -d {_q(backup_path / LEGACY_PRODUCT_NAME)} ]; then
            cp -r {_q(backup_path / LEGACY_PRODUCT_NAME)}/. {_q(state)}/
          elif [ -f {_q(backup_path / CONFIG_FILENAME)} ] || [ -f {_q(backup_path / LEGACY_CONFIG_FILENAME)} ]; then
            cp -r {_q(backup_path)}/. {_q(state)}/
          fi
          if [ -f {_q(state / LEGACY_CONFIG_FILENAME)} ] && [ ! -f {_q(state / CONFIG_FILENAME)} ]; then
            mv {_q(state / LEGACY_CONFIG_FILENAME)} {_q(state / CONFIG_FILENAME)}
          fi
          if [ -d {_q(backup_path / "skills")} ]; then
            mkdir -p {_q(skills)}
            cp -r {_q(backup_path / "skills")}/. {_q(skills)}/
          fi
          cp {_q(backup_path / SYNC_MARKER)} {_q(state / SYNC_MARKER)} 2>/dev/null || true
          echo "restored"
        """
