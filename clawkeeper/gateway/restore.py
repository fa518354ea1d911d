"""
Startup restore decision.

Runs once per container boot, before the gateway starts. Durable state is
pulled down over local state only when the durable sync marker is strictly
newer than the local one. Works directly on the container filesystem.
"""

import json
import shutil
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel

from ..config import (
    CONFIG_FILENAME,
    GATEWAY_PORT,
    GOLDEN_BACKUP_DIR,
    LEGACY_CONFIG_FILENAME,
    LEGACY_PRODUCT_NAME,
    PRODUCT_NAME,
    VERSIONED_BACKUP_DIR,
    StatePaths,
)
from ..log_config import get_logger

log = get_logger("restore", service="gateway")

EPOCH = datetime.fromtimestamp(0, UTC)

# Never copied from the volume root when restoring the legacy flat layout
_ROOT_EXCLUDES = {VERSIONED_BACKUP_DIR, GOLDEN_BACKUP_DIR, PRODUCT_NAME, LEGACY_PRODUCT_NAME, "skills"}


class RestoreOutcome(BaseModel):
    restored: bool = False
    layout: str | None = None
    skills_restored: bool = False
    config_initialized: bool = False


def parse_marker(text: str | None) -> datetime:
    """Parse a sync marker; anything unparseable counts as the epoch."""
    if not text:
        return EPOCH
    try:
        value = datetime.fromisoformat(text.strip())
    except ValueError:
        return EPOCH
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def should_restore(durable_marker: str | None, local_marker: str | None) -> bool:
    if durable_marker is None:
        return False
    if local_marker is None:
        return True
    return parse_marker(durable_marker) > parse_marker(local_marker)


def read_marker(path: Path) -> str | None:
    try:
        return path.read_text().strip()
    except (FileNotFoundError, IsADirectoryError, PermissionError):
        return None


def minimal_config(paths: StatePaths) -> dict:
    return {
        "agents": {"defaults": {"workspace": str(paths.workspace_dir)}},
        "gateway": {"port": GATEWAY_PORT, "mode": "local"},
    }


def _detect_layout(root: Path) -> tuple[str, Path] | None:
    """Return (layout name, source directory) in priority order."""
    if (root / PRODUCT_NAME / CONFIG_FILENAME).is_file():
        return "current", root / PRODUCT_NAME
    if (root / LEGACY_PRODUCT_NAME / LEGACY_CONFIG_FILENAME).is_file():
        return "legacy", root / LEGACY_PRODUCT_NAME
    if (root / LEGACY_CONFIG_FILENAME).is_file():
        return "legacy_flat", root
    return None


def _copy_tree(source: Path, dest: Path, flat: bool = False) -> None:
    root = str(source)

    def ignore(directory: str, names: list[str]) -> list[str]:
        if not flat or directory != root:
            return []
        return [name for name in names if name in _ROOT_EXCLUDES]

    shutil.copytree(source, dest, dirs_exist_ok=True, ignore=ignore, symlinks=True)


def _migrate_legacy_config(state_dir: Path) -> None:
    """Move a restored legacy config over whatever config is already present."""
    legacy = state_dir / LEGACY_CONFIG_FILENAME
    current = state_dir / CONFIG_FILENAME
    if legacy.is_file():
        legacy.replace(current)
        log.info("restore.config_migrated", source=legacy.name, target=current.name)


def restore_on_startup(paths: StatePaths | None = None) -> RestoreOutcome:
    """
    Pull durable state into the local state directory when it is newer.

    Returns:
        What was restored and whether the config had to be initialized
    """
    paths = paths or StatePaths()
    outcome = RestoreOutcome()
    root = paths.mount_path

    paths.state_dir.mkdir(parents=True, exist_ok=True)
    paths.skills_dir.mkdir(parents=True, exist_ok=True)

    durable_marker = read_marker(paths.durable_marker)
    local_marker = read_marker(paths.local_marker)
    restore = should_restore(durable_marker, local_marker)
    log.info(
        "restore.decision",
        durable_marker=durable_marker,
        local_marker=local_marker,
        restore=restore,
    )

    layout = _detect_layout(root)
    if layout and restore:
        name, source = layout
        _copy_tree(source, paths.state_dir, flat=name == "legacy_flat")
        if name != "current":
            _migrate_legacy_config(paths.state_dir)
        outcome.restored = True
        outcome.layout = name
        log.info("restore.complete", layout=name, source=str(source))
    elif layout is None and root.is_dir():
        log.info("restore.no_backup_data", mount_path=str(root))
    elif layout is None:
        log.info("restore.not_mounted", mount_path=str(root))

    durable_skills = root / "skills"
    if restore and durable_skills.is_dir() and any(durable_skills.iterdir()):
        shutil.copytree(durable_skills, paths.skills_dir, dirs_exist_ok=True, symlinks=True)
        outcome.skills_restored = True
        log.info("restore.skills_complete", source=str(durable_skills))

    # Skills-only restores record the marker too so they are not repeated every boot
    if outcome.restored or outcome.skills_restored:
        shutil.copyfile(paths.durable_marker, paths.local_marker)

    if not paths.config_file.exists():
        if paths.template_file.is_file():
            shutil.copyfile(paths.template_file, paths.config_file)
        else:
            paths.config_file.write_text(json.dumps(minimal_config(paths), indent=2))
        outcome.config_initialized = True
        log.info("restore.config_initialized", from_template=paths.template_file.is_file())

    return outcome
