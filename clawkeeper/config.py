"""
Configuration for clawkeeper.

Constants describe the container layout the gateway CLI expects; ``GatewayEnv``
carries operator-supplied settings read from the process environment.
"""

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel

# Port that the gateway listens on inside the container
GATEWAY_PORT = 18789

# Maximum time to wait for the gateway to start (3 minutes)
STARTUP_TIMEOUT_MS = 180_000

# Grace period between killing the gateway and relaunching it
RESTART_GRACE_MS = 2_000

# Remote command polling
POLL_INTERVAL_MS = 500
QUICK_CHECK_TIMEOUT_MS = 5_000
LISTING_TIMEOUT_MS = 10_000
COPY_TIMEOUT_MS = 30_000

# Durable storage
R2_MOUNT_PATH = "/data/openclaw"
R2_BUCKET_NAME = "openclaw-data"
MAX_VERSIONED_BACKUPS = 5
VERSIONED_BACKUP_DIR = "backups"
GOLDEN_BACKUP_DIR = "golden-backup"
SYNC_MARKER = ".last-sync"

# Product naming, current and legacy
PRODUCT_NAME = "openclaw"
LEGACY_PRODUCT_NAME = "clawdbot"
CONFIG_FILENAME = f"{PRODUCT_NAME}.json"
LEGACY_CONFIG_FILENAME = f"{LEGACY_PRODUCT_NAME}.json"

# Local state layout
STATE_DIR = "/root/.openclaw"
WORKSPACE_SUBDIR = "workspace"
SKILLS_SUBDIR = "workspace/skills"
IDENTITY_FILENAME = "IDENTITY.md"
TEMPLATE_FILE = "/root/.openclaw-templates/openclaw.json.template"
LEGACY_WORKSPACE = "/root/clawd"

# Command the supervisor launches, and the signatures that identify a gateway
START_COMMAND = "clawkeeper-start"
GATEWAY_COMMAND_SIGNATURES = (
    f"{PRODUCT_NAME} gateway",
    f"start-{PRODUCT_NAME}.sh",
    START_COMMAND,
    f"{LEGACY_PRODUCT_NAME} gateway",
    f"start-{LEGACY_PRODUCT_NAME}.sh",
)

# Access JWT key set cache lifetime (1 hour)
JWKS_CACHE_TTL_MS = 60 * 60 * 1000


class StatePaths(BaseModel):
    """Filesystem locations used on both sides of a sync."""

    state_dir: Path = Path(STATE_DIR)
    mount_path: Path = Path(R2_MOUNT_PATH)
    template_file: Path = Path(TEMPLATE_FILE)

    @property
    def config_file(self) -> Path:
        return self.state_dir / CONFIG_FILENAME

    @property
    def workspace_dir(self) -> Path:
        return self.state_dir / WORKSPACE_SUBDIR

    @property
    def skills_dir(self) -> Path:
        return self.state_dir / SKILLS_SUBDIR

    @property
    def identity_file(self) -> Path:
        return self.skills_dir / IDENTITY_FILENAME

    @property
    def local_marker(self) -> Path:
        return self.state_dir / SYNC_MARKER

    @property
    def durable_marker(self) -> Path:
        return self.mount_path / SYNC_MARKER


class GatewayEnv(BaseModel):
    """Operator settings, usually read from the process environment."""

    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    ai_gateway_base_url: str | None = None
    anthropic_base_url: str | None = None
    gateway_token: str | None = None
    dev_mode: bool = False
    bind_mode: str | None = None
    telegram_bot_token: str | None = None
    telegram_dm_policy: str | None = None
    discord_bot_token: str | None = None
    discord_dm_policy: str | None = None
    slack_bot_token: str | None = None
    slack_app_token: str | None = None
    slack_dm_policy: str | None = None

    # R2 credentials for bucket mounting
    r2_access_key_id: str | None = None
    r2_secret_access_key: str | None = None
    cf_account_id: str | None = None
    r2_bucket_name: str = R2_BUCKET_NAME

    # Access gate for the admin API
    cf_access_team_domain: str | None = None
    cf_access_aud: str | None = None
    local_dev: bool = False

    @property
    def has_r2_credentials(self) -> bool:
        return bool(self.r2_access_key_id and self.r2_secret_access_key and self.cf_account_id)

    @property
    def has_api_key(self) -> bool:
        return bool(self.anthropic_api_key or self.openai_api_key or self.ai_gateway_base_url)

    @property
    def base_url(self) -> str:
        """AI gateway base URL override without trailing slashes."""
        return (self.ai_gateway_base_url or self.anthropic_base_url or "").rstrip("/")

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> "GatewayEnv":
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            return env.get(name) or None

        return cls(
            anthropic_api_key=get("ANTHROPIC_API_KEY"),
            openai_api_key=get("OPENAI_API_KEY"),
            ai_gateway_base_url=get("AI_GATEWAY_BASE_URL"),
            anthropic_base_url=get("ANTHROPIC_BASE_URL"),
            gateway_token=get("OPENCLAW_GATEWAY_TOKEN"),
            dev_mode=env.get("OPENCLAW_DEV_MODE") == "true",
            bind_mode=get("OPENCLAW_BIND_MODE"),
            telegram_bot_token=get("TELEGRAM_BOT_TOKEN"),
            telegram_dm_policy=get("TELEGRAM_DM_POLICY"),
            discord_bot_token=get("DISCORD_BOT_TOKEN"),
            discord_dm_policy=get("DISCORD_DM_POLICY"),
            slack_bot_token=get("SLACK_BOT_TOKEN"),
            slack_app_token=get("SLACK_APP_TOKEN"),
            slack_dm_policy=get("SLACK_DM_POLICY"),
            r2_access_key_id=get("R2_ACCESS_KEY_ID"),
            r2_secret_access_key=get("R2_SECRET_ACCESS_KEY"),
            cf_account_id=get("CF_ACCOUNT_ID"),
            r2_bucket_name=env.get("R2_BUCKET_NAME") or R2_BUCKET_NAME,
            cf_access_team_domain=get("CF_ACCESS_TEAM_DOMAIN"),
            cf_access_aud=get("CF_ACCESS_AUD"),
            local_dev=env.get("LOCAL_DEV") == "true",
        )
