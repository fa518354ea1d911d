"""Environment passed to the gateway startup command."""

from ..config import R2_MOUNT_PATH, GatewayEnv

# (GatewayEnv attribute, variable name in the gateway environment)
FORWARDED_SETTINGS = (
    ("anthropic_api_key", "ANTHROPIC_API_KEY"),
    ("openai_api_key", "OPENAI_API_KEY"),
    ("ai_gateway_base_url", "AI_GATEWAY_BASE_URL"),
    ("anthropic_base_url", "ANTHROPIC_BASE_URL"),
    ("gateway_token", "OPENCLAW_GATEWAY_TOKEN"),
    ("bind_mode", "OPENCLAW_BIND_MODE"),
    ("telegram_bot_token", "TELEGRAM_BOT_TOKEN"),
    ("telegram_dm_policy", "TELEGRAM_DM_POLICY"),
    ("discord_bot_token", "DISCORD_BOT_TOKEN"),
    ("discord_dm_policy", "DISCORD_DM_POLICY"),
    ("slack_bot_token", "SLACK_BOT_TOKEN"),
    ("slack_app_token", "SLACK_APP_TOKEN"),
    ("slack_dm_policy", "SLACK_DM_POLICY"),
)


def build_env_vars(env: GatewayEnv, r2_mounted: bool) -> dict[str, str]:
    """
    Build environment variables for the gateway container process.

    Only settings that are actually set are forwarded.

    Args:
        env: Operator settings
        r2_mounted: Whether R2 storage was successfully mounted

    Returns:
        Environment variables to merge into the startup command's environment
    """
    env_vars: dict[str, str] = {}

    for attribute, name in FORWARDED_SETTINGS:
        value = getattr(env, attribute)
        if value:
            env_vars[name] = value

    if env.dev_mode:
        env_vars["OPENCLAW_DEV_MODE"] = "true"

    # Tell the startup entrypoint where durable state lives
    if r2_mounted:
        env_vars["OPENCLAW_STATE_BACKUP_DIR"] = R2_MOUNT_PATH

    return env_vars
