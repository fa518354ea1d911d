"""
Gateway configuration transform.

The gateway's ``openclaw.json`` may come from a restore of an older release.
Before every start it is passed through an ordered list of rules: legacy
cleanups first, then settings derived from the operator environment. Each
rule mutates the working copy and reports whether it changed anything.
"""

import copy
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..config import GATEWAY_PORT, LEGACY_WORKSPACE, STATE_DIR, GatewayEnv

Config = dict[str, Any]

TRUSTED_PROXIES = ["10.1.0.0"]
CURRENT_WORKSPACE = f"{STATE_DIR}/workspace"

OPENAI_MODELS = [
    {"id": "gpt-5.2", "name": "GPT-5.2", "contextWindow": 200000},
    {"id": "gpt-5", "name": "GPT-5", "contextWindow": 200000},
    {"id": "gpt-4.5-preview", "name": "GPT-4.5 Preview", "contextWindow": 128000},
]
OPENAI_ALIASES = {
    "openai/gpt-5.2": "GPT-5.2",
    "openai/gpt-5": "GPT-5",
    "openai/gpt-4.5-preview": "GPT-4.5",
}
ANTHROPIC_MODELS = [
    {"id": "claude-opus-4-5-20251101", "name": "Claude Opus 4.5", "contextWindow": 200000},
    {"id": "claude-sonnet-4-5-20250929", "name": "Claude Sonnet 4.5", "contextWindow": 200000},
    {"id": "claude-haiku-4-5-20251001", "name": "Claude Haiku 4.5", "contextWindow": 200000},
]
ANTHROPIC_ALIASES = {
    "anthropic/claude-opus-4-5-20251101": "Opus 4.5",
    "anthropic/claude-sonnet-4-5-20250929": "Sonnet 4.5",
    "anthropic/claude-haiku-4-5-20251001": "Haiku 4.5",
}
DEFAULT_PRIMARY_MODEL = "anthropic/claude-opus-4-5"


@dataclass(frozen=True)
class ConfigRule:
    name: str
    apply: Callable[[Config, GatewayEnv], bool]


def _section(parent: Config, key: str) -> Config:
    value = parent.get(key)
    if not isinstance(value, dict):
        value = {}
        parent[key] = value
    return value


def _set(target: Config, key: str, value: Any) -> bool:
    if target.get(key) == value:
        return False
    target[key] = value
    return True


def _defaults(config: Config) -> Config:
    return _section(_section(config, "agents"), "defaults")


def ensure_structure(config: Config, env: GatewayEnv) -> bool:
    before = copy.deepcopy(config)
    _section(_defaults(config), "model")
    _section(config, "gateway")
    _section(config, "channels")
    return config != before


def migrate_workspace(config: Config, env: GatewayEnv) -> bool:
    defaults = _defaults(config)
    if defaults.get("workspace") == LEGACY_WORKSPACE:
        defaults["workspace"] = CURRENT_WORKSPACE
        return True
    return False


def drop_invalid_anthropic_provider(config: Config, env: GatewayEnv) -> bool:
    # Older releases wrote provider models without the required 'name' field
    providers = config.get("models", {}).get("providers", {})
    models = providers.get("anthropic", {}).get("models")
    if models and any(not model.get("name") for model in models):
        del providers["anthropic"]
        return True
    return False


def drop_native_skills(config: Config, env: GatewayEnv) -> bool:
    commands = config.get("commands")
    if isinstance(commands, dict) and "nativeSkills" in commands:
        del commands["nativeSkills"]
        return True
    return False


def drop_subagents(config: Config, env: GatewayEnv) -> bool:
    defaults = _defaults(config)
    if "subagents" in defaults:
        del defaults["subagents"]
        return True
    return False


def drop_default_commands(config: Config, env: GatewayEnv) -> bool:
    commands = config.get("commands")
    if not isinstance(commands, dict):
        return False
    if not commands or all(value == "auto" for value in commands.values()):
        del config["commands"]
        return True
    return False


def apply_gateway_settings(config: Config, env: GatewayEnv) -> bool:
    gateway = _section(config, "gateway")
    changed = _set(gateway, "port", GATEWAY_PORT)
    changed |= _set(gateway, "mode", "local")
    changed |= _set(gateway, "trustedProxies", list(TRUSTED_PROXIES))
    if env.gateway_token:
        changed |= _set(_section(gateway, "auth"), "token", env.gateway_token)
    if env.dev_mode:
        changed |= _set(_section(gateway, "controlUi"), "allowInsecureAuth", True)
    return changed


def apply_channels(config: Config, env: GatewayEnv) -> bool:
    channels = _section(config, "channels")
    changed = False

    if env.telegram_bot_token:
        telegram = _section(channels, "telegram")
        changed |= _set(telegram, "botToken", env.telegram_bot_token)
        changed |= _set(telegram, "enabled", True)
        _section(telegram, "dm")
        changed |= _set(telegram, "dmPolicy", env.telegram_dm_policy or "pairing")

    if env.discord_bot_token:
        discord = _section(channels, "discord")
        changed |= _set(discord, "token", env.discord_bot_token)
        changed |= _set(discord, "enabled", True)
        changed |= _set(_section(discord, "dm"), "policy", env.discord_dm_policy or "pairing")

    if env.slack_bot_token and env.slack_app_token:
        slack = _section(channels, "slack")
        changed |= _set(slack, "botToken", env.slack_bot_token)
        changed |= _set(slack, "appToken", env.slack_app_token)
        changed |= _set(slack, "enabled", True)
        dm = _section(slack, "dm")
        changed |= _set(dm, "policy", env.slack_dm_policy or "open")
        # An open policy requires a wildcard allow list
        if dm["policy"] == "open":
            changed |= _set(dm, "allowFrom", ["*"])

    return changed


def _install_provider(
    config: Config,
    provider: str,
    provider_config: Config,
    aliases: dict[str, str],
    primary: str,
) -> None:
    providers = _section(_section(config, "models"), "providers")
    providers[provider] = provider_config
    defaults = _defaults(config)
    allowlist = _section(defaults, "models")
    for model_id, alias in aliases.items():
        allowlist[model_id] = {"alias": alias}
    _section(defaults, "model")["primary"] = primary


def apply_model_provider(config: Config, env: GatewayEnv) -> bool:
    before = copy.deepcopy(config)
    base_url = env.base_url

    if base_url.endswith("/openai"):
        # No apiKey: the gateway falls back to OPENAI_API_KEY
        _install_provider(
            config,
            "openai",
            {"baseUrl": base_url, "api": "openai-responses", "models": copy.deepcopy(OPENAI_MODELS)},
            OPENAI_ALIASES,
            "openai/gpt-5.2",
        )
    elif base_url:
        provider_config: Config = {
            "baseUrl": base_url,
            "api": "anthropic-messages",
            "models": copy.deepcopy(ANTHROPIC_MODELS),
        }
        if env.anthropic_api_key:
            provider_config["apiKey"] = env.anthropic_api_key
        _install_provider(
            config,
            "anthropic",
            provider_config,
            ANTHROPIC_ALIASES,
            "anthropic/claude-opus-4-5-20251101",
        )
    else:
        _section(_defaults(config), "model")["primary"] = DEFAULT_PRIMARY_MODEL

    return config != before


CONFIG_RULES: tuple[ConfigRule, ...] = (
    ConfigRule("ensure_structure", ensure_structure),
    ConfigRule("migrate_workspace", migrate_workspace),
    ConfigRule("drop_invalid_anthropic_provider", drop_invalid_anthropic_provider),
    ConfigRule("drop_native_skills", drop_native_skills),
    ConfigRule("drop_subagents", drop_subagents),
    ConfigRule("drop_default_commands", drop_default_commands),
    ConfigRule("gateway_settings", apply_gateway_settings),
    ConfigRule("channels", apply_channels),
    ConfigRule("model_provider", apply_model_provider),
)


def apply_config_rules(
    config: Config,
    env: GatewayEnv,
    rules: tuple[ConfigRule, ...] = CONFIG_RULES,
) -> tuple[Config, list[str]]:
    """
    Apply ``rules`` in order to a copy of ``config``.

    Returns:
        The transformed config and the names of the rules that changed it
    """
    result = copy.deepcopy(config) if isinstance(config, dict) else {}
    applied = [rule.name for rule in rules if rule.apply(result, env)]
    return result, applied
