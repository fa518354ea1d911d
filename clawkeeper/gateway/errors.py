"""
Error taxonomy for gateway supervision and durable storage.

Every error carries an operator-facing ``hint``. Storage operations convert
these into structured results; supervision raises them to its caller.
"""

OOM_SIGNATURES = ("heap out of memory", "OOM", "Out of memory", "Killed")


class GatewayError(Exception):
    """Base class for classified gateway failures."""

    default_hint = "Check the container logs for details."
    kind = "gateway_error"

    def __init__(self, message: str, hint: str | None = None, details: str | None = None):
        super().__init__(message)
        self.hint = hint or self.default_hint
        self.details = details


class ConfigurationMissingError(GatewayError):
    """A required credential or API key is not set."""

    default_hint = "ANTHROPIC_API_KEY is not set. Add it to the container environment."


class GatewayStartError(GatewayError):
    """The startup command could not be launched."""


class StartupTimeoutError(GatewayError):
    """The gateway did not open its port in time."""

    default_hint = "The gateway did not open its port in time. Check the startup logs."


class ResourceExhaustionError(GatewayError):
    """The gateway ran out of memory while starting."""

    default_hint = "Gateway ran out of memory. Try again or check for memory leaks."


class MountError(GatewayError):
    """The durable bucket could not be mounted."""

    default_hint = "Check R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY and CF_ACCOUNT_ID."


class BackupNotFoundError(GatewayError):
    """A named backup does not exist."""

    default_hint = "List available backups and pick an existing name."
    kind = "not_found"


class MalformedInputError(GatewayError):
    """A caller-supplied value was rejected."""

    default_hint = "Backup names may only contain letters, digits, '-' and '_'."
    kind = "malformed_input"


def has_oom_signature(text: str) -> bool:
    return any(signature in text for signature in OOM_SIGNATURES)
