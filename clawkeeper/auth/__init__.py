from .access import (
    AccessConfigurationError,
    AccessVerificationError,
    clear_jwks_cache,
    extract_access_token,
    fetch_jwks,
    verify_access_jwt,
)
from .cache import TTLCache

__all__ = [
    "AccessConfigurationError",
    "AccessVerificationError",
    "TTLCache",
    "clear_jwks_cache",
    "extract_access_token",
    "fetch_jwks",
    "verify_access_jwt",
]
