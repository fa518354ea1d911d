"""
Verification of Cloudflare Access JWTs for the admin API.

Access signs a JWT for every request that passed its login and forwards it in
the ``cf-access-jwt-assertion`` header (browsers also carry it in the
``CF_Authorization`` cookie). Signing keys are published per team at
``https://<team>/cdn-cgi/access/certs`` and cached for an hour.
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx
import jwt

from ..config import JWKS_CACHE_TTL_MS
from ..log_config import get_logger
from .cache import TTLCache

log = get_logger("access", service="auth")

ACCESS_HEADER = "cf-access-jwt-assertion"
ACCESS_COOKIE = "CF_Authorization"
ALGORITHMS = ["RS256"]
JWKS_FETCH_TIMEOUT = 10.0

JwksFetcher = Callable[[str], Awaitable[dict[str, Any]]]

_jwks_cache = TTLCache()


class AccessConfigurationError(Exception):
    """Team domain or audience is not configured."""


class AccessVerificationError(Exception):
    """The token is missing, malformed, expired or not meant for this app."""


def normalize_team_domain(team_domain: str) -> str:
    return team_domain.removeprefix("https://").removeprefix("http://").rstrip("/")


def certs_url(team_domain: str) -> str:
    return f"https://{normalize_team_domain(team_domain)}/cdn-cgi/access/certs"


def expected_issuer(team_domain: str) -> str:
    return f"https://{normalize_team_domain(team_domain)}"


def extract_access_token(headers: Mapping[str, str], cookies: Mapping[str, str]) -> str | None:
    """Return the Access JWT from the request header, falling back to the cookie."""
    return headers.get(ACCESS_HEADER) or cookies.get(ACCESS_COOKIE) or None


async def fetch_jwks(team_domain: str) -> dict[str, Any]:
    url = certs_url(team_domain)
    async with httpx.AsyncClient(timeout=JWKS_FETCH_TIMEOUT) as client:
        response = await client.get(url)
        response.raise_for_status()
    log.info("jwks.fetched", url=url)
    return response.json()


def _signing_key(jwks: dict[str, Any], kid: str) -> Any:
    try:
        key_set = jwt.PyJWKSet.from_dict(jwks)
    except jwt.PyJWKSetError as e:
        raise AccessVerificationError(f"No usable signing keys: {e}") from e
    for key in key_set.keys:
        if key.key_id == kid:
            return key.key
    raise AccessVerificationError(f"Unknown signing key: {kid}")


async def verify_access_jwt(
    token: str | None,
    team_domain: str | None,
    audience: str | None,
    cache: TTLCache | None = None,
    fetcher: JwksFetcher = fetch_jwks,
) -> dict[str, Any]:
    """
    Verify an Access JWT and return its claims.

    Args:
        token: The raw JWT
        team_domain: Access team domain, e.g. ``myteam.cloudflareaccess.com``
        audience: Application AUD tag

    Raises:
        AccessConfigurationError: if team domain or audience is not set
        AccessVerificationError: if the token is missing or fails verification
    """
    if not team_domain or not audience:
        raise AccessConfigurationError("CF_ACCESS_TEAM_DOMAIN and CF_ACCESS_AUD must be set")
    if not token:
        raise AccessVerificationError("Missing access token")

    try:
        header = jwt.get_unverified_header(token)
    except jwt.InvalidTokenError as e:
        raise AccessVerificationError(f"Invalid JWT format: {e}") from e

    kid = header.get("kid")
    if not kid:
        raise AccessVerificationError("JWT header missing kid")

    domain = normalize_team_domain(team_domain)
    cache = cache if cache is not None else _jwks_cache
    try:
        jwks = await cache.get_or_refresh(domain, JWKS_CACHE_TTL_MS, lambda: fetcher(domain))
    except httpx.HTTPError as e:
        log.error("jwks.fetch_error", exc=e, team_domain=domain)
        raise AccessVerificationError(f"Failed to fetch signing keys: {e}") from e

    key = _signing_key(jwks, kid)
    try:
        return jwt.decode(
            token,
            key,
            algorithms=ALGORITHMS,
            audience=audience,
            issuer=expected_issuer(domain),
            options={"require": ["exp", "aud", "iss"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise AccessVerificationError("JWT has expired") from e
    except jwt.InvalidAudienceError as e:
        raise AccessVerificationError("JWT audience mismatch") from e
    except jwt.InvalidIssuerError as e:
        raise AccessVerificationError("JWT issuer mismatch") from e
    except jwt.InvalidTokenError as e:
        raise AccessVerificationError(f"Invalid JWT: {e}") from e


def clear_jwks_cache() -> None:
    _jwks_cache.clear()
