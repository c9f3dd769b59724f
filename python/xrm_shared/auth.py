"""xrm_shared.auth: client-credentials access tokens for the Dataverse Web API.

Tokens are cached process-wide per environment URL so warm invocations do
not hit the identity provider. A cached token expires after
TOKEN_CACHE_TTL_SECONDS (50 minutes by default) or at its own ``exp`` claim,
whichever comes first.

The app registration's client secret is read from Secrets Manager
(DATAVERSE_CLIENT_SECRET_ID) and cached for SECRET_TTL_SECONDS.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Dict, Optional, Tuple

import jwt

from . import config
from .aws_clients import _get_secretsmanager

logger = logging.getLogger(__name__)

# Seconds shaved off a token's own expiry so it is never used at the edge.
_EXPIRY_SKEW: float = 60.0

# ---------------------------------------------------------------------------
# Caches
# ---------------------------------------------------------------------------

_token_cache: Dict[str, Tuple[str, float]] = {}

_client_secret_cache: Optional[str] = None
_client_secret_fetched_at: float = 0.0


def _token_key(environment_url: str) -> str:
    return f"dv-token::{environment_url.rstrip('/')}"


def _get_client_secret() -> str:
    """Fetch the app registration client secret from Secrets Manager (cached)."""
    global _client_secret_cache, _client_secret_fetched_at
    now = time.time()
    if _client_secret_cache and (now - _client_secret_fetched_at) < config.SECRET_TTL_SECONDS:
        return _client_secret_cache

    resp = _get_secretsmanager().get_secret_value(SecretId=config.DATAVERSE_CLIENT_SECRET_ID)
    _client_secret_cache = resp["SecretString"]
    _client_secret_fetched_at = now
    return _client_secret_cache


def _token_expiry(token: str, fetched_at: float) -> float:
    """Absolute expiry for a fresh token: cache TTL, capped by the ``exp`` claim."""
    expires_at = fetched_at + config.TOKEN_CACHE_TTL_SECONDS
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return expires_at
    exp = claims.get("exp")
    if isinstance(exp, (int, float)):
        expires_at = min(expires_at, float(exp) - _EXPIRY_SKEW)
    return expires_at


def _request_token(environment_url: str) -> str:
    """Client-credentials grant for ``{environment_url}/.default``."""
    if not config.DATAVERSE_TENANT_ID or not config.DATAVERSE_CLIENT_ID:
        raise ValueError("DATAVERSE_TENANT_ID and DATAVERSE_CLIENT_ID must be set")

    url = f"{config.LOGIN_AUTHORITY}/{config.DATAVERSE_TENANT_ID}/oauth2/v2.0/token"
    form = urllib.parse.urlencode(
        {
            "grant_type": "client_credentials",
            "client_id": config.DATAVERSE_CLIENT_ID,
            "client_secret": _get_client_secret(),
            "scope": f"{environment_url.rstrip('/')}/.default",
        }
    ).encode("utf-8")
    req = urllib.request.Request(
        url,
        method="POST",
        data=form,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    try:
        with urllib.request.urlopen(req, timeout=config.HTTP_TIMEOUT_SECONDS) as resp:
            data = json.loads(resp.read())
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace")
        logger.error("Token request failed: %s %s", exc.code, body)
        raise ValueError(f"Token request failed ({exc.code}): {body}") from exc

    token = data.get("access_token")
    if not token:
        raise ValueError("No access_token in token response")
    return token


def get_access_token(environment_url: str) -> str:
    """Return a cached or freshly issued access token for ``environment_url``."""
    key = _token_key(environment_url)
    now = time.time()
    cached = _token_cache.get(key)
    if cached and now < cached[1]:
        return cached[0]

    token = _request_token(environment_url)
    _token_cache[key] = (token, _token_expiry(token, now))
    logger.info("Issued access token for %s", environment_url)
    return token


def clear_token_cache() -> None:
    _token_cache.clear()
