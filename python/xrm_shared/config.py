"""xrm_shared.config: environment configuration for the layer.

Values are read from the environment at import time; callers (and tests) may
override the module attributes afterwards.
"""

from __future__ import annotations

import logging
import os

__all__ = [
    "DATAVERSE_CLIENT_ID",
    "DATAVERSE_CLIENT_SECRET_ID",
    "DATAVERSE_TENANT_ID",
    "DATAVERSE_URL",
    "HTTP_TIMEOUT_SECONDS",
    "LOGIN_AUTHORITY",
    "LOG_LEVEL",
    "SECRET_TTL_SECONDS",
    "SECRETS_REGION",
    "SSM_REGION",
    "TOKEN_CACHE_TTL_SECONDS",
    "WEB_API_VERSION",
    "logger",
]

# ---------------------------------------------------------------------------
# Dataverse environment and app registration
# ---------------------------------------------------------------------------

DATAVERSE_URL: str = os.environ.get("DATAVERSE_URL", "").rstrip("/")
DATAVERSE_TENANT_ID: str = os.environ.get("DATAVERSE_TENANT_ID", "")
DATAVERSE_CLIENT_ID: str = os.environ.get("DATAVERSE_CLIENT_ID", "")
DATAVERSE_CLIENT_SECRET_ID: str = os.environ.get(
    "DATAVERSE_CLIENT_SECRET_ID", "dataverse/plugin-client-secret"
)
LOGIN_AUTHORITY: str = os.environ.get("LOGIN_AUTHORITY", "https://login.microsoftonline.com")
WEB_API_VERSION: str = os.environ.get("WEB_API_VERSION", "v9.2")

# ---------------------------------------------------------------------------
# AWS
# ---------------------------------------------------------------------------

SSM_REGION: str = os.environ.get("SSM_REGION", os.environ.get("AWS_REGION", "us-west-2"))
SECRETS_REGION: str = os.environ.get("SECRETS_REGION", SSM_REGION)

# ---------------------------------------------------------------------------
# Caching and timeouts
# ---------------------------------------------------------------------------

TOKEN_CACHE_TTL_SECONDS: int = int(os.environ.get("TOKEN_CACHE_TTL_SECONDS", "3000"))  # 50 min
SECRET_TTL_SECONDS: int = int(os.environ.get("SECRET_TTL_SECONDS", "3600"))
HTTP_TIMEOUT_SECONDS: int = int(os.environ.get("HTTP_TIMEOUT_SECONDS", "15"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()

logger = logging.getLogger("xrm_shared")
logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
