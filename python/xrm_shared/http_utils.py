"""xrm_shared.http_utils: response envelope for remote plugin handlers.

Remote handlers sit behind a Lambda function URL / API Gateway and answer
the Dataverse webhook with the standard envelope below.
"""

from __future__ import annotations

import base64
import json
from typing import Any, Dict, Optional


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    """Build a standard API Gateway response."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body, default=str),
    }


def _error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    """Build a standard error response.

    Args:
        status_code: HTTP status code.
        message: Human-readable error message.
        **extra: Additional fields merged into the response payload.
    """
    payload: Dict[str, Any] = {
        "success": False,
        "error": message,
    }
    if extra:
        payload.update(extra)
    return _response(status_code, payload)


def _raw_body(event: Dict[str, Any]) -> Optional[str]:
    """Return the request body as text (handles base64), None when absent."""
    raw = event.get("body")
    if raw is None:
        return None
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    return raw
