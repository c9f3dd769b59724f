"""xrm_shared.service: thin Dataverse Web API client for remote handlers.

In-process plugins get their organization service from the host's service
factory. Remote handlers (Lambda) use WebApiServiceFactory instead, which
builds a WebApiService acting as the requested user via the MSCRMCallerID
header.
"""

from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.request
from typing import Any, Dict, Iterable, Optional

from . import config
from .auth import get_access_token

logger = logging.getLogger(__name__)

_ENTITY_ID_RE = re.compile(r"\(([0-9a-fA-F-]{36})\)\s*$")


class WebApiService:
    def __init__(self, environment_url: str, caller_id: Optional[str] = None) -> None:
        if not environment_url:
            raise ValueError("Dataverse environment URL is not set")
        self.environment_url = environment_url.rstrip("/")
        self.caller_id = caller_id

    @property
    def base_url(self) -> str:
        return f"{self.environment_url}/api/data/{config.WEB_API_VERSION}"

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ):
        headers = {
            "Authorization": f"Bearer {get_access_token(self.environment_url)}",
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }
        if self.caller_id:
            headers["MSCRMCallerID"] = str(self.caller_id)
        data = None
        if body is not None:
            data = json.dumps(body, default=str).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if extra_headers:
            headers.update(extra_headers)

        req = urllib.request.Request(
            f"{self.base_url}/{path}", method=method, data=data, headers=headers
        )
        try:
            with urllib.request.urlopen(req, timeout=config.HTTP_TIMEOUT_SECONDS) as resp:
                raw = resp.read()
                return (json.loads(raw) if raw else None), dict(resp.headers or {})
        except urllib.error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="replace")
            logger.error("Web API %s %s failed: %s %s", method, path, exc.code, body_text)
            raise ValueError(f"Web API {method} {path} failed ({exc.code}): {body_text}") from exc

    def retrieve(
        self, entity_set: str, record_id: str, columns: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        path = f"{entity_set}({record_id})"
        if columns:
            path += "?$select=" + ",".join(columns)
        data, _ = self._request("GET", path)
        return data or {}

    def create(self, entity_set: str, attributes: Dict[str, Any]) -> Optional[str]:
        _, headers = self._request("POST", entity_set, attributes)
        entity_id = headers.get("OData-EntityId") or headers.get("odata-entityid") or ""
        match = _ENTITY_ID_RE.search(entity_id)
        return match.group(1) if match else None

    def update(self, entity_set: str, record_id: str, attributes: Dict[str, Any]) -> None:
        self._request("PATCH", f"{entity_set}({record_id})", attributes, {"If-Match": "*"})

    def delete(self, entity_set: str, record_id: str) -> None:
        self._request("DELETE", f"{entity_set}({record_id})")


class WebApiServiceFactory:
    """Organization service factory for handlers running outside the host."""

    def __init__(self, environment_url: Optional[str] = None) -> None:
        self.environment_url = environment_url or config.DATAVERSE_URL

    def create_organization_service(self, user_id: Optional[str]) -> WebApiService:
        return WebApiService(self.environment_url, user_id)
