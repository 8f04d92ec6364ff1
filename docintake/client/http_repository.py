"""
EntityRepository over the service's /v1/entities endpoints
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import API_PREFIX, REPLAY_BASE_URL
from ..errors import ReplaySyncFailure

logger = logging.getLogger("replay.http")


class HttpEntityRepository:

    def __init__(self, base_url: str = REPLAY_BASE_URL, api_key: Optional[str] = None,
                 timeout_sec: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_sec = timeout_sec
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{API_PREFIX}/entities/{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self._transport) as client:
                r = await client.request(method, url, json=body, headers=self._headers())
                r.raise_for_status()
                return r.json() if r.content else None
        except httpx.HTTPStatusError as e:
            raise ReplaySyncFailure(f"{method} {path}: http_{e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ReplaySyncFailure(f"{method} {path}: {e.__class__.__name__}") from e

    async def insert(self, kind: str, data: Dict[str, Any]) -> Any:
        return await self._request("POST", kind, data)

    async def update(self, kind: str, entity_id: str, patch: Dict[str, Any]) -> Any:
        return await self._request("PATCH", f"{kind}/{entity_id}", patch)

    async def delete(self, kind: str, entity_id: str) -> Any:
        return await self._request("DELETE", f"{kind}/{entity_id}")
