"""
Client for the external field-extraction service
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..config import (
    EXTRACTION_URL, EXTRACTION_API_KEY, EXTRACTION_HTTP_TIMEOUT_SEC, EXTRACTION_CACHE_SIZE
)
from ..errors import ExtractionFailure
from .cache import BoundedCache

logger = logging.getLogger("extraction")


@dataclass
class ExtractionOptions:
    optimize_for_speed: bool = False
    enable_cache: bool = True


@dataclass
class ExtractionResult:
    confidence: Optional[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


class ExtractionClient:
    """Calls Extract(documentId, options) -> {confidence, metadata}.

    Re-invoking for the same document is safe on the remote side. With
    enable_cache, results are memoized per document in a bounded LRU cache
    and concurrent calls for one document share a single request.
    """

    def __init__(self, url: str = EXTRACTION_URL, api_key: str = EXTRACTION_API_KEY,
                 timeout_sec: float = EXTRACTION_HTTP_TIMEOUT_SEC,
                 cache: Optional[BoundedCache] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.api_key = api_key
        self.timeout_sec = timeout_sec
        self.cache = cache or BoundedCache(EXTRACTION_CACHE_SIZE)
        self._transport = transport

    async def extract(self, document_id: str, options: Optional[ExtractionOptions] = None) -> ExtractionResult:
        options = options or ExtractionOptions()
        if options.enable_cache:
            return await self.cache.get_or_load(document_id, lambda: self._call(document_id, options))
        return await self._call(document_id, options)

    async def _call(self, document_id: str, options: ExtractionOptions) -> ExtractionResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {
            "documentId": document_id,
            "optimizeForSpeed": options.optimize_for_speed,
            "enableCache": options.enable_cache,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self._transport) as client:
                r = await client.post(self.url, json=body, headers=headers)
                r.raise_for_status()
                data = r.json()
        except httpx.TimeoutException as e:
            raise ExtractionFailure(f"extraction http timeout for {document_id}") from e
        except httpx.HTTPStatusError as e:
            raise ExtractionFailure(f"http_{e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ExtractionFailure(f"extraction request failed: {e}") from e
        except ValueError as e:
            raise ExtractionFailure("extraction service returned invalid JSON") from e

        if isinstance(data, dict) and data.get("error"):
            raise ExtractionFailure(str(data["error"]))

        logger.debug("Extraction complete", extra={
            "component": "extraction",
            "document_id": document_id,
            "confidence": data.get("confidence")
        })
        return ExtractionResult(confidence=data.get("confidence"), metadata=data.get("metadata") or {})
