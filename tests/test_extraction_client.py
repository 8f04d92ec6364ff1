"""
Tests for the HTTP extraction client
"""

import json

import httpx
import pytest

from docintake.errors import ExtractionFailure
from docintake.services.extraction import ExtractionClient, ExtractionOptions


def _client(handler, **kw):
    return ExtractionClient(url="http://extractor.test/extract", api_key="secret",
                            transport=httpx.MockTransport(handler), **kw)


@pytest.mark.asyncio
async def test_extract_posts_document_and_options():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"confidence": 0.82, "metadata": {"total": "12.50"}})

    result = await _client(handler).extract("doc-1", ExtractionOptions(optimize_for_speed=True))

    assert result.confidence == 0.82
    assert result.metadata == {"total": "12.50"}
    body = json.loads(requests[0].content)
    assert body == {"documentId": "doc-1", "optimizeForSpeed": True, "enableCache": True}
    assert requests[0].headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_results_are_cached_per_document():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(200, json={"confidence": 0.5, "metadata": {}})

    client = _client(handler)
    await client.extract("doc-1")
    await client.extract("doc-1")
    await client.extract("doc-1", ExtractionOptions(enable_cache=False))

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_http_error_becomes_extraction_failure():
    client = _client(lambda request: httpx.Response(500, json={"error": "boom"}))
    with pytest.raises(ExtractionFailure) as exc:
        await client.extract("doc-1")
    assert str(exc.value) == "http_500"


@pytest.mark.asyncio
async def test_error_payload_is_a_failure():
    client = _client(lambda request: httpx.Response(200, json={"error": "unreadable scan"}))
    with pytest.raises(ExtractionFailure, match="unreadable scan"):
        await client.extract("doc-1")


@pytest.mark.asyncio
async def test_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExtractionFailure):
        await _client(handler).extract("doc-1")
