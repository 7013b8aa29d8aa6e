from __future__ import annotations

import asyncio
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

import httpx

from qcdata.core.schema import SourceDescriptor
from qcdata.infrastructure.http import HttpxFetcher
from qcdata.workers.resolver import SourceResolver


async def _no_sleep(delay: float) -> None:
    return None


def test_fetcher_resolves_relative_urls_and_adapts_responses():
    captured: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(str(request.url))
        if request.url.path.endswith("missing.json"):
            return httpx.Response(404)
        return httpx.Response(200, json={"records": []})

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = HttpxFetcher(base_url="http://qc.example/data/", http_client=client)
        try:
            found = await fetcher("internal.json")
            missing = await fetcher("http://other.example/missing.json")
        finally:
            await fetcher.aclose()
            await client.aclose()
        return found, missing

    found, missing = asyncio.run(scenario())

    assert captured == ["http://qc.example/data/internal.json", "http://other.example/missing.json"]
    assert found.ok is True
    assert found.status == 200
    assert found.json() == {"records": []}
    assert missing.ok is False
    assert missing.status == 404
    assert missing.status_text == "Not Found"


def test_resolver_over_mock_transport():
    attempts: dict[str, int] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit("/", 1)[-1]
        attempts[name] = attempts.get(name, 0) + 1
        if name == "internal.json":
            return httpx.Response(
                200,
                json={"records": [{"id": "I-1", "date": "2025-01-05", "lot": "B1", "status": "Pass"}]},
            )
        if name == "external.json":
            return httpx.Response(200, content=b"not json", headers={"content-type": "application/json"})
        raise httpx.ConnectError("refused", request=request)

    descriptors = [
        SourceDescriptor(name="internal.json", url="internal.json", domain="Internal"),
        SourceDescriptor(name="external.json", url="external.json", domain="External"),
        SourceDescriptor(name="process.json", url="process.json", domain="Process"),
    ]

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = HttpxFetcher(base_url="http://qc.example/", http_client=client)
        try:
            return await SourceResolver(descriptors, fetcher, sleep=_no_sleep).resolve()
        finally:
            await client.aclose()

    resolution = asyncio.run(scenario())

    assert resolution.kind == "records"
    assert attempts == {"internal.json": 1, "external.json": 3, "process.json": 3}
    assert resolution.statuses["process.json"].error_message.startswith("Failed to load process.json")
    assert "not valid JSON" in resolution.statuses["external.json"].error_message
