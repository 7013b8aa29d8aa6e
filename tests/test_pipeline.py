from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from qcdata.application import DatasetTransformer
from qcdata.core.config import load_fallback_dataset
from qcdata.core.schema import SourceDescriptor
from qcdata.domain import LoadState
from qcdata.workers.pipeline import PipelineOrchestrator
from qcdata.workers.resolver import RetryPolicy, SourceResolver

FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class StubResponse:
    status_text = "OK"

    def __init__(self, payload, status: int = 200) -> None:
        self._payload = payload
        self.status = status

    @property
    def ok(self) -> bool:
        return self.status < 400

    def json(self):
        return self._payload


async def _no_sleep(delay: float) -> None:
    return None


def _document(status: str = "Complete") -> dict:
    return {
        "overview": {"totalRecords": 1, "totalLots": 1, "overallRFTRate": 1.0, "analysisStatus": status},
        "internalRFT": {},
        "externalRFT": {},
        "processMetrics": {},
        "lotData": {},
    }


def _aggregated() -> list[SourceDescriptor]:
    return [SourceDescriptor(name="complete-data.json", url="complete-data.json", expects_aggregated_document=True)]


def _raw() -> list[SourceDescriptor]:
    return [
        SourceDescriptor(name="internal.json", url="internal.json", domain="Internal"),
        SourceDescriptor(name="external.json", url="external.json", domain="External"),
    ]


def _orchestrator(descriptors, fetch, *, fallback=None, sleep=_no_sleep, retry_policy=None):
    resolver = SourceResolver(descriptors, fetch, fallback=fallback, retry_policy=retry_policy, sleep=sleep)
    return PipelineOrchestrator(resolver, DatasetTransformer(), clock=lambda: FIXED_NOW)


def test_aggregated_document_passes_through_unchanged():
    document = _document()

    async def fetch(url: str):
        return StubResponse(document)

    pipeline = _orchestrator(_aggregated(), fetch)

    state = asyncio.run(pipeline.refresh())

    assert state.data is document
    assert state.error is None
    assert state.is_loading is False
    assert state.last_updated == FIXED_NOW
    assert pipeline.state is state


def test_raw_records_are_transformed():
    payloads = {
        "internal.json": {"records": [
            {"id": "I-1", "date": "2025-01-05", "lot": "B1", "status": "Pass", "department": "Production"},
            {"id": "I-2", "date": "2025-01-06", "lot": "B1", "status": "Fail", "department": "Production"},
        ]},
        "external.json": {"records": [{"id": "E-1", "date": "2025-01-07", "lot": "B1", "status": "Closed"}]},
    }

    async def fetch(url: str):
        return StubResponse(payloads[url])

    pipeline = _orchestrator(_raw(), fetch)

    state = asyncio.run(pipeline.refresh())

    assert state.error is None
    assert state.data["overview"]["totalRecords"] == 3
    assert state.data["internalRFT"]["departmentPerformance"] == [
        {"department": "Production", "pass": 1, "fail": 1, "rftRate": 0.5}
    ]
    assert set(state.file_statuses) == {"internal.json", "external.json"}


def test_total_failure_is_visible_but_degraded():
    async def fetch(url: str):
        raise ConnectionError("offline")

    pipeline = _orchestrator(_aggregated() + _raw(), fetch, fallback=load_fallback_dataset())

    state = asyncio.run(pipeline.refresh())

    assert state.error
    assert state.degraded is True
    assert state.data["overview"]["analysisStatus"] == "Fallback Data"
    assert all(not status.succeeded for status in state.file_statuses.values())


def test_total_failure_without_fallback_has_no_data():
    async def fetch(url: str):
        return StubResponse({}, status=500)

    pipeline = _orchestrator(_aggregated(), fetch)

    state = asyncio.run(pipeline.refresh())

    assert state.data is None
    assert state.last_updated is None
    assert state.error.startswith("Failed to load data")


def test_empty_records_fall_back_to_bundled_dataset():
    async def fetch(url: str):
        return StubResponse({"records": []})

    pipeline = _orchestrator(_raw(), fetch, fallback=load_fallback_dataset())

    state = asyncio.run(pipeline.refresh())

    assert state.data["overview"]["degraded"] is True
    assert "No usable records" in state.error


def test_observers_see_loading_progress_and_can_unsubscribe():
    async def fetch(url: str):
        return StubResponse(_document())

    pipeline = _orchestrator(_aggregated(), fetch)
    seen: list[LoadState] = []
    unsubscribe = pipeline.subscribe(seen.append)

    asyncio.run(pipeline.refresh())

    assert [state.is_loading for state in seen] == [True, True, False]
    assert seen[1].file_statuses["complete-data.json"].succeeded is True

    unsubscribe()
    asyncio.run(pipeline.refresh())
    assert len(seen) == 3


def test_snapshot_matches_presentation_contract():
    async def fetch(url: str):
        return StubResponse(_document())

    pipeline = _orchestrator(_aggregated(), fetch)
    asyncio.run(pipeline.refresh())

    snapshot = pipeline.snapshot()

    assert set(snapshot) == {"isLoading", "error", "data", "lastUpdated", "fileStatus", "refreshData"}
    assert snapshot["lastUpdated"] == FIXED_NOW.isoformat()
    assert snapshot["fileStatus"]["complete-data.json"]["succeeded"] is True
    assert callable(snapshot["refreshData"])


def test_second_refresh_supersedes_the_first():
    calls: list[str] = []

    async def scenario():
        gate = asyncio.Event()
        documents = iter([_document("first"), _document("second")])

        async def fetch(url: str):
            payload = next(documents)
            calls.append(payload["overview"]["analysisStatus"])
            if payload["overview"]["analysisStatus"] == "first":
                await gate.wait()
            return StubResponse(payload)

        pipeline = _orchestrator(_aggregated(), fetch)
        published: list[LoadState] = []
        pipeline.subscribe(published.append)

        first = asyncio.create_task(pipeline.refresh())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        second = await pipeline.refresh()
        gate.set()
        first_result = await first
        return pipeline, published, first_result, second

    pipeline, published, first_result, second = asyncio.run(scenario())

    assert calls == ["first", "second"]
    assert second.data["overview"]["analysisStatus"] == "second"
    assert first_result is second
    assert pipeline.state is second
    final_states = [state for state in published if not state.is_loading]
    assert [state.data["overview"]["analysisStatus"] for state in final_states] == ["second"]


def test_close_stops_further_retries():
    calls: list[str] = []

    async def fetch(url: str):
        calls.append(url)
        raise ConnectionError("offline")

    async def scenario():
        release = asyncio.Event()

        async def blocking_sleep(delay: float) -> None:
            await release.wait()

        pipeline = _orchestrator(_aggregated(), fetch, sleep=blocking_sleep, retry_policy=RetryPolicy(attempts=3))
        cycle = asyncio.create_task(pipeline.refresh())
        for _ in range(5):
            await asyncio.sleep(0)
        await pipeline.close()
        release.set()
        with pytest.raises(asyncio.CancelledError):
            await cycle
        return pipeline

    pipeline = asyncio.run(scenario())

    assert calls == ["complete-data.json"]
    assert pipeline.closed is True
    assert pipeline.state.is_loading is True
    with pytest.raises(RuntimeError):
        asyncio.run(pipeline.refresh())
