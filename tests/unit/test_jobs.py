from __future__ import annotations

import asyncio

import pytest

from adscraper.enrichment import EnrichmentStats
from adscraper.jobs import (
    EVENT_COMPLETE,
    EVENT_ERROR,
    EVENT_PROGRESS,
    JobController,
    JobOptions,
    SessionRegistry,
)
from adscraper.models import FetchBatch, JobState
from adscraper.normalizer import SERPAPI_FIELDS
from adscraper.sources.base import SourceAdapter
from core.config import settings
from core.errors import AlreadyRunning, InvalidInput, UpstreamError

PORTAL_URL = "https://adstransparency.google.com/?region=anywhere&domain=example.com"


def _ads(*ids: str) -> list[dict]:
    return [{"ad_creative_id": cid, "advertiser": "Acme", "image": f"https://img.example.com/{cid}.png"} for cid in ids]


class ScriptedAdapter(SourceAdapter):
    name = "serpapi"
    field_map = SERPAPI_FIELDS
    page_ceiling = 10

    def __init__(self, batches: list, gates: dict[int, asyncio.Event] | None = None) -> None:
        self.batches = list(batches)
        self.gates = gates or {}
        self.calls = 0
        self.closed = False

    async def fetch_next_batch(self, cursor: str | None) -> FetchBatch:
        gate = self.gates.get(self.calls)
        self.calls += 1
        if gate is not None:
            await gate.wait()
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch

    async def aclose(self) -> None:
        self.closed = True


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def __call__(self, event: str, data: dict) -> None:
        self.events.append((event, data))

    def named(self, event: str) -> list[dict]:
        return [data for name, data in self.events if name == event]


@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    monkeypatch.setattr(settings, "orchestrator_batch_delay_ms", 0)
    monkeypatch.setattr(settings, "orchestrator_pause_poll_ms", 1)


def _controller(adapter: SourceAdapter, recorder: Recorder, **kwargs) -> JobController:
    return JobController("session-1", recorder, lambda *args, **kw: adapter, **kwargs)


@pytest.mark.asyncio
async def test_completes_with_valid_records_only() -> None:
    items = _ads("CR1", "CR2", "CR3") + [{"advertiser": ""}]
    adapter = ScriptedAdapter([FetchBatch(items, None, False)])
    recorder = Recorder()
    controller = _controller(adapter, recorder)

    await controller.start(PORTAL_URL)
    job = await controller.wait()

    assert job.state is JobState.completed
    complete = recorder.named(EVENT_COMPLETE)
    assert len(complete) == 1
    assert complete[0]["total"] == 3
    assert [ad["id"] for ad in complete[0]["ads"]] == ["CR1", "CR2", "CR3"]
    assert recorder.named(EVENT_PROGRESS) == [{"adsScraped": 3, "currentPage": 1}]
    assert adapter.closed


@pytest.mark.asyncio
async def test_failure_keeps_partial_records() -> None:
    adapter = ScriptedAdapter(
        [
            FetchBatch(_ads("CR1", "CR2", "CR3", "CR4", "CR5"), "tok-2", True),
            UpstreamError("serpapi_http_500", 500, "serpapi returned HTTP 500"),
        ]
    )
    recorder = Recorder()
    controller = _controller(adapter, recorder)

    await controller.start(PORTAL_URL)
    job = await controller.wait()

    assert job.state is JobState.failed
    assert job.error == "serpapi returned HTTP 500"
    assert job.error_code == "serpapi_http_500"
    assert len(job.records) == 5
    assert recorder.named(EVENT_ERROR) == [{"message": "serpapi returned HTTP 500", "code": "serpapi_http_500"}]
    assert recorder.named(EVENT_COMPLETE) == []


@pytest.mark.asyncio
async def test_double_start_is_rejected() -> None:
    gate = asyncio.Event()
    adapter = ScriptedAdapter([FetchBatch(_ads("CR1"), None, False)], gates={0: gate})
    controller = _controller(adapter, Recorder())

    await controller.start(PORTAL_URL)
    with pytest.raises(AlreadyRunning):
        await controller.start(PORTAL_URL)

    gate.set()
    job = await controller.wait()
    assert job.state is JobState.completed


@pytest.mark.asyncio
async def test_restart_after_completion_is_allowed() -> None:
    adapters = [
        ScriptedAdapter([FetchBatch(_ads("CR1"), None, False)]),
        ScriptedAdapter([FetchBatch(_ads("CR2"), None, False)]),
    ]
    controller = JobController("session-1", Recorder(), lambda *args, **kw: adapters.pop(0))

    await controller.start(PORTAL_URL)
    first = await controller.wait()
    await controller.start(PORTAL_URL)
    second = await controller.wait()

    assert first.id != second.id
    assert [record.id for record in second.records] == ["CR2"]


@pytest.mark.asyncio
async def test_foreign_url_is_invalid_input() -> None:
    controller = _controller(ScriptedAdapter([]), Recorder())
    with pytest.raises(InvalidInput):
        await controller.start("https://example.com/ads")
    assert controller.job is None


@pytest.mark.asyncio
async def test_stop_emits_completion_with_accumulated_records() -> None:
    second_fetch = asyncio.Event()
    adapter = ScriptedAdapter(
        [FetchBatch(_ads("CR1", "CR2"), "tok-2", True), FetchBatch(_ads("CR3"), None, False)],
        gates={1: second_fetch},
    )
    recorder = Recorder()
    controller = _controller(adapter, recorder)

    await controller.start(PORTAL_URL)
    while adapter.calls < 2:
        await asyncio.sleep(0)
    await controller.stop()
    second_fetch.set()
    job = await controller.wait()

    assert job.state is JobState.stopped
    assert len(job.records) == 2
    assert recorder.named(EVENT_COMPLETE)[-1]["total"] == 2


@pytest.mark.asyncio
async def test_pause_and_resume_are_noops_when_idle() -> None:
    recorder = Recorder()
    controller = _controller(ScriptedAdapter([]), recorder)

    await controller.pause()
    await controller.resume()
    await controller.stop()

    assert recorder.events == []


@pytest.mark.asyncio
async def test_post_stages_run_on_natural_completion(monkeypatch) -> None:
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    calls: dict[str, object] = {}

    async def fake_details(records, *, limit=None):
        calls["details"] = (len(records), limit)
        return len(records)

    async def fake_enrich(records, *, limit=None):
        calls["vision"] = (len(records), limit)
        return EnrichmentStats(attempted=2, successful=2)

    adapter = ScriptedAdapter([FetchBatch(_ads("CR1", "CR2"), None, False)])
    controller = _controller(adapter, Recorder(), details_fetcher=fake_details, enricher=fake_enrich)

    await controller.start(
        PORTAL_URL,
        options=JobOptions(fetch_details=True, details_limit=5, enable_vision=True, vision_limit=7),
    )
    job = await controller.wait()

    assert job.state is JobState.completed
    assert calls == {"details": (2, 5), "vision": (2, 7)}
    assert controller.stage_stats["detailsFetched"] == 2
    assert controller.stage_stats["vision"]["successful"] == 2


@pytest.mark.asyncio
async def test_vision_is_skipped_without_key(monkeypatch) -> None:
    monkeypatch.setattr(settings, "openai_api_key", None)

    async def fail_enrich(records, *, limit=None):
        raise AssertionError("enrichment must not run")

    adapter = ScriptedAdapter([FetchBatch(_ads("CR1"), None, False)])
    recorder = Recorder()
    controller = _controller(adapter, recorder, enricher=fail_enrich)

    await controller.start(PORTAL_URL, options=JobOptions(enable_vision=True))
    job = await controller.wait()

    assert job.state is JobState.completed
    assert any("skipped" in data["message"] for data in recorder.named("status-update"))


@pytest.mark.asyncio
async def test_registry_keeps_stopped_session_until_discarded() -> None:
    gate = asyncio.Event()
    adapter = ScriptedAdapter([FetchBatch(_ads("CR1"), None, False)], gates={0: gate})
    registry = SessionRegistry()
    controller = registry.controller_for("abc", Recorder(), adapter_factory=lambda *args, **kw: adapter)

    await controller.start(PORTAL_URL)
    await controller.stop()
    gate.set()
    await controller.wait()

    assert "abc" in registry
    assert registry.get("abc") is controller

    await registry.discard("abc")
    assert "abc" not in registry
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_restart_after_stop_silences_the_replaced_job() -> None:
    gate = asyncio.Event()
    stale = ScriptedAdapter([FetchBatch(_ads("OLD1"), None, False)], gates={0: gate})
    fresh = ScriptedAdapter([FetchBatch(_ads("NEW1"), None, False)])
    adapters = [stale, fresh]
    recorder = Recorder()
    controller = JobController("session-1", recorder, lambda *args, **kw: adapters.pop(0))

    await controller.start(PORTAL_URL)
    while stale.calls < 1:
        await asyncio.sleep(0)
    await controller.stop()
    await controller.start(PORTAL_URL)
    job = await controller.wait()

    gate.set()
    while not stale.closed:
        await asyncio.sleep(0)

    assert [record.id for record in job.records] == ["NEW1"]
    completions = recorder.named(EVENT_COMPLETE)
    assert [[ad["id"] for ad in data["ads"]] for data in completions] == [["NEW1"]]
