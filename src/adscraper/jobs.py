from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from uuid import uuid4

from adscraper.details import fetch_ad_details
from adscraper.enrichment import enrich
from adscraper.models import Job, JobState
from adscraper.orchestrator import FetchOrchestrator
from adscraper.sources.base import SourceAdapter
from adscraper.sources.registry import build_adapter
from core.config import settings
from core.errors import AlreadyRunning, ScraperError
from core.metrics import record_job_duration, record_job_state
from core.security import ensure_portal_url

logger = logging.getLogger(__name__)

Emit = Callable[[str, dict[str, Any]], Awaitable[None]]
AdapterFactory = Callable[..., SourceAdapter]

EVENT_STATUS = "status-update"
EVENT_PROGRESS = "progress-update"
EVENT_COMPLETE = "scraping-complete"
EVENT_ERROR = "error"


@dataclass(frozen=True)
class JobOptions:
    fetch_details: bool = False
    details_limit: int | None = None
    enable_vision: bool = False
    vision_limit: int | None = None
    max_results: int | None = None
    page_ceiling: int | None = None
    raw_content: str | None = None


class JobController:
    """Lifecycle of the scraping job belonging to one session.

    Events go out through ``emit(event, data)``. At most one job is active at
    a time; finished jobs stay readable until the next ``start``.
    """

    def __init__(
        self,
        session_id: str,
        emit: Emit,
        adapter_factory: AdapterFactory | None = None,
        *,
        details_fetcher=fetch_ad_details,
        enricher=enrich,
    ) -> None:
        self.session_id = session_id
        self.emit = emit
        self.adapter_factory = adapter_factory
        self.details_fetcher = details_fetcher
        self.enricher = enricher
        self.job: Job | None = None
        self.stage_stats: dict[str, Any] = {}
        self._task: asyncio.Task | None = None
        self._stale_tasks: set[asyncio.Task] = set()

    async def start(self, url: str, *, source: str | None = None, options: JobOptions | None = None) -> Job:
        if self.job is not None and self.job.active:
            raise AlreadyRunning()
        url = ensure_portal_url(url)
        options = options or JobOptions()
        factory = self.adapter_factory or build_adapter
        adapter = factory(
            source,
            url,
            raw_content=options.raw_content,
            page_ceiling=options.page_ceiling,
            max_items=options.max_results,
        )
        job = Job(id=uuid4().hex, url=url, source=adapter.name)

        async def relay_status(message: str) -> None:
            await self._status(job, message)

        adapter.status_listener = relay_status
        job.transition(JobState.running)
        self.job = job
        self.stage_stats = {}
        if self._task is not None and not self._task.done():
            self._stale_tasks.add(self._task)
            self._task.add_done_callback(self._stale_tasks.discard)
        record_job_state(job.state.value, job.source)
        logger.info("job_started session=%s job_id=%s source=%s url=%s", self.session_id, job.id, job.source, url)
        self._task = asyncio.create_task(self._run(job, adapter, options))
        return job

    async def pause(self) -> None:
        job = self.job
        if job is None or job.state is not JobState.running:
            return
        job.transition(JobState.paused)
        await self._status(job, "Scraping paused")

    async def resume(self) -> None:
        job = self.job
        if job is None or job.state is not JobState.paused:
            return
        job.transition(JobState.running)
        await self._status(job, "Scraping resumed")

    async def stop(self) -> None:
        job = self.job
        if job is None or not job.active:
            return
        job.transition(JobState.stopped)
        logger.info("job_stop_requested session=%s job_id=%s", self.session_id, job.id)
        await self._status(job, "Stopping scraper...")

    async def wait(self) -> Job | None:
        if self._task is not None:
            await self._task
        return self.job

    async def _run(self, job: Job, adapter: SourceAdapter, options: JobOptions) -> None:
        started_at = time.monotonic()
        orchestrator = FetchOrchestrator(adapter, job, on_batch=self._progress, max_records=options.max_results)
        try:
            await self._status(job, f"Starting {adapter.name} scraping...")
            await orchestrator.run()
            if job.state is JobState.running:
                await self._post_stages(job, options)
            if job.state is JobState.running:
                job.transition(JobState.completed)
            await self._complete(job)
        except ScraperError as exc:
            await self._fail(job, exc.message, exc.code)
        except Exception as exc:
            logger.exception("job_crashed session=%s job_id=%s", self.session_id, job.id)
            await self._fail(job, str(exc) or exc.__class__.__name__, "internal_error")
        finally:
            await adapter.aclose()
            record_job_state(job.state.value, job.source)
            record_job_duration(job.source, time.monotonic() - started_at)

    async def _post_stages(self, job: Job, options: JobOptions) -> None:
        if options.fetch_details and job.source == "serpapi" and job.records:
            await self._status(job, "Fetching ad details...")
            updated = await self.details_fetcher(job.records, limit=options.details_limit)
            self.stage_stats["detailsFetched"] = updated
            await self._status(job, f"Fetched details for {updated} ads")

        if options.enable_vision and job.records and job.state is JobState.running:
            if not settings.openai_api_key:
                await self._status(job, "Vision enrichment skipped: vision API key not configured")
                return
            await self._status(job, "Extracting text from ad images...")
            stats = await self.enricher(job.records, limit=options.vision_limit)
            self.stage_stats["vision"] = stats.to_dict()
            await self._status(job, f"Vision processed {stats.successful} of {stats.attempted} ads")

    async def _emit_for(self, job: Job, event: str, data: dict[str, Any]) -> None:
        # A job replaced by a newer start keeps running until its fetch returns; it stays silent.
        if job is not self.job:
            logger.debug("event_dropped_stale session=%s job_id=%s event=%s", self.session_id, job.id, event)
            return
        await self.emit(event, data)

    async def _progress(self, job: Job) -> None:
        await self._emit_for(job, EVENT_PROGRESS, {"adsScraped": len(job.records), "currentPage": job.page_count})

    async def _status(self, job: Job, message: str) -> None:
        await self._emit_for(job, EVENT_STATUS, {"message": message})

    async def _complete(self, job: Job) -> None:
        logger.info(
            "job_finished session=%s job_id=%s state=%s total=%s",
            self.session_id,
            job.id,
            job.state.value,
            len(job.records),
        )
        await self._emit_for(
            job,
            EVENT_COMPLETE,
            {"ads": [record.to_payload() for record in job.records], "total": len(job.records)},
        )

    async def _fail(self, job: Job, message: str, code: str) -> None:
        job.error = message
        job.error_code = code
        job.transition(JobState.failed)
        logger.warning("job_failed session=%s job_id=%s code=%s partial=%s", self.session_id, job.id, code, len(job.records))
        await self._emit_for(job, EVENT_ERROR, {"message": message, "code": code})


class SessionRegistry:
    """Session id -> controller map owned by the serving layer."""

    def __init__(self) -> None:
        self._controllers: dict[str, JobController] = {}

    def get(self, session_id: str) -> JobController | None:
        return self._controllers.get(session_id)

    def controller_for(self, session_id: str, emit: Emit, **kwargs) -> JobController:
        controller = self._controllers.get(session_id)
        if controller is None:
            controller = JobController(session_id, emit, **kwargs)
            self._controllers[session_id] = controller
        return controller

    async def discard(self, session_id: str) -> None:
        controller = self._controllers.pop(session_id, None)
        if controller is not None:
            await controller.stop()
            logger.info("session_discarded session=%s", session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)
