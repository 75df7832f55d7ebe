from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from adscraper.models import Job, JobState
from adscraper.normalizer import normalize_batch
from adscraper.sources.base import SourceAdapter
from core.config import settings
from core.metrics import record_page

logger = logging.getLogger(__name__)

BatchListener = Callable[[Job], Awaitable[None]]

EXIT_STOPPED = "stopped"
EXIT_EXHAUSTED = "exhausted"
EXIT_PAGE_CEILING = "page_ceiling"
EXIT_MAX_RECORDS = "max_records"


class FetchOrchestrator:
    """Sequential fetch loop driving one adapter into one job.

    The job's ``state`` is the only control input: ``paused`` suspends the
    loop before the next request and ``stopped`` ends it. A batch that was
    in flight when the job stopped is discarded.
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        job: Job,
        *,
        on_batch: BatchListener | None = None,
        batch_delay_ms: int | None = None,
        max_records: int | None = None,
        pause_poll_ms: int | None = None,
    ) -> None:
        self.adapter = adapter
        self.job = job
        self.on_batch = on_batch
        self.batch_delay_ms = settings.orchestrator_batch_delay_ms if batch_delay_ms is None else batch_delay_ms
        self.max_records = max_records or settings.orchestrator_max_records
        self.pause_poll_ms = settings.orchestrator_pause_poll_ms if pause_poll_ms is None else pause_poll_ms
        # Records are deduplicated by upstream creative id only.
        self._seen_creatives = {record.creative_id for record in job.records if record.creative_id}

    async def run(self) -> str:
        job = self.job
        adapter = self.adapter
        while True:
            while job.state is JobState.paused:
                await asyncio.sleep(self.pause_poll_ms / 1000)
            if job.state is not JobState.running:
                return EXIT_STOPPED

            batch = await adapter.fetch_next_batch(job.cursor)
            if job.state is JobState.stopped:
                logger.info("orchestrator_batch_discarded job_id=%s items=%s", job.id, len(batch.items))
                return EXIT_STOPPED

            records, dropped = normalize_batch(batch.items, adapter.name, adapter.field_map)
            accepted = 0
            for record in records:
                if len(job.records) >= self.max_records:
                    break
                if record.creative_id:
                    if record.creative_id in self._seen_creatives:
                        continue
                    self._seen_creatives.add(record.creative_id)
                job.records.append(record)
                accepted += 1
            job.cursor = batch.next_cursor
            job.page_count += 1
            record_page(adapter.name, accepted, dropped)
            logger.debug(
                "orchestrator_batch job_id=%s page=%s accepted=%s dropped=%s total=%s",
                job.id,
                job.page_count,
                accepted,
                dropped,
                len(job.records),
            )
            if self.on_batch is not None:
                await self.on_batch(job)

            if not batch.has_more:
                return EXIT_EXHAUSTED
            if job.page_count >= adapter.page_ceiling:
                logger.info("orchestrator_page_ceiling job_id=%s pages=%s", job.id, job.page_count)
                return EXIT_PAGE_CEILING
            if len(job.records) >= self.max_records:
                logger.info("orchestrator_max_records job_id=%s total=%s", job.id, len(job.records))
                return EXIT_MAX_RECORDS
            if self.batch_delay_ms > 0:
                await asyncio.sleep(self.batch_delay_ms / 1000)
