from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse

from adscraper.enrichment import run_ocr_batch
from adscraper.export import SHEET_MEDIA_TYPE, export_filename, to_sheet
from adscraper.jobs import EVENT_STATUS, JobController, JobOptions, SessionRegistry
from adscraper.models import Job, JobState
from adscraper.normalizer import APIFY_FIELDS, normalize_batch
from adscraper.sources.apify import FINISHED_STATES, RUNNING_STATES, ApifyAdapter
from api.schemas import ApifyRequest, OcrBatchRequest, ScrapeRequest
from core.config import settings
from core.errors import InvalidInput, NotConfigured, NotFound
from core.security import ensure_portal_url

logger = logging.getLogger(__name__)

router = APIRouter()


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


@router.post("/scrape")
async def scrape(payload: ScrapeRequest) -> JSONResponse:
    return await _run_batch(payload)


@router.get("/scrape")
async def scrape_query(
    url: str | None = None,
    source: str | None = None,
    fetch_details: bool = Query(True, alias="fetchDetails"),
    details_limit: int | None = Query(None, alias="detailsLimit", ge=0),
    max_results: int | None = Query(None, alias="maxResults", ge=1),
    enable_vision: bool = Query(False, alias="enableVision"),
    vision_limit: int | None = Query(None, alias="visionLimit", ge=0),
) -> JSONResponse:
    payload = ScrapeRequest(
        url=url,
        source=source,
        fetch_details=fetch_details,
        details_limit=details_limit,
        max_results=max_results,
        enable_vision=enable_vision,
        vision_limit=vision_limit,
    )
    return await _run_batch(payload)


async def _run_batch(payload: ScrapeRequest) -> JSONResponse:
    session_id = f"batch-{uuid4().hex}"

    async def log_event(event: str, data: dict[str, Any]) -> None:
        if event == EVENT_STATUS:
            logger.debug("batch_status session=%s message=%s", session_id, data.get("message"))

    source = (payload.source or settings.default_source).strip().lower()
    options = JobOptions(
        fetch_details=payload.fetch_details,
        details_limit=payload.details_limit,
        enable_vision=payload.enable_vision,
        vision_limit=payload.vision_limit,
        max_results=payload.max_results,
        page_ceiling=settings.serpapi_batch_max_pages if source == "serpapi" else None,
        raw_content=payload.content,
    )
    controller = JobController(session_id, log_event)
    await controller.start(payload.url, source=source, options=options)
    job = await controller.wait()

    ads = [record.to_payload() for record in job.records]
    if job.state is JobState.failed:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": job.error, "code": job.error_code, "total": len(ads), "ads": ads},
        )
    return JSONResponse(
        content={
            "success": True,
            "total": len(ads),
            "url": job.url,
            "source": job.source,
            "ads": ads,
            "stats": {"pages": job.page_count, **controller.stage_stats},
        }
    )


@router.post("/ocr-batch")
async def ocr_batch(payload: OcrBatchRequest) -> dict[str, Any]:
    if not payload.ads:
        raise InvalidInput("empty_batch", "No ads provided. Expected { ads: [{ id, imageUrl }, ...] }")
    if not settings.openai_api_key:
        raise NotConfigured("vision")
    items = [{"id": item.id, "imageUrl": item.image_url or item.image} for item in payload.ads]
    results, stats = await run_ocr_batch(items)
    return {
        "success": True,
        "processed": len(results),
        "stats": {"attempted": stats.attempted, "successful": stats.successful, "failed": stats.failed},
        "results": results,
    }


@router.post("/scrape-apify")
async def scrape_apify(payload: ApifyRequest) -> JSONResponse:
    adapter = ApifyAdapter(max_items=payload.max_results)
    try:
        if payload.run_id:
            return JSONResponse(content=await _poll_apify(adapter, payload))
        url = ensure_portal_url(payload.url)
        run = await adapter.start_run(url, payload.max_results)
    finally:
        await adapter.aclose()
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={
            "success": True,
            "status": "RUNNING",
            "message": "Scraping started. Poll with runId to get results.",
            "runId": run.id,
            "url": url,
            "source": "apify",
        },
    )


async def _poll_apify(adapter: ApifyAdapter, payload: ApifyRequest) -> dict[str, Any]:
    poll = await adapter.poll_run(
        payload.run_id,
        include_partial=payload.include_partial_results,
        offset=payload.offset,
        limit=payload.limit,
    )
    run = poll.run
    records, _ = normalize_batch(poll.items, adapter.name, APIFY_FIELDS)
    ads = [record.to_payload() for record in records]
    body: dict[str, Any] = {
        "success": run.status in RUNNING_STATES or run.status in FINISHED_STATES,
        "status": run.status,
        "runId": run.id,
        "stats": {
            **run.stats,
            "itemCount": poll.total if poll.total is not None else run.stats.get("itemCount", 0),
        },
    }
    if run.status in FINISHED_STATES:
        body.update(total=len(ads), source="apify", ads=ads)
    elif run.status in RUNNING_STATES:
        body["message"] = "Still running..."
        if poll.total is not None:
            body["total"] = poll.total
        if ads:
            body["partialAds"] = ads
    else:
        body.update(error=f"Run {run.status}", exitCode=run.exit_code)
    return body


@router.get("/export-excel")
async def export_excel(
    session_id: str | None = Query(None, alias="sessionId"),
    registry: SessionRegistry = Depends(get_registry),
) -> Response:
    controller = registry.get(session_id) if session_id else None
    job = controller.job if controller is not None else None
    if job is None or not job.records:
        raise InvalidInput("no_data", "No data to export")
    return Response(
        content=to_sheet(job.records),
        media_type=SHEET_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.get("/jobs/{session_id}")
async def job_status(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict[str, Any]:
    return _require_job(registry, session_id).snapshot()


@router.get("/jobs/{session_id}/results")
async def job_results(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict[str, Any]:
    job = _require_job(registry, session_id)
    return {**job.snapshot(), "ads": [record.to_payload() for record in job.records]}


def _require_job(registry: SessionRegistry, session_id: str) -> Job:
    controller = registry.get(session_id)
    if controller is None or controller.job is None:
        raise NotFound("session_not_found", "No job for this session")
    return controller.job
