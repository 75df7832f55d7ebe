from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from adscraper.models import FetchBatch, RawAdBlock
from adscraper.normalizer import APIFY_FIELDS
from adscraper.sources.base import HttpSourceAdapter, decode_json, raise_for_upstream_status
from core.config import settings
from core.errors import InvalidInput, NotConfigured, NotFound, UpstreamError

logger = logging.getLogger(__name__)

RUNNING_STATES = {"READY", "RUNNING"}
FINISHED_STATES = {"SUCCEEDED", "TIMED-OUT"}
FAILED_STATES = {"FAILED", "ABORTED", "ABORTING", "TIMING-OUT"}


@dataclass(frozen=True)
class ApifyRun:
    id: str
    status: str
    dataset_id: str | None
    stats: dict[str, Any] = field(default_factory=dict)
    exit_code: int | None = None


@dataclass(frozen=True)
class ApifyPoll:
    run: ApifyRun
    items: list[RawAdBlock]
    total: int | None = None


class ApifyAdapter(HttpSourceAdapter):
    """Apify actor run read back through its default dataset.

    Cursors have the form ``<run id>:<dataset id>:<offset>``.
    """

    name = "apify"
    field_map = APIFY_FIELDS

    def __init__(
        self,
        url: str | None = None,
        *,
        api_token: str | None = None,
        max_items: int | None = None,
        page_ceiling: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        api_token = api_token or settings.apify_api_token
        if not api_token:
            raise NotConfigured("apify")
        super().__init__(client)
        self.url = url
        self.api_token = api_token
        self.max_items = max_items or settings.orchestrator_max_records
        self.page_ceiling = page_ceiling or settings.apify_max_polls
        self.timeout_ms = settings.apify_timeout_ms

    async def fetch_next_batch(self, cursor: str | None) -> FetchBatch:
        if cursor is None:
            run = await self.start_run()
            await self.notify("Apify run started, waiting for results...")
            return FetchBatch(items=[], next_cursor=_encode_cursor(run.id, run.dataset_id, 0), has_more=True)

        run_id, dataset_id, offset = _decode_cursor(cursor)
        run = await self.get_run(run_id)
        if run.status in FAILED_STATES:
            raise UpstreamError("apify_run_failed", message=f"Run {run.status}")
        dataset_id = dataset_id or run.dataset_id
        limit = settings.apify_page_limit
        items = await self.list_items(dataset_id, offset, limit) if dataset_id else []
        next_offset = offset + len(items)

        if run.status in FINISHED_STATES:
            has_more = len(items) >= limit
        else:
            has_more = True
            if not items:
                await asyncio.sleep(settings.apify_poll_interval_ms / 1000)
        return FetchBatch(
            items=items,
            next_cursor=_encode_cursor(run.id, dataset_id, next_offset),
            has_more=has_more,
        )

    async def start_run(self, url: str | None = None, max_items: int | None = None) -> ApifyRun:
        target = url or self.url
        if not target:
            raise InvalidInput("missing_url", "Invalid or missing Google Ads Transparency URL")
        body = {"startUrls": [target], "maxItems": max_items or self.max_items}
        response = await self._request(
            "POST",
            self._endpoint(f"/v2/acts/{settings.apify_actor_id}/runs"),
            params={"timeout": settings.apify_run_timeout_sec},
            json=body,
            headers=self._headers(),
        )
        raise_for_upstream_status(response, self.name)
        run = _parse_run(decode_json(response, self.name))
        logger.info("apify_run_started run_id=%s url=%s", run.id, target)
        return run

    async def get_run(self, run_id: str) -> ApifyRun:
        response = await self._request("GET", self._endpoint(f"/v2/actor-runs/{run_id}"), headers=self._headers())
        if response.status_code == 404:
            raise NotFound("apify_run_not_found", "Run not found")
        raise_for_upstream_status(response, self.name)
        return _parse_run(decode_json(response, self.name))

    async def list_items(self, dataset_id: str, offset: int = 0, limit: int | None = None) -> list[RawAdBlock]:
        params: dict[str, int | str] = {"offset": offset, "clean": "true"}
        if limit:
            params["limit"] = limit
        response = await self._request(
            "GET",
            self._endpoint(f"/v2/datasets/{dataset_id}/items"),
            params=params,
            headers=self._headers(),
        )
        raise_for_upstream_status(response, self.name)
        payload = decode_json(response, self.name)
        if isinstance(payload, dict):
            payload = payload.get("items") or (payload.get("data") or {}).get("items") or []
        if not isinstance(payload, list):
            raise UpstreamError("apify_response_invalid", response.status_code)
        return [item for item in payload if isinstance(item, dict)]

    async def dataset_size(self, dataset_id: str) -> int:
        response = await self._request("GET", self._endpoint(f"/v2/datasets/{dataset_id}"), headers=self._headers())
        raise_for_upstream_status(response, self.name)
        payload = decode_json(response, self.name)
        data = payload.get("data") if isinstance(payload, dict) else None
        count = (data or {}).get("itemCount")
        return count if isinstance(count, int) else 0

    async def poll_run(
        self,
        run_id: str,
        *,
        include_partial: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> ApifyPoll:
        run = await self.get_run(run_id)
        if run.status in FINISHED_STATES and run.dataset_id:
            items = await self._drain(run.dataset_id)
            return ApifyPoll(run=run, items=items, total=len(items))

        if run.status in RUNNING_STATES and include_partial and run.dataset_id:
            # Partial reads are best effort; the run status is still reported.
            try:
                total = await self.dataset_size(run.dataset_id)
                items = []
                if total > 0:
                    items = await self.list_items(run.dataset_id, offset, limit or settings.apify_page_limit)
            except UpstreamError as exc:
                logger.warning("apify_partial_results_failed run_id=%s code=%s", run_id, exc.code)
                return ApifyPoll(run=run, items=[])
            return ApifyPoll(run=run, items=items, total=total)

        return ApifyPoll(run=run, items=[])

    async def _drain(self, dataset_id: str) -> list[RawAdBlock]:
        limit = settings.apify_page_limit
        items: list[RawAdBlock] = []
        while True:
            page = await self.list_items(dataset_id, len(items), limit)
            items.extend(page)
            if len(page) < limit:
                return items

    def _endpoint(self, path: str) -> str:
        return settings.apify_url.rstrip("/") + path

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"}


def _parse_run(payload: Any) -> ApifyRun:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict) or not data.get("id"):
        raise UpstreamError("apify_response_invalid")
    exit_code = data.get("exitCode")
    return ApifyRun(
        id=str(data["id"]),
        status=str(data.get("status") or "READY"),
        dataset_id=data.get("defaultDatasetId"),
        stats=data.get("stats") if isinstance(data.get("stats"), dict) else {},
        exit_code=exit_code if isinstance(exit_code, int) else None,
    )


def _encode_cursor(run_id: str, dataset_id: str | None, offset: int) -> str:
    return f"{run_id}:{dataset_id or ''}:{offset}"


def _decode_cursor(cursor: str) -> tuple[str, str | None, int]:
    run_id, _, rest = cursor.partition(":")
    dataset_id, _, offset = rest.partition(":")
    try:
        return run_id, dataset_id or None, int(offset or 0)
    except ValueError as exc:
        raise InvalidInput("apify_cursor_invalid", f"Malformed Apify cursor: {cursor}") from exc
