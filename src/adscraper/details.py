from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

import httpx

from adscraper.models import AdFormat, AdRecord
from adscraper.normalizer import map_format
from core.config import settings
from core.errors import NotConfigured

logger = logging.getLogger(__name__)

DETAILS_LINK_KEY = "serpapi_details_link"


async def fetch_ad_details(
    records: list[AdRecord],
    *,
    api_key: str | None = None,
    limit: int | None = None,
    batch_size: int | None = None,
    batch_delay_ms: int | None = None,
    client: httpx.AsyncClient | None = None,
) -> int:
    """Fill creative text, links and media from the per-ad details endpoint.

    Only the first ``limit`` records are considered. Failures are logged per
    record and leave that record untouched. Returns how many records were
    updated.
    """

    api_key = api_key or settings.serpapi_api_key
    if not api_key:
        raise NotConfigured("serpapi")
    limit = settings.details_limit if limit is None else limit
    batch_size = max(1, batch_size or settings.details_batch_size)
    delay_ms = settings.details_batch_delay_ms if batch_delay_ms is None else batch_delay_ms

    candidates = [record for record in records[:limit] if _details_link(record)]
    if not candidates:
        return 0

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(settings.details_timeout_ms / 1000))
    updated = 0
    try:
        for start in range(0, len(candidates), batch_size):
            batch = candidates[start : start + batch_size]
            results = await asyncio.gather(*(_fetch_one(client, record, api_key) for record in batch))
            updated += sum(1 for ok in results if ok)
            if start + batch_size < len(candidates) and delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)
    finally:
        if owns_client:
            await client.aclose()
    logger.info("details_fetched attempted=%s updated=%s", len(candidates), updated)
    return updated


async def _fetch_one(client: httpx.AsyncClient, record: AdRecord, api_key: str) -> bool:
    try:
        response = await client.get(_details_link(record), params={"api_key": api_key})
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("details_fetch_failed id=%s error=%s", record.id, exc)
        return False
    if not isinstance(payload, dict) or payload.get("error"):
        logger.warning("details_fetch_rejected id=%s", record.id)
        return False
    merge_details(record, payload)
    return True


def merge_details(record: AdRecord, payload: dict[str, Any]) -> None:
    info = payload.get("search_information") or {}
    creatives = [c for c in payload.get("ad_creatives") or [] if isinstance(c, dict)]

    if record.format is AdFormat.unknown:
        record.format = map_format(info.get("format"))
    for region in info.get("regions") or []:
        code = region.get("region") if isinstance(region, dict) else region
        if code:
            record.regions.add(str(code))

    if creatives:
        creative = creatives[0]
        _fill(record, "headline", creative.get("title"), creative.get("headline"), creative.get("long_headline"))
        _fill(record, "description", creative.get("snippet"), creative.get("description"))
        _fill(record, "call_to_action", creative.get("call_to_action"))
        _fill(record, "display_url", creative.get("visible_link"))
        _fill(record, "destination_url", creative.get("link"), creative.get("destination_url"))
        for image in _strings(c.get("image") for c in creatives):
            if image not in record.images:
                record.images.append(image)
        if not record.video_url:
            record.video_url = creative.get("video_link") or creative.get("raw_video_link") or None

    record.details_fetched = True


def _details_link(record: AdRecord) -> str | None:
    raw = record.raw_data if isinstance(record.raw_data, dict) else {}
    link = raw.get(DETAILS_LINK_KEY)
    return link if isinstance(link, str) and link else None


def _fill(record: AdRecord, attribute: str, *candidates: Any) -> None:
    if getattr(record, attribute):
        return
    for value in _strings(candidates):
        setattr(record, attribute, value)
        return


def _strings(values: Iterable[Any]) -> list[str]:
    return [value.strip() for value in values if isinstance(value, str) and value.strip()]
