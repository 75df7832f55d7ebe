from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable

from adscraper.models import AdRecord
from adscraper.vision import AdVisionFields, extract_ad_fields
from core.config import settings
from core.errors import VisionError

logger = logging.getLogger(__name__)

Extractor = Callable[[str], AdVisionFields]

# Vision field -> record attribute.
_MERGE_FIELDS = (
    ("headline", "headline"),
    ("description", "description"),
    ("call_to_action", "call_to_action"),
    ("visible_url", "display_url"),
    ("brand_name", "brand_name"),
    ("all_text", "extracted_text"),
)


@dataclass
class EnrichmentStats:
    attempted: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


async def enrich(
    records: list[AdRecord],
    *,
    extractor: Extractor | None = None,
    limit: int | None = None,
    batch_size: int | None = None,
    batch_delay_ms: int | None = None,
) -> EnrichmentStats:
    """Merge vision-extracted text into the first ``limit`` records in place.

    Populated fields are never overwritten. A failed call leaves its record
    as it was and is counted, nothing is raised.
    """

    extractor = extractor or extract_ad_fields
    limit = settings.vision_limit if limit is None else limit
    batch_size = max(1, batch_size or settings.vision_batch_size)
    delay_ms = settings.vision_batch_delay_ms if batch_delay_ms is None else batch_delay_ms

    stats = EnrichmentStats()
    prefix = records[:limit]
    for start in range(0, len(prefix), batch_size):
        batch = prefix[start : start + batch_size]
        await asyncio.gather(*(_enrich_one(record, extractor, stats) for record in batch))
        if start + batch_size < len(prefix) and delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)
    logger.info("vision_enrichment_done %s", stats.to_dict())
    return stats


async def _enrich_one(record: AdRecord, extractor: Extractor, stats: EnrichmentStats) -> None:
    image_url = record.primary_image
    if not image_url:
        stats.skipped += 1
        return
    stats.attempted += 1
    try:
        fields = await asyncio.to_thread(extractor, image_url)
    except VisionError as exc:
        stats.failed += 1
        logger.warning("vision_enrichment_failed id=%s code=%s", record.id, exc.code)
        return
    except Exception:
        stats.failed += 1
        logger.exception("vision_enrichment_crashed id=%s", record.id)
        return
    merge_vision_fields(record, fields)
    stats.successful += 1


def merge_vision_fields(record: AdRecord, fields: AdVisionFields) -> None:
    for source_name, attribute in _MERGE_FIELDS:
        value = (getattr(fields, source_name, "") or "").strip()
        if value and not getattr(record, attribute):
            setattr(record, attribute, value)
    record.vision_processed = True


async def run_ocr_batch(
    items: list[dict[str, Any]],
    *,
    extractor: Extractor | None = None,
    max_items: int | None = None,
    batch_size: int | None = None,
    batch_delay_ms: int | None = None,
) -> tuple[list[dict[str, Any]], EnrichmentStats]:
    extractor = extractor or extract_ad_fields
    max_items = settings.ocr_max_items if max_items is None else max_items
    batch_size = max(1, batch_size or settings.ocr_batch_size)
    delay_ms = settings.ocr_batch_delay_ms if batch_delay_ms is None else batch_delay_ms

    stats = EnrichmentStats()
    results: list[dict[str, Any]] = []
    selected = items[:max_items]
    for start in range(0, len(selected), batch_size):
        batch = selected[start : start + batch_size]
        results.extend(await asyncio.gather(*(_ocr_one(item, extractor, stats) for item in batch)))
        if start + batch_size < len(selected) and delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)
    return results, stats


async def _ocr_one(item: dict[str, Any], extractor: Extractor, stats: EnrichmentStats) -> dict[str, Any]:
    item_id = item.get("id")
    image_url = item.get("imageUrl") or item.get("image")
    if not image_url:
        stats.skipped += 1
        return {"id": item_id, "success": False, "error": "No image URL"}
    stats.attempted += 1
    try:
        fields = await asyncio.to_thread(extractor, image_url)
    except VisionError as exc:
        stats.failed += 1
        return {"id": item_id, "success": False, "error": exc.message}
    except Exception as exc:
        stats.failed += 1
        logger.exception("ocr_item_crashed id=%s", item_id)
        return {"id": item_id, "success": False, "error": str(exc) or exc.__class__.__name__}
    stats.successful += 1
    return {"id": item_id, "success": True, "data": vision_payload(fields)}


def vision_payload(fields: AdVisionFields) -> dict[str, str]:
    return {
        "headline": fields.headline,
        "description": fields.description,
        "callToAction": fields.call_to_action,
        "visibleUrl": fields.visible_url,
        "brandName": fields.brand_name,
        "allText": fields.all_text,
    }
