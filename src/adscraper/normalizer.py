from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from adscraper.models import (
    PRESENT_DATE,
    UNKNOWN_ADVERTISER,
    UNKNOWN_DATE,
    AdFormat,
    AdRecord,
    RawAdBlock,
)

logger = logging.getLogger(__name__)

_FORMAT_TABLE = {
    "text": AdFormat.text,
    "image": AdFormat.display,
    "video": AdFormat.video,
}

# Epoch values above this are milliseconds rather than seconds.
_MILLIS_THRESHOLD = 1e11


@dataclass(frozen=True)
class FieldMap:
    """Upstream keys for each canonical field, first non-empty value wins."""

    id: tuple[str, ...] = ("id",)
    advertiser_id: tuple[str, ...] = ("advertiser_id",)
    creative_id: tuple[str, ...] = ("creative_id",)
    advertiser: tuple[str, ...] = ("advertiser",)
    headline: tuple[str, ...] = ("headline",)
    description: tuple[str, ...] = ("description",)
    call_to_action: tuple[str, ...] = ("call_to_action",)
    display_url: tuple[str, ...] = ("display_url",)
    destination_url: tuple[str, ...] = ("destination_url",)
    details_link: tuple[str, ...] = ("details_link",)
    images: tuple[str, ...] = ("images",)
    video_url: tuple[str, ...] = ("video_url",)
    format: tuple[str, ...] = ("format",)
    first_shown: tuple[str, ...] = ("first_shown",)
    last_shown: tuple[str, ...] = ("last_shown",)
    date_range: tuple[str, ...] = ("date_range",)
    regions: tuple[str, ...] = ("regions",)


SERPAPI_FIELDS = FieldMap(
    id=("ad_creative_id",),
    creative_id=("ad_creative_id",),
    headline=("headline", "title"),
    description=("description", "text"),
    display_url=("display_url", "visible_link"),
    destination_url=("destination_url", "landing_page"),
    images=("image", "image_url"),
    date_range=(),
    regions=("regions", "targeted_regions"),
)

APIFY_FIELDS = FieldMap(
    id=("creativeId",),
    advertiser_id=("advertiserId",),
    creative_id=("creativeId",),
    advertiser=("advertiserName",),
    headline=(),
    description=(),
    call_to_action=(),
    display_url=(),
    destination_url=(),
    details_link=("adUrl", "adLink"),
    images=("archiveImageUrl", "variations"),
    video_url=(),
    first_shown=("firstShown",),
    last_shown=("lastShown",),
    date_range=(),
    regions=("creativeRegions",),
)

HTML_FIELDS = FieldMap(
    id=("creative_id",),
    headline=("title",),
    destination_url=("url",),
    first_shown=(),
    last_shown=(),
)


def normalize(raw: Any, source: str, field_map: FieldMap | None = None) -> AdRecord:
    fields = field_map or FieldMap()
    item: RawAdBlock = raw if isinstance(raw, dict) else {}

    first_raw = _first(item, fields.first_shown)
    last_raw = _first(item, fields.last_shown)
    first_shown = format_shown_date(first_raw) or UNKNOWN_DATE
    last_shown = format_shown_date(last_raw) or PRESENT_DATE
    date_range = _text(_first(item, fields.date_range))
    if not date_range or first_raw or last_raw:
        date_range = f"{first_shown} - {last_shown}"

    video_url = _text(_first(item, fields.video_url)) or None
    record = AdRecord(
        id="",
        advertiser=_text(_first(item, fields.advertiser)) or UNKNOWN_ADVERTISER,
        advertiser_id=_text(_first(item, fields.advertiser_id)),
        creative_id=_text(_first(item, fields.creative_id)),
        headline=_text(_first(item, fields.headline)),
        description=_text(_first(item, fields.description)),
        call_to_action=_text(_first(item, fields.call_to_action)),
        display_url=_text(_first(item, fields.display_url)),
        destination_url=_text(_first(item, fields.destination_url)),
        details_link=_text(_first(item, fields.details_link)),
        images=collect_images(item, fields.images),
        video_url=video_url,
        format=map_format(_first(item, fields.format)),
        first_shown=first_shown,
        last_shown=last_shown,
        date_range=date_range,
        regions=collect_regions(item, fields.regions),
        source=source,
        raw_data=raw,
    )
    record.id = _text(_first(item, fields.id)) or content_id(record, source)
    return record


def normalize_batch(
    items: Iterable[Any],
    source: str,
    field_map: FieldMap | None = None,
) -> tuple[list[AdRecord], int]:
    accepted: list[AdRecord] = []
    dropped = 0
    for item in items:
        record = normalize(item, source, field_map)
        if is_valid_record(record):
            accepted.append(record)
        else:
            dropped += 1
    if dropped:
        logger.debug("normalizer_dropped source=%s count=%s", source, dropped)
    return accepted, dropped


def is_valid_record(record: AdRecord) -> bool:
    return bool(
        (record.advertiser and record.advertiser != UNKNOWN_ADVERTISER)
        or record.details_link
        or record.destination_url
        or record.images
        or record.headline
        or record.description
    )


def map_format(value: Any) -> AdFormat:
    if not isinstance(value, str):
        return AdFormat.unknown
    return _FORMAT_TABLE.get(value.strip().lower(), AdFormat.unknown)


def format_shown_date(value: Any) -> str | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    moment: datetime | None = None
    if isinstance(value, (int, float)):
        moment = _from_epoch(float(value))
    elif isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return None
        try:
            moment = _from_epoch(float(cleaned))
        except ValueError:
            try:
                moment = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
            except ValueError:
                return cleaned
    if moment is None:
        return None
    return f"{moment.month}/{moment.day}/{moment.year}"


def collect_images(item: RawAdBlock, keys: tuple[str, ...]) -> list[str]:
    images: list[str] = []
    for key in keys:
        value = item.get(key)
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            url = _image_url(candidate)
            if url and url not in images:
                images.append(url)
        if images:
            break
    return images


def collect_regions(item: RawAdBlock, keys: tuple[str, ...]) -> set[str]:
    regions: set[str] = set()
    for key in keys:
        value = item.get(key)
        if not isinstance(value, list):
            continue
        for entry in value:
            if isinstance(entry, dict):
                code = entry.get("region") or entry.get("code") or entry.get("region_name")
            else:
                code = entry
            code = _text(code)
            if code:
                regions.add(code)
    return regions


def content_id(record: AdRecord, source: str) -> str:
    parts = [
        record.advertiser if record.advertiser != UNKNOWN_ADVERTISER else "",
        record.advertiser_id,
        record.creative_id,
        record.headline,
        record.description,
        record.call_to_action,
        record.display_url,
        record.destination_url,
        record.details_link,
        ",".join(record.images),
        record.video_url or "",
    ]
    if any(parts):
        material = "|".join([*parts, record.first_shown, record.last_shown])
    else:
        material = json.dumps(record.raw_data, sort_keys=True, default=str)
    digest = hashlib.sha1(material.encode("utf-8")).hexdigest()[:16]
    return f"{source or 'ad'}_{digest}"


def _first(item: RawAdBlock, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = item.get(key)
        if value is None or value == "" or value == []:
            continue
        return value
    return None


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list, bool)):
        return ""
    return str(value).strip()


def _image_url(candidate: Any) -> str | None:
    if isinstance(candidate, dict):
        fmt = str(candidate.get("format") or "image").lower()
        if fmt != "image":
            return None
        candidate = candidate.get("link") or candidate.get("url") or candidate.get("image")
    url = _text(candidate)
    if not url or url.startswith("data:"):
        return None
    return url


def _from_epoch(seconds: float) -> datetime | None:
    if seconds > _MILLIS_THRESHOLD:
        seconds /= 1000
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
