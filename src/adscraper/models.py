from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

UNKNOWN_ADVERTISER = "Unknown Advertiser"
UNKNOWN_DATE = "Unknown"
PRESENT_DATE = "Present"

RawAdBlock = dict[str, Any]


class AdFormat(str, Enum):
    text = "Text"
    display = "Display"
    video = "Video"
    unknown = "Unknown"


@dataclass
class AdRecord:
    id: str
    advertiser: str = UNKNOWN_ADVERTISER
    advertiser_id: str = ""
    creative_id: str = ""
    headline: str = ""
    description: str = ""
    call_to_action: str = ""
    display_url: str = ""
    destination_url: str = ""
    details_link: str = ""
    images: list[str] = field(default_factory=list)
    video_url: str | None = None
    format: AdFormat = AdFormat.unknown
    first_shown: str = UNKNOWN_DATE
    last_shown: str = PRESENT_DATE
    date_range: str = f"{UNKNOWN_DATE} - {PRESENT_DATE}"
    regions: set[str] = field(default_factory=set)
    source: str = ""
    details_fetched: bool = False
    vision_processed: bool = False
    brand_name: str = ""
    extracted_text: str = ""
    raw_data: Any = None

    @property
    def primary_image(self) -> str | None:
        return self.images[0] if self.images else None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "advertiserId": self.advertiser_id,
            "creativeId": self.creative_id,
            "advertiser": self.advertiser,
            "headline": self.headline,
            "description": self.description,
            "callToAction": self.call_to_action,
            "displayUrl": self.display_url,
            "destinationUrl": self.destination_url,
            "detailsLink": self.details_link,
            "images": list(self.images),
            "image": self.primary_image,
            "videoUrl": self.video_url,
            "format": self.format.value,
            "firstShown": self.first_shown,
            "lastShown": self.last_shown,
            "dateRange": self.date_range,
            "regions": sorted(self.regions),
            "source": self.source,
            "detailsFetched": self.details_fetched,
            "visionProcessed": self.vision_processed,
            "brandName": self.brand_name,
            "extractedText": self.extracted_text,
            "rawData": self.raw_data,
        }


@dataclass(frozen=True)
class FetchBatch:
    items: list[RawAdBlock]
    next_cursor: str | None
    has_more: bool


class JobState(str, Enum):
    idle = "idle"
    running = "running"
    paused = "paused"
    stopped = "stopped"
    completed = "completed"
    failed = "failed"


@dataclass
class Job:
    id: str
    url: str
    source: str
    state: JobState = JobState.idle
    records: list[AdRecord] = field(default_factory=list)
    cursor: str | None = None
    page_count: int = 0
    error: str | None = None
    error_code: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def active(self) -> bool:
        return self.state in {JobState.running, JobState.paused}

    def transition(self, state: JobState) -> None:
        self.state = state
        self.updated_at = datetime.now(timezone.utc)

    def snapshot(self) -> dict[str, Any]:
        return {
            "jobId": self.id,
            "url": self.url,
            "state": self.state.value,
            "source": self.source,
            "pageCount": self.page_count,
            "total": len(self.records),
            "error": self.error,
            "code": self.error_code,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
