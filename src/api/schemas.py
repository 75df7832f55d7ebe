from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ScrapeRequest(_Payload):
    url: str | None = None
    source: str | None = None
    content: str | None = Field(None, description="Page HTML or text for the text source")
    fetch_details: bool = Field(True, alias="fetchDetails")
    details_limit: int | None = Field(None, alias="detailsLimit", ge=0)
    max_results: int | None = Field(None, alias="maxResults", ge=1)
    enable_vision: bool = Field(False, alias="enableVision")
    vision_limit: int | None = Field(None, alias="visionLimit", ge=0)


class StartScrapingData(_Payload):
    url: str | None = None
    source: str | None = None
    content: str | None = None
    fetch_details: bool = Field(False, alias="fetchDetails")
    details_limit: int | None = Field(None, alias="detailsLimit", ge=0)
    max_results: int | None = Field(None, alias="maxResults", ge=1)
    enable_vision: bool = Field(False, alias="enableVision")
    vision_limit: int | None = Field(None, alias="visionLimit", ge=0)


class ChannelFrame(_Payload):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class OcrItem(_Payload):
    id: str | int | None = None
    image_url: str | None = Field(None, alias="imageUrl")
    image: str | None = None


class OcrBatchRequest(_Payload):
    ads: list[OcrItem] = Field(default_factory=list)


class ApifyRequest(_Payload):
    url: str | None = None
    max_results: int | None = Field(None, alias="maxResults", ge=1)
    run_id: str | None = Field(None, alias="runId")
    include_partial_results: bool = Field(False, alias="includePartialResults")
    offset: int = Field(0, ge=0)
    limit: int | None = Field(None, ge=1)
