"""URL helpers for Ads Transparency Center targets."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from core.errors import InvalidInput

CREATIVE_URL_RE = re.compile(r"/advertiser/(AR[0-9]+)/creative/(CR[0-9]+)")
ADVERTISER_PATH_RE = re.compile(r"advertiser/(AR[0-9]+)")

# SerpAPI expects numeric location criteria ids rather than ISO codes.
REGION_CODES = {
    "US": "2840",
    "GB": "2826",
    "UK": "2826",
    "DE": "2276",
    "FR": "2250",
    "JP": "2392",
    "CA": "2124",
    "AU": "2036",
}


@dataclass(frozen=True)
class TransparencyQuery:
    advertiser_id: str | None = None
    text: str | None = None
    region: str | None = None

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.advertiser_id:
            params["advertiser_id"] = self.advertiser_id
        elif self.text:
            params["text"] = self.text
        if self.region:
            params["region"] = self.region
        return params


def parse_transparency_url(url: str) -> TransparencyQuery:
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)

    def first(key: str) -> str | None:
        values = qs.get(key) or []
        return values[0].strip() if values and values[0].strip() else None

    advertiser_id = first("advertiser_id")
    if not advertiser_id:
        match = ADVERTISER_PATH_RE.search(parsed.path or "")
        advertiser_id = match.group(1) if match else None

    text = None
    if not advertiser_id:
        text = first("domain") or first("text")
        if not text:
            raise InvalidInput("query_missing", "Could not extract domain or advertiser ID from URL")

    return TransparencyQuery(
        advertiser_id=advertiser_id,
        text=text,
        region=map_region(first("region")),
    )


def map_region(region: str | None) -> str | None:
    if not region or region.lower() == "anywhere":
        return None
    return REGION_CODES.get(region.upper(), region)


def parse_creative_ids(url: str | None) -> tuple[str | None, str | None]:
    if not url:
        return None, None
    match = CREATIVE_URL_RE.search(url)
    if not match:
        return None, None
    return match.group(1), match.group(2)


__all__ = [
    "CREATIVE_URL_RE",
    "TransparencyQuery",
    "map_region",
    "parse_creative_ids",
    "parse_transparency_url",
]
