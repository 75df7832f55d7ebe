from __future__ import annotations

import httpx

from adscraper.sources.apify import ApifyAdapter
from adscraper.sources.base import SourceAdapter
from adscraper.sources.browser import BrowserAdapter
from adscraper.sources.firecrawl import CrawlAdapter
from adscraper.sources.serpapi import SearchApiAdapter
from adscraper.sources.text import TextPatternAdapter
from core.config import settings
from core.errors import InvalidInput

SOURCES = ("serpapi", "firecrawl", "apify", "browser", "text")


def build_adapter(
    source: str | None,
    url: str,
    *,
    raw_content: str | None = None,
    client: httpx.AsyncClient | None = None,
    page_ceiling: int | None = None,
    max_items: int | None = None,
) -> SourceAdapter:
    key = (source or settings.default_source).strip().lower()
    if key == "serpapi":
        return SearchApiAdapter(url, page_ceiling=page_ceiling, client=client)
    if key == "firecrawl":
        return CrawlAdapter(url, client=client)
    if key == "apify":
        return ApifyAdapter(url, max_items=max_items, client=client)
    if key == "browser":
        return BrowserAdapter(url, page_ceiling=page_ceiling)
    if key == "text":
        return TextPatternAdapter(url, raw_content=raw_content)
    raise InvalidInput("unknown_source", f"Unknown source '{source}', expected one of: {', '.join(SOURCES)}")
