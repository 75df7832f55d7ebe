from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from adscraper.extraction import extract_ad_blocks
from adscraper.models import FetchBatch, RawAdBlock
from adscraper.normalizer import HTML_FIELDS
from adscraper.sources.base import HttpSourceAdapter, decode_json, raise_for_upstream_status
from core.config import settings
from core.errors import NotConfigured, UpstreamError

logger = logging.getLogger(__name__)

_PAGE_FORMATS = ["html", "markdown"]


class CrawlAdapter(HttpSourceAdapter):
    """Firecrawl crawl of the portal page, with a single-page scrape fallback.

    Everything the crawl returns is delivered as one batch.
    """

    name = "firecrawl"
    field_map = HTML_FIELDS
    page_ceiling = 1

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        api_key = api_key or settings.firecrawl_api_key
        if not api_key:
            raise NotConfigured("firecrawl")
        super().__init__(client)
        self.url = url
        self.api_key = api_key
        self.timeout_ms = settings.firecrawl_timeout_ms

    async def fetch_next_batch(self, cursor: str | None) -> FetchBatch:
        await self.notify("Starting Firecrawl scraping...")
        pages = await self._crawl()
        if pages is None:
            await self.notify("Scraping single page with Firecrawl...")
            pages = [await self._scrape_single()]

        items: list[RawAdBlock] = []
        for page in pages:
            tier, blocks = extract_ad_blocks(
                page.get("html") or page.get("rawHtml"),
                page.get("markdown"),
                base_url=_page_url(page) or self.url,
            )
            if blocks:
                logger.info("firecrawl_page_extracted url=%s tier=%s blocks=%s", _page_url(page), tier, len(blocks))
            items.extend(blocks)
        return FetchBatch(items=items, next_cursor=None, has_more=False)

    async def _crawl(self) -> list[dict[str, Any]] | None:
        body = {
            "url": self.url,
            "limit": settings.firecrawl_crawl_limit,
            "maxDepth": settings.firecrawl_max_depth,
            "scrapeOptions": {
                "formats": _PAGE_FORMATS,
                "onlyMainContent": True,
                "waitFor": settings.firecrawl_wait_for_ms,
            },
        }
        response = await self._request("POST", self._endpoint("/v1/crawl"), json=body, headers=self._headers())
        raise_for_upstream_status(response, self.name)
        payload = decode_json(response, self.name)
        if not isinstance(payload, dict):
            raise UpstreamError("firecrawl_response_invalid", response.status_code)
        crawl_id = payload.get("id")
        if not payload.get("success", True) or not crawl_id:
            logger.warning("firecrawl_crawl_not_started url=%s", self.url)
            return None

        status_url = self._endpoint(f"/v1/crawl/{crawl_id}")
        for _ in range(max(1, settings.firecrawl_max_polls)):
            status = await self._get_json(status_url)
            state = status.get("status")
            if state == "completed":
                return await self._collect_pages(status)
            if state in {"failed", "cancelled"}:
                raise UpstreamError("firecrawl_crawl_failed", message=f"Firecrawl crawl {state}")
            await asyncio.sleep(settings.firecrawl_poll_interval_ms / 1000)
        raise UpstreamError("firecrawl_crawl_timeout", message="Firecrawl crawl did not complete in time")

    async def _collect_pages(self, status: dict[str, Any]) -> list[dict[str, Any]]:
        pages = [page for page in status.get("data") or [] if isinstance(page, dict)]
        next_url = status.get("next")
        while next_url:
            chunk = await self._get_json(next_url)
            pages.extend(page for page in chunk.get("data") or [] if isinstance(page, dict))
            next_url = chunk.get("next")
        logger.info("firecrawl_crawl_completed url=%s pages=%s", self.url, len(pages))
        return pages

    async def _scrape_single(self) -> dict[str, Any]:
        body = {
            "url": self.url,
            "formats": _PAGE_FORMATS,
            "onlyMainContent": True,
            "waitFor": settings.firecrawl_wait_for_ms,
        }
        response = await self._request("POST", self._endpoint("/v1/scrape"), json=body, headers=self._headers())
        raise_for_upstream_status(response, self.name)
        payload = decode_json(response, self.name)
        if not isinstance(payload, dict) or not payload.get("success"):
            raise UpstreamError("firecrawl_scrape_failed", response.status_code, "Failed to scrape page with Firecrawl")
        return payload.get("data") or {}

    async def _get_json(self, url: str) -> dict[str, Any]:
        response = await self._request("GET", url, headers=self._headers())
        raise_for_upstream_status(response, self.name)
        payload = decode_json(response, self.name)
        if not isinstance(payload, dict):
            raise UpstreamError("firecrawl_response_invalid", response.status_code)
        return payload

    def _endpoint(self, path: str) -> str:
        return settings.firecrawl_url.rstrip("/") + path

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}


def _page_url(page: dict[str, Any]) -> str | None:
    metadata = page.get("metadata")
    if isinstance(metadata, dict):
        return metadata.get("sourceURL") or metadata.get("url")
    return None
