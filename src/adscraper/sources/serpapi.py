from __future__ import annotations

import asyncio
import logging

import httpx

from adscraper.models import FetchBatch
from adscraper.normalizer import SERPAPI_FIELDS
from adscraper.sources.base import HttpSourceAdapter, decode_json, raise_for_upstream_status
from adscraper.urls import parse_transparency_url
from core.config import settings
from core.errors import NotConfigured, RateLimited, UpstreamError
from core.metrics import record_rate_limited

logger = logging.getLogger(__name__)

_NO_RESULTS_MARKER = "hasn't returned any results"


class SearchApiAdapter(HttpSourceAdapter):
    """Paginated SerpAPI ``google_ads_transparency_center`` search."""

    name = "serpapi"
    field_map = SERPAPI_FIELDS

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        page_ceiling: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        api_key = api_key or settings.serpapi_api_key
        if not api_key:
            raise NotConfigured("serpapi")
        super().__init__(client)
        self.api_key = api_key
        self.query = parse_transparency_url(url)
        self.page_ceiling = page_ceiling or settings.serpapi_max_pages
        self.timeout_ms = settings.serpapi_timeout_ms
        self.total_results: int | None = None

    async def fetch_next_batch(self, cursor: str | None) -> FetchBatch:
        # A 429 retries the same cursor; the page ceiling bounds the retries.
        attempts = max(1, self.page_ceiling)
        for attempt in range(attempts):
            try:
                return await self._fetch_page(cursor)
            except RateLimited:
                record_rate_limited(self.name)
                if attempt >= attempts - 1:
                    raise
                logger.warning("serpapi_rate_limited cursor=%s attempt=%s", cursor, attempt + 1)
                await self.notify("Rate limited, waiting...")
                await asyncio.sleep(settings.serpapi_rate_limit_backoff_ms / 1000)
        raise RateLimited("serpapi_rate_limited")

    async def _fetch_page(self, cursor: str | None) -> FetchBatch:
        params: dict[str, str | int] = {
            "engine": settings.serpapi_engine,
            "api_key": self.api_key,
            "num": settings.serpapi_page_size,
            **self.query.to_params(),
        }
        if cursor:
            params["next_page_token"] = cursor

        response = await self._request("GET", settings.serpapi_url, params=params)
        if response.status_code == 429:
            raise RateLimited("serpapi_rate_limited")
        raise_for_upstream_status(response, self.name)
        payload = decode_json(response, self.name)
        if not isinstance(payload, dict):
            raise UpstreamError("serpapi_response_invalid", response.status_code)

        error = payload.get("error")
        if error:
            if _NO_RESULTS_MARKER in str(error):
                logger.info("serpapi_no_results query=%s", self.query)
                return FetchBatch(items=[], next_cursor=None, has_more=False)
            raise UpstreamError("serpapi_error", response.status_code, str(error))

        total = (payload.get("search_information") or {}).get("total_results")
        if isinstance(total, int):
            self.total_results = total

        items = [item for item in payload.get("ad_creatives") or [] if isinstance(item, dict)]
        token = (payload.get("serpapi_pagination") or {}).get("next_page_token") or None
        return FetchBatch(items=items, next_cursor=token, has_more=bool(token))
