from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from adscraper.sources import firecrawl
from adscraper.sources.firecrawl import CrawlAdapter
from core.errors import UpstreamError

BASE_DIR = Path(__file__).resolve().parents[1]
HTML_DIR = BASE_DIR / "fixtures" / "html"
PORTAL_URL = "https://adstransparency.google.com/?region=anywhere&domain=example.com"


@pytest.fixture(autouse=True)
def fast_polling(monkeypatch):
    async def fake_sleep(seconds: float) -> None:
        return None

    monkeypatch.setattr(firecrawl.asyncio, "sleep", fake_sleep)


def _adapter(handler) -> CrawlAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CrawlAdapter(PORTAL_URL, api_key="fc-key", client=client)


def _page(name: str, url: str) -> dict:
    return {"html": (HTML_DIR / name).read_text(encoding="utf-8"), "metadata": {"sourceURL": url}}


@pytest.mark.asyncio
async def test_crawl_polls_until_completed_and_follows_next() -> None:
    polls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == "Bearer fc-key"
        path = request.url.path
        if request.method == "POST" and path == "/v1/crawl":
            body = json.loads(request.content)
            assert body["limit"] == 50
            assert body["maxDepth"] == 2
            assert body["scrapeOptions"]["waitFor"] == 3000
            return httpx.Response(200, json={"success": True, "id": "crawl-1"})
        if path == "/v1/crawl/crawl-1":
            polls["count"] += 1
            if polls["count"] == 1:
                return httpx.Response(200, json={"status": "scraping"})
            return httpx.Response(
                200,
                json={
                    "status": "completed",
                    "data": [_page("structured_ads.html", PORTAL_URL)],
                    "next": "https://api.firecrawl.dev/v1/crawl/crawl-1/page-2",
                },
            )
        if path == "/v1/crawl/crawl-1/page-2":
            return httpx.Response(200, json={"status": "completed", "data": [_page("portal_links.html", PORTAL_URL)]})
        return httpx.Response(404)

    batch = await _adapter(handler).fetch_next_batch(None)

    assert polls["count"] == 2
    assert batch.has_more is False
    assert len(batch.items) == 4
    assert {item.get("creative_id") for item in batch.items} >= {"CR111", "CR201", "CR202"}


@pytest.mark.asyncio
async def test_falls_back_to_single_page_scrape() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == "/v1/crawl":
            return httpx.Response(200, json={"success": False})
        if request.url.path == "/v1/scrape":
            return httpx.Response(200, json={"success": True, "data": _page("portal_links.html", PORTAL_URL)})
        return httpx.Response(404)

    batch = await _adapter(handler).fetch_next_batch(None)

    assert paths == ["/v1/crawl", "/v1/scrape"]
    assert [item["creative_id"] for item in batch.items] == ["CR201", "CR202"]


@pytest.mark.asyncio
async def test_failed_crawl_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"success": True, "id": "crawl-2"})
        return httpx.Response(200, json={"status": "failed"})

    with pytest.raises(UpstreamError) as excinfo:
        await _adapter(handler).fetch_next_batch(None)
    assert excinfo.value.code == "firecrawl_crawl_failed"
