from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from adscraper import jobs
from adscraper.sources.serpapi import SearchApiAdapter
from api.main import create_app
from core.config import settings
from tests.integration.mock_target import app as upstream_app

UPSTREAM_URL = "http://upstream"


def upstream_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=upstream_app), base_url=UPSTREAM_URL)


@pytest.fixture
def app():
    return create_app()


@pytest_asyncio.fixture
async def api_client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def serpapi_upstream(monkeypatch):
    """Route the serpapi source to the in-process upstream."""

    monkeypatch.setattr(settings, "serpapi_api_key", "test-key")
    monkeypatch.setattr(settings, "serpapi_url", f"{UPSTREAM_URL}/search")
    monkeypatch.setattr(settings, "orchestrator_batch_delay_ms", 0)
    monkeypatch.setattr(settings, "details_batch_delay_ms", 0)

    def factory(source, url, *, page_ceiling=None, **kwargs):
        adapter = SearchApiAdapter(url, page_ceiling=page_ceiling, client=upstream_client())
        adapter._owns_client = True
        return adapter

    monkeypatch.setattr(jobs, "build_adapter", factory)
    return factory
