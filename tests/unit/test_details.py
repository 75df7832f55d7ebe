from __future__ import annotations

import httpx
import pytest

from adscraper.details import fetch_ad_details
from adscraper.models import AdFormat, AdRecord

DETAILS_URL = "https://serpapi.com/search.json?engine=google_ads_transparency_center_ad_details&creative_id="


def _record(record_id: str, with_link: bool = True, **fields) -> AdRecord:
    raw = {"serpapi_details_link": DETAILS_URL + record_id} if with_link else {}
    return AdRecord(id=record_id, raw_data=raw, **fields)


def _details(creative_id: str) -> dict:
    return {
        "search_information": {"format": "image", "regions": [{"region": "US"}, {"region": "CA"}]},
        "ad_creatives": [
            {
                "title": f"Title {creative_id}",
                "snippet": "Snippet text",
                "call_to_action": "Learn more",
                "visible_link": "acme.example",
                "link": "https://acme.example/landing",
                "image": "https://img.example.com/1.png",
            },
            {"image": "https://img.example.com/2.png"},
        ],
    }


@pytest.mark.asyncio
async def test_details_fill_empty_fields_only() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        creative_id = request.url.params["creative_id"]
        if creative_id == "CR2":
            return httpx.Response(500)
        return httpx.Response(200, json=_details(creative_id))

    records = [
        _record("CR1", headline="Existing headline"),
        _record("CR2"),
        _record("CR3", with_link=False),
    ]
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        updated = await fetch_ad_details(records, api_key="key", batch_size=1, batch_delay_ms=0, client=client)

    assert updated == 1
    assert len(seen) == 2
    assert all(request.url.params["api_key"] == "key" for request in seen)

    first = records[0]
    assert first.headline == "Existing headline"
    assert first.description == "Snippet text"
    assert first.call_to_action == "Learn more"
    assert first.display_url == "acme.example"
    assert first.destination_url == "https://acme.example/landing"
    assert first.images == ["https://img.example.com/1.png", "https://img.example.com/2.png"]
    assert first.format is AdFormat.display
    assert first.regions == {"US", "CA"}
    assert first.details_fetched is True

    assert records[1].details_fetched is False
    assert records[2].details_fetched is False


@pytest.mark.asyncio
async def test_details_respect_limit() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=_details("x"))

    records = [_record(f"CR{n}") for n in range(4)]
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        updated = await fetch_ad_details(records, api_key="key", limit=2, batch_delay_ms=0, client=client)

    assert updated == 2
    assert calls == 2
    assert [record.details_fetched for record in records] == [True, True, False, False]
