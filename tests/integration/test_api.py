from __future__ import annotations

import pytest

from core.config import settings

PORTAL_URL = "https://adstransparency.google.com/?region=anywhere&domain=acme.example"


@pytest.mark.asyncio
async def test_health_reports_configured_sources(api_client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "serpapi_api_key", "key")
    monkeypatch.setattr(settings, "openai_api_key", None)

    response = await api_client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["configured"]["serpapi"] is True
    assert body["configured"]["vision"] is False


@pytest.mark.asyncio
async def test_scrape_rejects_foreign_url(api_client) -> None:
    response = await api_client.post("/scrape", json={"url": "https://example.com/ads"})

    assert response.status_code == 400
    assert response.json()["code"] == "domain_not_allowed"


@pytest.mark.asyncio
async def test_scrape_without_key_is_not_configured(api_client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "serpapi_api_key", None)

    response = await api_client.post("/scrape", json={"url": PORTAL_URL, "source": "serpapi"})

    assert response.status_code == 500
    assert response.json()["code"] == "serpapi_not_configured"


@pytest.mark.asyncio
async def test_scrape_follows_pagination_and_dedupes(api_client, serpapi_upstream) -> None:
    response = await api_client.post("/scrape", json={"url": PORTAL_URL, "fetchDetails": False})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["source"] == "serpapi"
    assert body["total"] == 3
    assert [ad["id"] for ad in body["ads"]] == ["CR1", "CR2", "CR3"]
    assert body["stats"]["pages"] == 2
    first = body["ads"][0]
    assert first["advertiser"] == "Acme Outdoor"
    assert first["image"] == "https://img.example.com/CR1.png"


@pytest.mark.asyncio
async def test_scrape_query_form_respects_max_results(api_client, serpapi_upstream) -> None:
    response = await api_client.get(
        "/scrape", params={"url": PORTAL_URL, "fetchDetails": "false", "maxResults": 1}
    )

    assert response.status_code == 200
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_scrape_with_no_upstream_results_is_empty_success(api_client, serpapi_upstream) -> None:
    url = "https://adstransparency.google.com/?region=anywhere&domain=empty.example"

    response = await api_client.post("/scrape", json={"url": url, "fetchDetails": False})

    assert response.status_code == 200
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_scrape_upstream_auth_failure_is_reported(api_client, serpapi_upstream, monkeypatch) -> None:
    monkeypatch.setattr(settings, "serpapi_api_key", "revoked")

    response = await api_client.post("/scrape", json={"url": PORTAL_URL, "fetchDetails": False})

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "serpapi_auth_failed"
    assert body["ads"] == []


@pytest.mark.asyncio
async def test_scrape_text_source_uses_supplied_content(api_client) -> None:
    content = (
        "Sponsored\n"
        "Acme Outdoor Gear\n"
        "Tents, stoves and sleeping bags for every trip.\n"
        "https://acme.example.com/outdoor\n"
    )

    response = await api_client.post(
        "/scrape", json={"url": PORTAL_URL, "source": "text", "content": content}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "text"
    assert body["total"] >= 1


@pytest.mark.asyncio
async def test_unknown_source_is_rejected(api_client) -> None:
    response = await api_client.post("/scrape", json={"url": PORTAL_URL, "source": "carrier-pigeon"})

    assert response.status_code == 400
    assert response.json()["code"] == "unknown_source"


@pytest.mark.asyncio
async def test_ocr_batch_requires_items(api_client) -> None:
    response = await api_client.post("/ocr-batch", json={"ads": []})

    assert response.status_code == 400
    assert response.json()["code"] == "empty_batch"


@pytest.mark.asyncio
async def test_ocr_batch_requires_vision_key(api_client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "openai_api_key", None)

    response = await api_client.post("/ocr-batch", json={"ads": [{"id": 1, "imageUrl": "https://img.example.com/a.png"}]})

    assert response.status_code == 500
    assert response.json()["code"] == "vision_not_configured"


@pytest.mark.asyncio
async def test_scrape_apify_requires_token(api_client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "apify_api_token", None)

    response = await api_client.post("/scrape-apify", json={"url": PORTAL_URL})

    assert response.status_code == 500
    assert response.json()["code"] == "apify_not_configured"


@pytest.mark.asyncio
async def test_export_without_data_is_rejected(api_client) -> None:
    response = await api_client.get("/export-excel", params={"sessionId": "missing"})

    assert response.status_code == 400
    assert response.json() == {"error": "No data to export", "code": "no_data"}


@pytest.mark.asyncio
async def test_unknown_job_is_not_found(api_client) -> None:
    response = await api_client.get("/jobs/missing")

    assert response.status_code == 404
    assert response.json()["code"] == "session_not_found"


@pytest.mark.asyncio
async def test_wrong_verb_is_method_not_allowed(api_client) -> None:
    response = await api_client.put("/scrape", json={"url": PORTAL_URL})

    assert response.status_code == 405
    assert response.json()["code"] == "http_405"


@pytest.mark.asyncio
async def test_invalid_body_is_bad_request(api_client) -> None:
    response = await api_client.post("/scrape", json={"url": PORTAL_URL, "maxResults": 0})

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"
