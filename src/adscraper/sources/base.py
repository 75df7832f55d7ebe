from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

import httpx

from adscraper.models import FetchBatch
from adscraper.normalizer import FieldMap
from core.errors import UpstreamError
from core.metrics import record_upstream_duration


class SourceAdapter(ABC):
    """One upstream system that yields raw ad blocks page by page."""

    name: str = "base"
    field_map: FieldMap = FieldMap()
    page_ceiling: int = 1
    status_listener: Callable[[str], Awaitable[None]] | None = None

    @abstractmethod
    async def fetch_next_batch(self, cursor: str | None) -> FetchBatch:
        """Fetch the batch addressed by ``cursor`` (``None`` for the first one)."""

    async def aclose(self) -> None:
        return None

    async def notify(self, message: str) -> None:
        if self.status_listener is not None:
            await self.status_listener(message)


class HttpSourceAdapter(SourceAdapter):
    """Adapter backed by an ``httpx.AsyncClient`` it may or may not own."""

    timeout_ms: int | None = None

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            timeout = httpx.Timeout(self.timeout_ms / 1000) if self.timeout_ms else None
            self._client = httpx.AsyncClient(timeout=timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        started_at = time.monotonic()
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{self.name}_request_failed", message=f"{self.name} request failed: {exc}") from exc
        finally:
            record_upstream_duration(self.name, time.monotonic() - started_at)


def decode_json(response: httpx.Response, source: str):
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamError(f"{source}_response_invalid", response.status_code) from exc


def raise_for_upstream_status(response: httpx.Response, source: str) -> None:
    if response.status_code in {401, 403}:
        raise UpstreamError(f"{source}_auth_failed", response.status_code, f"{source} rejected the API key")
    if response.status_code >= 400:
        raise UpstreamError(
            f"{source}_http_{response.status_code}",
            response.status_code,
            f"{source} returned HTTP {response.status_code}",
        )
