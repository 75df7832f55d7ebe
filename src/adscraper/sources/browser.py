from __future__ import annotations

import json
import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from adscraper.extraction import extract_ad_blocks
from adscraper.models import FetchBatch, RawAdBlock
from adscraper.normalizer import HTML_FIELDS
from adscraper.sources.base import SourceAdapter
from core.config import settings
from core.errors import UpstreamError

logger = logging.getLogger(__name__)

SCROLL_HEIGHT_SCRIPT = "() => document.body.scrollHeight"
SCROLL_TO_BOTTOM_SCRIPT = "() => window.scrollTo(0, document.body.scrollHeight)"
LOAD_MORE_SCRIPT = """
() => {
  const labels = ["show more", "load more", "more results", "continue"];
  const controls = Array.from(document.querySelectorAll('button, [role="button"]'));
  const target = controls.find((el) => {
    const aria = (el.getAttribute("aria-label") || "").toLowerCase();
    const text = (el.textContent || "").trim().toLowerCase();
    return aria.includes("more") || labels.some((label) => text.includes(label));
  });
  if (!target || target.disabled) {
    return false;
  }
  target.click();
  return true;
}
"""


class BrowserAdapter(SourceAdapter):
    """Headless Chromium session over the portal page.

    The first batch is the rendered page; every later batch first clicks a
    "more" control (or scrolls) and returns only blocks not seen before.
    """

    name = "browser"
    field_map = HTML_FIELDS

    def __init__(self, url: str, *, page=None, page_ceiling: int | None = None) -> None:
        self.url = url
        self.page_ceiling = page_ceiling or settings.browser_max_pages
        self._page = page
        self._playwright = None
        self._browser = None
        self._seen: set[str] = set()

    async def fetch_next_batch(self, cursor: str | None) -> FetchBatch:
        step = int(cursor) if cursor else 0
        try:
            if step == 0:
                await self._open()
                items = await self._collect_new_blocks()
                return FetchBatch(items=items, next_cursor="1", has_more=True)

            if not await self._advance():
                logger.info("browser_no_more_content url=%s step=%s", self.url, step)
                return FetchBatch(items=[], next_cursor=None, has_more=False)
            items = await self._collect_new_blocks()
        except PlaywrightError as exc:
            raise UpstreamError("browser_failed", message=f"Browser scraping failed: {exc}") from exc

        # Growth without new records means the page is only repeating itself.
        has_more = bool(items)
        return FetchBatch(items=items, next_cursor=str(step + 1) if has_more else None, has_more=has_more)

    async def aclose(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def _open(self) -> None:
        if self._page is None:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=settings.browser_headless)
            context = await self._browser.new_context(
                user_agent=settings.browser_user_agent,
                viewport={"width": 1920, "height": 1080},
            )
            self._page = await context.new_page()
        await self.notify("Loading page in browser...")
        await self._page.goto(
            self.url,
            wait_until=settings.browser_wait_until,
            timeout=settings.browser_timeout_ms,
        )
        if settings.browser_settle_ms > 0:
            await self._page.wait_for_timeout(settings.browser_settle_ms)

    async def _advance(self) -> bool:
        page = self._page
        before = await page.evaluate(SCROLL_HEIGHT_SCRIPT)
        clicked = bool(await page.evaluate(LOAD_MORE_SCRIPT))
        if clicked:
            await self.notify("Loading more ads...")
            await page.wait_for_timeout(settings.browser_load_more_wait_ms)
        else:
            await page.evaluate(SCROLL_TO_BOTTOM_SCRIPT)
            await page.wait_for_timeout(settings.browser_scroll_wait_ms)
        after = await page.evaluate(SCROLL_HEIGHT_SCRIPT)
        return clicked or (after or 0) > (before or 0)

    async def _collect_new_blocks(self) -> list[RawAdBlock]:
        html = await self._page.content()
        tier, blocks = extract_ad_blocks(html, base_url=self._page.url or self.url)
        fresh: list[RawAdBlock] = []
        for block in blocks:
            key = json.dumps(block, sort_keys=True, default=str)
            if key in self._seen:
                continue
            self._seen.add(key)
            fresh.append(block)
        logger.debug("browser_blocks tier=%s total=%s new=%s", tier, len(blocks), len(fresh))
        return fresh
