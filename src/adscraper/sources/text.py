from __future__ import annotations

import logging
import re

from adscraper.extraction import extract_ad_blocks
from adscraper.models import FetchBatch
from adscraper.normalizer import HTML_FIELDS
from adscraper.sources.base import SourceAdapter
from core.errors import InvalidInput

logger = logging.getLogger(__name__)

_MARKUP_RE = re.compile(r"<[a-zA-Z][^>]*>")


class TextPatternAdapter(SourceAdapter):
    """Pattern extraction over content the caller already has."""

    name = "text"
    field_map = HTML_FIELDS
    page_ceiling = 1

    def __init__(self, url: str, *, raw_content: str | None) -> None:
        if not raw_content or not raw_content.strip():
            raise InvalidInput("content_missing", "Text extraction needs page content")
        self.url = url
        self.raw_content = raw_content

    async def fetch_next_batch(self, cursor: str | None) -> FetchBatch:
        if _MARKUP_RE.search(self.raw_content):
            tier, blocks = extract_ad_blocks(self.raw_content, base_url=self.url)
        else:
            tier, blocks = extract_ad_blocks(None, self.raw_content, base_url=self.url)
        logger.info("text_extraction tier=%s blocks=%s", tier, len(blocks))
        return FetchBatch(items=blocks, next_cursor=None, has_more=False)
