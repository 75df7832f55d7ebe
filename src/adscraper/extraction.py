from __future__ import annotations

import logging
import re
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from adscraper.models import RawAdBlock
from adscraper.urls import CREATIVE_URL_RE, parse_creative_ids

logger = logging.getLogger(__name__)

AD_SELECTORS = (
    "[data-creative-id]",
    ".eLNT1d",
    ".commercial-unit-desktop-rhs",
    ".ads-ad",
    ".mnr-c",
    ".uEierd",
    ".VqFMTc",
    ".cu-container",
    '[role="listitem"]',
    ".g-blk",
)
TITLE_SELECTOR = 'h3, .BNeawe, .LC20lb, .ads-creative-headline, [role="heading"]'
DESCRIPTION_SELECTOR = ".VwiC3b, .BNeawe, .ads-creative-text, .yXK7lf, p"
ADVERTISER_ATTRIBUTES = ("data-advertiser-name", "data-advertiser")

_DATE_PATTERNS = (
    re.compile(r"\d{1,2}/\d{1,2}/\d{4}\s*-\s*\d{1,2}/\d{1,2}/\d{4}"),
    re.compile(r"\d{4}-\d{2}-\d{2}\s*-\s*\d{4}-\d{2}-\d{2}"),
    re.compile(r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+\d{1,2},?\s+\d{4}", re.IGNORECASE),
)
_URL_RE = re.compile(r"https?://[^\s\"'<>)]+")
_AD_MARKER_RE = re.compile(r"\b(?:Ad|Sponsored)\b")
_BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")
_MIN_DESCRIPTION_CHARS = 10
_MIN_BLOCK_CHARS = 20

TIER_STRUCTURED = "structured"
TIER_PORTAL_PATTERN = "portal_pattern"
TIER_PARAGRAPH = "paragraph"


def extract_ad_blocks(
    html: str | None,
    text: str | None = None,
    base_url: str | None = None,
) -> tuple[str | None, list[RawAdBlock]]:
    """Recover ad-like blocks from a page, trying each heuristic tier in order.

    The first tier that yields anything wins; later tiers are not consulted.
    """

    tree = HTMLParser(html) if html else None
    if tree is not None:
        blocks = extract_structured_blocks(tree, base_url)
        if blocks:
            return TIER_STRUCTURED, blocks

    blocks = extract_portal_pattern_blocks(html or text or "", base_url)
    if blocks:
        return TIER_PORTAL_PATTERN, blocks

    if not text and tree is not None:
        text = page_text(tree)
    blocks = extract_paragraph_blocks(text or "")
    if blocks:
        return TIER_PARAGRAPH, blocks

    logger.debug("extraction_empty base_url=%s", base_url)
    return None, []


def extract_structured_blocks(tree: HTMLParser, base_url: str | None = None) -> list[RawAdBlock]:
    blocks: list[RawAdBlock] = []
    seen: set[int] = set()
    for selector in AD_SELECTORS:
        for node in tree.css(selector):
            if node.mem_id in seen:
                continue
            seen.add(node.mem_id)
            block = _block_from_node(node, base_url)
            if block is not None:
                blocks.append(block)
    return blocks


def extract_portal_pattern_blocks(markup: str, base_url: str | None = None) -> list[RawAdBlock]:
    blocks: list[RawAdBlock] = []
    seen: set[str] = set()
    for match in CREATIVE_URL_RE.finditer(markup):
        advertiser_id, creative_id = match.group(1), match.group(2)
        if creative_id in seen:
            continue
        seen.add(creative_id)
        link = match.group(0)
        blocks.append(
            {
                "advertiser_id": advertiser_id,
                "creative_id": creative_id,
                "details_link": urljoin(base_url, link) if base_url else link,
            }
        )
    return blocks


def extract_paragraph_blocks(text: str) -> list[RawAdBlock]:
    blocks: list[RawAdBlock] = []
    for chunk in _BLOCK_SPLIT_RE.split(text or ""):
        if len(chunk.strip()) <= _MIN_BLOCK_CHARS:
            continue
        url_match = _URL_RE.search(chunk)
        if not url_match and not _AD_MARKER_RE.search(chunk):
            continue
        lines = [line.strip() for line in chunk.splitlines() if line.strip()]
        if len(lines) < 2:
            continue
        blocks.append(
            {
                "title": lines[0],
                "description": " | ".join(lines[1:]),
                "url": url_match.group(0) if url_match else "",
                "images": [],
                "format": "text",
                "date_range": extract_date_range(chunk),
            }
        )
    return blocks


def extract_date_range(text: str) -> str | None:
    for pattern in _DATE_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return match.group(0)
    return None


def page_text(tree: HTMLParser) -> str:
    root = tree.body or tree.root
    if root is None:
        return ""
    return root.text(separator="\n")


def _block_from_node(node: Node, base_url: str | None) -> RawAdBlock | None:
    title_node = node.css_first(TITLE_SELECTOR)
    title = title_node.text(strip=True) if title_node is not None else ""

    descriptions: list[str] = []
    for desc in node.css(DESCRIPTION_SELECTOR):
        value = desc.text(strip=True)
        if value and len(value) > _MIN_DESCRIPTION_CHARS and value != title and value not in descriptions:
            descriptions.append(value)

    link_node = node.css_first("a[href]")
    href = (link_node.attributes.get("href") or "").strip() if link_node is not None else ""
    if href and base_url:
        href = urljoin(base_url, href)

    images: list[str] = []
    for img in node.css("img"):
        src = (img.attributes.get("src") or "").strip()
        if src and not src.startswith("data:") and src.startswith("http") and src not in images:
            images.append(src)

    if not title and not descriptions:
        return None

    content = node.text(separator=" ")
    if node.css_first("video") is not None or "Video" in content:
        ad_format = "video"
    elif images:
        ad_format = "image"
    else:
        ad_format = "text"

    advertiser_id, creative_id = parse_creative_ids(href)
    creative_id = creative_id or (node.attributes.get("data-creative-id") or None)
    advertiser = None
    for attribute in ADVERTISER_ATTRIBUTES:
        advertiser = node.attributes.get(attribute)
        if advertiser:
            break

    block: RawAdBlock = {
        "title": title,
        "description": " | ".join(descriptions),
        "images": images,
        "format": ad_format,
        "date_range": extract_date_range(content),
    }
    if advertiser:
        block["advertiser"] = advertiser.strip()
    if advertiser_id:
        block["advertiser_id"] = advertiser_id
    if creative_id:
        block["creative_id"] = creative_id
    if href and CREATIVE_URL_RE.search(href):
        block["details_link"] = href
    elif href:
        block["url"] = href
    return block
