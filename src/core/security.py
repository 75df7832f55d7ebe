from __future__ import annotations

from urllib.parse import urlparse

from core.config import settings
from core.errors import InvalidInput

_INVALID_URL_MESSAGE = "Invalid or missing Google Ads Transparency URL"


def _portal_domains() -> list[str]:
    raw = settings.portal_domain or ""
    return [entry.strip().lower().rstrip(".") for entry in raw.split(",") if entry.strip()]


def _host_matches(host: str, entry: str) -> bool:
    if entry == "*":
        return True
    base = entry[2:] if entry.startswith("*.") else entry
    return host == base or host.endswith(f".{base}")


def is_portal_host(host: str | None) -> bool:
    if not host:
        return False
    host = host.lower().rstrip(".")
    return any(_host_matches(host, entry) for entry in _portal_domains())


def ensure_portal_url(url: str | None) -> str:
    """Return the stripped URL when it points at the transparency portal."""

    if not url or not isinstance(url, str):
        raise InvalidInput("missing_url", _INVALID_URL_MESSAGE)
    cleaned = url.strip()
    parsed = urlparse(cleaned)
    if parsed.scheme not in {"http", "https"}:
        raise InvalidInput("invalid_scheme", _INVALID_URL_MESSAGE)
    if parsed.username or parsed.password:
        raise InvalidInput("invalid_url", _INVALID_URL_MESSAGE)
    if not is_portal_host(parsed.hostname):
        raise InvalidInput("domain_not_allowed", _INVALID_URL_MESSAGE)
    return cleaned
