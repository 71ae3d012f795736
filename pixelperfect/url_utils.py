"""Shared URL utilities — validate comparison targets and derive stable slugs."""

from __future__ import annotations

import hashlib
from urllib.parse import urlparse


def is_valid_url(url: str) -> bool:
    """Only absolute http(s) URLs with a host can be captured."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_url(url: str) -> str:
    """Normalize a URL so equivalent spellings compare equal."""
    parsed = urlparse(url)
    path = parsed.path.rstrip("/") or "/"
    query = ""
    if parsed.query:
        params = sorted(parsed.query.split("&"))
        query = "?" + "&".join(params)
    return f"{parsed.scheme}://{parsed.netloc.lower()}{path}{query}"


def url_slug(url: str) -> str:
    """Generate a short stable identifier for a URL."""
    return hashlib.md5(normalize_url(url).encode()).hexdigest()[:12]
