from __future__ import annotations

import html
import re
from urllib.parse import urljoin, urlparse


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def normalize_url(url: str) -> str:
    """Dedup key for a URL: host without ``www.`` plus path without trailing slash.

    Scheme, query string and fragment are ignored.
    """
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url
    host = (parsed.hostname or "").lower()
    if not host:
        return url
    if host.startswith("www."):
        host = host[4:]
    return host + parsed.path.rstrip("/")


def absolute_url(base_url: str, href: str) -> str | None:
    href = (href or "").strip()
    if not href or href.startswith("#") or href.lower().startswith("javascript:"):
        return None
    try:
        resolved = urljoin(base_url, href)
    except ValueError:
        return None
    return resolved if is_valid_url(resolved) else None


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def strip_html(text: str) -> str:
    """Drop tags and decode entities from short provider snippets."""
    return collapse_whitespace(html.unescape(re.sub(r"<[^>]*>", "", text or "")))

