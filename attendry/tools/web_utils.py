from __future__ import annotations

from urllib.parse import urlparse, urlunparse


def is_valid_url(url: str) -> bool:
    """Absolute http(s) URL with a host."""
    if not isinstance(url, str) or not url.strip() or any(ch.isspace() for ch in url.strip()):
        return False
    try:
        result = urlparse(url.strip())
        return result.scheme in ("http", "https") and bool(result.hostname)
    except ValueError:
        return False


def extract_domain(url: str) -> str:
    """Lower-cased host without a leading ``www.``; empty string when unparsable."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def url_path(url: str) -> str:
    try:
        return (urlparse(url).path or "").lower()
    except ValueError:
        return ""


def normalize_url_key(url: str) -> str:
    """Dedup key: lower-cased, fragment dropped, trailing slash stripped."""
    raw = url.strip()
    try:
        parsed = urlparse(raw)
        raw = urlunparse(parsed._replace(fragment=""))
    except ValueError:
        pass
    return raw.lower().rstrip("/")
