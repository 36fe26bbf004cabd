"""
URL normalization helpers shared by matching, chain lookups and loop checks.
"""

from __future__ import annotations

import re
from urllib.parse import unquote, urljoin, urlparse

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
# Runs of slashes, except the "//" that follows a scheme.
_MULTI_SLASH = re.compile(r"(?<!:)/{2,}")


def normalize_url(url: str) -> str:
    """
    Clean a configured or requested URL for matching.

    Strips surrounding whitespace and control characters and collapses
    repeated slashes. Case is preserved; comparisons are case-insensitive.
    """
    if not url:
        return ""
    cleaned = _CONTROL_CHARS.sub("", url.strip())
    return _MULTI_SLASH.sub("/", cleaned)


def normalize_request_url(url: str) -> str:
    """Percent-decode then normalize an incoming request URL."""
    return normalize_url(unquote(url or ""))


def split_query_string(url: str) -> tuple[str, str]:
    """Split "url?query" into (url, query). Query excludes the "?"."""
    base, sep, query = url.partition("?")
    return base, query if sep else ""


def strip_query_string(url: str) -> str:
    return split_query_string(url)[0]


def is_absolute_url(url: str) -> bool:
    """Check if URL is absolute (has scheme and host)."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)


def to_lookup_path(url: str) -> str:
    """
    Turn a destination into the normalized path used for chain lookups.

    Absolute URLs contribute their path; relative ones gain a leading slash.
    """
    if is_absolute_url(url):
        path = urlparse(url).path or "/"
    else:
        path = "/" + strip_query_string(url).lstrip("/")
    return normalize_url(path)


def uri_to_path(uri: str) -> str:
    """Content URI ("blog/post") to site path ("/blog/post")."""
    return "/" + uri.strip().lstrip("/")


def make_absolute(destination: str, base_url: str | None) -> str:
    """Resolve a relative destination against the site's base URL."""
    if is_absolute_url(destination) or not base_url:
        return destination
    return urljoin(base_url.rstrip("/") + "/", destination.lstrip("/"))


def append_query_string(destination: str, query: str) -> str:
    if not query:
        return destination
    separator = "&" if "?" in destination else "?"
    return f"{destination}{separator}{query}"
