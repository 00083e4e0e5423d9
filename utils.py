#!/usr/bin/env python3
"""
Utility functions for the feed aggregation system.

Shared helpers used by the parser, the ingestion cycle, the query service and
the HTTP layer: URL validation, HTML-to-text conversion and timestamp
formatting/parsing.
"""

from datetime import datetime, timezone
from typing import Optional
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from config import get_logger

# Module-specific logger
logger = get_logger("utils")

ALLOWED_URL_SCHEMES = ("http", "https")

_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.S)
_WHITESPACE_RE = re.compile(r"\s+")


def validate_url(url: str) -> bool:
    """Check that a string is an absolute http(s) URL.

    Args:
        url: The URL string to validate

    Returns:
        True for ``http``/``https`` URLs with a host; False for relative paths,
        other schemes (``javascript:``, ``ftp:``, ...) and malformed strings.
    """
    if not url or not isinstance(url, str):
        return False

    url = url.strip()
    if not url or any(ch.isspace() for ch in url):
        return False

    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() in ALLOWED_URL_SCHEMES and bool(parsed.netloc)


def html_to_text(html_content: Optional[str]) -> str:
    """Reduce an HTML fragment to plain text.

    CDATA wrappers are unwrapped, tags removed, HTML entities decoded and
    whitespace collapsed. Never raises; unparseable input is returned stripped.
    """
    if not html_content:
        return ""

    text = _CDATA_RE.sub(r"\1", str(html_content))
    try:
        soup = BeautifulSoup(text, "html.parser")
        for tag in soup(["script", "style"]):
            tag.decompose()
        text = soup.get_text(" ")
    except Exception as e:
        logger.debug(f"Falling back to raw text after HTML parse failure: {e}")
    return _WHITESPACE_RE.sub(" ", text).strip()


def now_timestamp() -> int:
    """Current UTC time as integer Unix seconds."""
    return int(datetime.now(timezone.utc).timestamp())


def format_timestamp(timestamp: Optional[int]) -> Optional[str]:
    """Render a Unix timestamp as an ISO-8601 UTC string (``Z`` suffix)."""
    if timestamp in (None, ""):
        return None
    try:
        dt = datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    except (OSError, OverflowError, ValueError, TypeError):
        return None
    return dt.isoformat().replace("+00:00", "Z")


def parse_iso_timestamp(value: Optional[str]) -> Optional[int]:
    """Parse an ISO-8601 string into Unix seconds.

    Accepts a trailing ``Z`` and date-only values; naive values are taken as
    UTC. Returns None when the value cannot be parsed.
    """
    if not value or not isinstance(value, str):
        return None
    candidate = value.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "1h 23m 45s"); sub-minute durations
        keep one decimal ("2.5s").
    """
    if seconds < 0:
        return "0s"
    if seconds < 60:
        return f"{seconds:.1f}s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0:
        parts.append(f"{secs}s")

    return " ".join(parts)


def truncate_string(text: str, max_length: int) -> str:
    """Truncate a string to at most ``max_length`` characters."""
    if not text or len(text) <= max_length:
        return text
    return text[:max_length]
