#!/usr/bin/env python3
"""
Tolerant RSS 2.0 / Atom feed parser.

Turns raw feed bytes into candidate article records. Every field is resolved
through a short ordered chain of extractor functions; the first usable value
wins. Parsing never raises: a broken document yields an empty list and a
broken item is dropped without affecting its siblings.
"""

from calendar import timegm
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
import io
import re

import feedparser

from config import get_logger
from errors import ParseError
from telemetry import trace_span
from utils import html_to_text, now_timestamp, parse_iso_timestamp, validate_url

# Module-specific logger
logger = get_logger("parser")

DEFAULT_TITLE = "No title"

# First <img src="..."> or <image>...</image> in a blob of markup
_IMAGE_IN_MARKUP_RE = re.compile(
    r"""<img[^>]+src=["']([^"']+)["']|<image>([^<]+)</image>""",
    re.I,
)

_CUSTOM_DATE_FORMATS = (
    "%d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M:%S %Z",
    "%d %b %Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)

Extractor = Callable[[Any], Optional[str]]


def _get(entry, field: str) -> Any:
    """Read a feedparser entry field, tolerating plain dicts."""
    getter = getattr(entry, "get", None)
    if callable(getter):
        return getter(field)
    return getattr(entry, field, None)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _first(extractors: Sequence[Extractor], entry, accept: Callable[[str], bool] = bool) -> Optional[str]:
    """Run extractors in order and return the first accepted value."""
    for extractor in extractors:
        try:
            value = extractor(entry)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.debug(f"Extractor {extractor.__name__} failed: {e}")
            continue
        if value and accept(value):
            return value
    return None


# ---------------------------------------------------------------------------
# Title
# ---------------------------------------------------------------------------
def _title_text(entry) -> Optional[str]:
    return html_to_text(_get(entry, "title"))


TITLE_EXTRACTORS: Sequence[Extractor] = (_title_text,)


# ---------------------------------------------------------------------------
# Description
# ---------------------------------------------------------------------------
def _raw_description(entry) -> Optional[str]:
    # feedparser folds RSS <description> and Atom <summary> into 'summary'
    return _get(entry, "description") or _get(entry, "summary")


def _raw_content(entry) -> Optional[str]:
    for content_item in _as_list(_get(entry, "content")):
        value = content_item.get("value") if hasattr(content_item, "get") else None
        if value:
            return value
    return None


def _description_text(entry) -> Optional[str]:
    return html_to_text(_raw_description(entry))


def _content_text(entry) -> Optional[str]:
    return html_to_text(_raw_content(entry))


DESCRIPTION_EXTRACTORS: Sequence[Extractor] = (_description_text, _content_text)


# ---------------------------------------------------------------------------
# Link
# ---------------------------------------------------------------------------
def _link_string(entry) -> Optional[str]:
    link = _get(entry, "link")
    return link.strip() if isinstance(link, str) else None


def _link_href(entry) -> Optional[str]:
    link = _get(entry, "link")
    if hasattr(link, "get"):
        href = link.get("href")
        return href.strip() if isinstance(href, str) else None
    return None


def _link_alternate(entry) -> Optional[str]:
    for link in _as_list(_get(entry, "links")):
        if not hasattr(link, "get"):
            continue
        rel = link.get("rel")
        if rel in (None, "", "alternate"):
            href = link.get("href")
            if isinstance(href, str) and validate_url(href.strip()):
                return href.strip()
    return None


LINK_EXTRACTORS: Sequence[Extractor] = (_link_string, _link_href, _link_alternate)


# ---------------------------------------------------------------------------
# Thumbnail
# ---------------------------------------------------------------------------
def _thumbnail_media(entry) -> Optional[str]:
    for field in ("media_content", "media_thumbnail"):
        for media in _as_list(_get(entry, field)):
            url = media.get("url") if hasattr(media, "get") else None
            if isinstance(url, str) and validate_url(url.strip()):
                return url.strip()
    return None


def _thumbnail_enclosure(entry) -> Optional[str]:
    for enclosure in _as_list(_get(entry, "enclosures")):
        if not hasattr(enclosure, "get"):
            continue
        mime_type = (enclosure.get("type") or "").strip().lower()
        if not mime_type.startswith("image/"):
            continue
        url = enclosure.get("href") or enclosure.get("url")
        if isinstance(url, str) and validate_url(url.strip()):
            return url.strip()
    return None


def _thumbnail_image_field(entry) -> Optional[str]:
    image = _get(entry, "image")
    if isinstance(image, str):
        return image.strip()
    if hasattr(image, "get"):
        url = image.get("href") or image.get("url")
        return url.strip() if isinstance(url, str) else None
    return None


def _thumbnail_from_markup(entry) -> Optional[str]:
    for markup in (_raw_content(entry), _raw_description(entry)):
        if not markup:
            continue
        match = _IMAGE_IN_MARKUP_RE.search(markup)
        if match:
            url = (match.group(1) or match.group(2) or "").strip()
            if validate_url(url):
                return url
    return None


THUMBNAIL_EXTRACTORS: Sequence[Extractor] = (
    _thumbnail_media,
    _thumbnail_enclosure,
    _thumbnail_image_field,
    _thumbnail_from_markup,
)


# ---------------------------------------------------------------------------
# Publication date
# ---------------------------------------------------------------------------
def _struct_to_timestamp(value: Any) -> Optional[int]:
    if not value:
        return None
    try:
        # feedparser normalizes *_parsed fields to UTC
        return timegm(tuple(value))
    except (OverflowError, ValueError, TypeError):
        return None


def _string_to_timestamp(value: Any) -> Optional[int]:
    if not value or not isinstance(value, str):
        return None
    date_str = value.strip()
    try:
        dt = parsedate_to_datetime(date_str)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
    except (TypeError, ValueError, OverflowError, IndexError):
        pass
    timestamp = parse_iso_timestamp(date_str)
    if timestamp is not None:
        return timestamp
    for fmt in _CUSTOM_DATE_FORMATS:
        try:
            dt = datetime.strptime(date_str, fmt)
        except ValueError:
            continue
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
    return None


def parse_pub_date(entry, default: Optional[int] = None) -> int:
    """Resolve an entry's publication time as Unix seconds.

    Tries pubDate/published, then updated, each from feedparser's parsed
    struct first and the raw string second. Falls back to ``default`` (or the
    current time) rather than failing the item.
    """
    for field in ("published", "pubDate", "updated"):
        timestamp = _struct_to_timestamp(_get(entry, f"{field}_parsed"))
        if timestamp is None:
            timestamp = _string_to_timestamp(_get(entry, field))
        if timestamp is not None and timestamp > 0:
            return timestamp
    return default if default is not None else now_timestamp()


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------
def extract_categories(entry) -> List[str]:
    """Collect distinct tag terms in document order; absent tags give []."""
    categories: List[str] = []
    for tag in _as_list(_get(entry, "tags")):
        term = tag.get("term") if hasattr(tag, "get") else tag
        if not isinstance(term, str):
            continue
        term = html_to_text(term)
        if term and term not in categories:
            categories.append(term)
    return categories


def build_article(entry, source: Dict[str, Any], fetched_at: Optional[int] = None) -> Dict[str, Any]:
    """Build one article record from a feed entry.

    Raises:
        ParseError: if the entry has no valid absolute http(s) link.
    """
    link = _first(LINK_EXTRACTORS, entry, accept=validate_url)
    if not link:
        raise ParseError("entry has no valid http(s) link")

    return {
        "title": _first(TITLE_EXTRACTORS, entry) or DEFAULT_TITLE,
        "description": _first(DESCRIPTION_EXTRACTORS, entry),
        "link": link,
        "pub_date": parse_pub_date(entry, default=fetched_at),
        "thumbnail": _first(THUMBNAIL_EXTRACTORS, entry, accept=validate_url),
        "source_id": source["id"],
        "categories": extract_categories(entry),
    }


def build_articles(entries: Iterable[Any], source: Dict[str, Any], fetched_at: Optional[int] = None) -> List[Dict[str, Any]]:
    """Build articles from entries, dropping the ones that fail individually."""
    fetched_at = fetched_at if fetched_at is not None else now_timestamp()
    articles: List[Dict[str, Any]] = []
    dropped = 0
    for entry in entries:
        try:
            articles.append(build_article(entry, source, fetched_at))
        except ParseError as e:
            dropped += 1
            logger.debug(f"Dropping entry from {source.get('id')}: {e}")
        except Exception as e:
            dropped += 1
            logger.warning(f"Dropping malformed entry from {source.get('id')}: {e}")
    if dropped:
        logger.info(f"{source.get('id')}: kept {len(articles)} entries, dropped {dropped}")
    return articles


@trace_span(
    "parse_feed",
    tracer_name="parser",
    attr_from_args=lambda content, source, fetched_at=None: {
        "feed.source_id": str(source.get("id")),
        "feed.bytes": len(content or b""),
    },
)
def parse_feed(content: bytes | str, source: Dict[str, Any], fetched_at: Optional[int] = None) -> List[Dict[str, Any]]:
    """Parse an RSS 2.0 or Atom document into article records.

    Args:
        content: Raw feed body.
        source: Source record; its ``id`` becomes each article's ``source_id``.
        fetched_at: Fallback publication time for undated entries (defaults to now).

    Returns:
        A list of article dicts, possibly empty. Never raises.
    """
    source_id = source.get("id") if isinstance(source, dict) else None
    if not content:
        logger.warning(f"Empty feed body for {source_id}")
        return []
    try:
        if isinstance(content, str):
            content = content.encode("utf-8")
        # Wrap in a stream so feedparser never treats the body as a URL or path
        feed = feedparser.parse(
            io.BytesIO(content),
            sanitize_html=False,
            resolve_relative_uris=False,
        )
        entries = feed.get("entries") or []
        if feed.get("bozo") and not entries:
            raise ParseError(f"unparseable feed: {feed.get('bozo_exception')}")
        if feed.get("bozo"):
            logger.warning(f"Feed {source_id} parsed with warnings: {feed.get('bozo_exception')}")
        logger.debug(f"Feed {source_id} parsed as {feed.get('version') or 'unknown'} with {len(entries)} entries")
        return build_articles(entries, source, fetched_at)
    except ParseError as e:
        logger.error(f"Error parsing feed from {source_id}: {e}")
        return []
    except Exception as e:
        logger.error(f"Unexpected error parsing feed from {source_id}: {e}")
        return []
