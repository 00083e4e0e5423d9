#!/usr/bin/env python3
"""
Read side of the article store: filtered, cursor-paginated article pages.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

from config import config, get_logger
from telemetry import trace_span
from utils import parse_iso_timestamp

# Module-specific logger
logger = get_logger("query")


def clamp_limit(limit: Any) -> int:
    """Clamp a page size into ``[1, MAX_PAGE_LIMIT]``; garbage gives the default."""
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return config.DEFAULT_PAGE_LIMIT
    return max(1, min(value, config.MAX_PAGE_LIMIT))


def _split_sources(raw: Any) -> Optional[List[str]]:
    if raw is None:
        return None
    if isinstance(raw, str):
        items = raw.split(',')
    else:
        items = list(raw)
    sources = [str(item).strip() for item in items if str(item).strip()]
    return sources or None


def parse_query_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn raw HTTP query parameters into ``ArticleQueryService.query`` kwargs.

    ``sources`` is a comma-separated list, ``since`` an ISO-8601 timestamp
    (trailing ``Z`` allowed). Unparseable values are dropped, never fatal.
    """
    since_raw = params.get('since')
    since = parse_iso_timestamp(since_raw) if since_raw else None
    if since_raw and since is None:
        logger.debug(f"Ignoring invalid since value: {since_raw!r}")

    return {
        'limit': clamp_limit(params.get('limit', config.DEFAULT_PAGE_LIMIT)),
        'category': params.get('category') or None,
        'locale': params.get('locale') or None,
        'sources': _split_sources(params.get('sources')),
        'since': since,
        'after': params.get('after') or None,
    }


class ArticleQueryService:
    """Serve article pages newest-first with an opaque id cursor."""

    def __init__(self, store):
        self.store = store

    @trace_span(
        "query.articles",
        tracer_name="query",
        attr_from_args=lambda self, limit=None, **kw: {
            "query.limit": int(limit) if isinstance(limit, int) else 0,
            "query.has_cursor": bool(kw.get("after")),
        },
    )
    async def query(
        self,
        limit: Any = None,
        category: Optional[str] = None,
        locale: Optional[str] = None,
        sources: Optional[Iterable[str]] = None,
        since: Optional[int] = None,
        after: Any = None,
    ) -> Dict[str, Any]:
        """Return one page of articles.

        ``after`` is the id of the last article of the previous page; the page
        then holds only strictly older articles. An unknown id is ignored.
        ``has_more`` is True whenever the page is full, so the last page may
        be followed by one empty page.
        """
        safe_limit = clamp_limit(config.DEFAULT_PAGE_LIMIT if limit is None else limit)

        before = None
        if after not in (None, ''):
            before = await self.store.execute('get_article_pub_date', article_id=after)
            if before is None:
                logger.debug(f"Cursor {after!r} not found; serving from the newest article")

        articles = await self.store.execute(
            'query_articles',
            limit=safe_limit,
            category=category,
            locale=locale,
            sources=list(sources) if sources else None,
            since=since,
            before=before,
        )

        return {
            'articles': articles,
            'last_id': articles[-1]['id'] if articles else None,
            'has_more': len(articles) == safe_limit,
            'limit': safe_limit,
        }
