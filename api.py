#!/usr/bin/env python3
"""
HTTP surface for the feed aggregator (aiohttp.web).

Routes:
    GET  /api/articles  paginated article listing
    GET  /api/sources   configured sources
    POST /api/sources   admin upsert of one source or a list of sources
    POST /api/fetch     run an ingestion cycle now
    GET  /health        liveness probe

Every /api response is a JSON envelope with a ``success`` flag. Internal
error details are logged, never returned to the client.
"""

from json import JSONDecodeError
from typing import Any, Dict, Optional

from aiohttp import web

from config import config, get_logger
from errors import StoreError, ValidationError
from query import ArticleQueryService, parse_query_params
from sources import validate_sources
from utils import format_timestamp, now_timestamp

# Module-specific logger
logger = get_logger("api")

STORE_KEY = web.AppKey("store", object)
QUERY_KEY = web.AppKey("query_service", ArticleQueryService)
RUNNER_KEY = web.AppKey("ingest_runner", object)


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


def serialize_article(article: Dict[str, Any]) -> Dict[str, Any]:
    """Render a stored article for the wire (ISO timestamps)."""
    return {
        "id": article["id"],
        "title": article["title"],
        "description": article.get("description"),
        "link": article["link"],
        "pub_date": format_timestamp(article.get("pub_date")),
        "thumbnail": article.get("thumbnail"),
        "source_id": article["source_id"],
        "categories": article.get("categories") or [],
        "created_at": format_timestamp(article.get("created_at")),
        "source": article.get("source"),
    }


def serialize_source(source: Dict[str, Any]) -> Dict[str, Any]:
    """Render a source for the wire, leaving out the fetch validator token."""
    return {
        "id": source["id"],
        "name": source["name"],
        "homepage": source["homepage"],
        "url": source["url"],
        "locale": source["locale"],
        "category": source.get("category"),
        "logo": source.get("logo"),
        "last_fetched_at": format_timestamp(source.get("last_fetched_at")),
    }


async def list_articles(request: web.Request) -> web.Response:
    params = parse_query_params(request.query)
    try:
        page = await request.app[QUERY_KEY].query(**params)
    except StoreError as e:
        logger.error(f"Error fetching articles: {e}")
        return _error(500, "Failed to fetch articles")

    return web.json_response({
        "success": True,
        "data": [serialize_article(a) for a in page["articles"]],
        "pagination": {
            "limit": page["limit"],
            "lastId": page["last_id"],
            "hasMore": page["has_more"],
        },
    })


async def list_sources(request: web.Request) -> web.Response:
    try:
        sources = await request.app[STORE_KEY].execute('list_sources')
    except StoreError as e:
        logger.error(f"Error listing sources: {e}")
        return _error(500, "Failed to fetch sources")
    return web.json_response({"success": True, "data": [serialize_source(s) for s in sources]})


async def upsert_sources(request: web.Request) -> web.Response:
    """Validate and upsert sources; nothing is written unless all are valid."""
    try:
        payload = await request.json()
    except (JSONDecodeError, UnicodeDecodeError):
        return _error(400, "Request body must be valid JSON")

    try:
        sources = validate_sources(payload)
    except ValidationError as e:
        logger.info(f"Rejected source upsert: {e}")
        return _error(400, str(e))

    try:
        count = await request.app[STORE_KEY].execute('upsert_sources', sources=sources)
    except StoreError as e:
        logger.error(f"Error upserting sources: {e}")
        return _error(500, "Failed to save sources")

    return web.json_response(
        {"success": True, "message": f"Successfully upserted {count} sources"},
        status=201,
    )


async def trigger_fetch(request: web.Request) -> web.Response:
    runner = request.app[RUNNER_KEY]
    if runner is None:
        return _error(404, "Ingestion is not enabled on this server")
    try:
        report = await runner.trigger()
    except StoreError as e:
        logger.error(f"On-demand ingestion failed: {e}")
        return _error(500, "Failed to run ingestion cycle")
    if report is None:
        return _error(409, "An ingestion cycle is already running")
    return web.json_response({"success": True, "data": report})


async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "timestamp": format_timestamp(now_timestamp())})


def create_app(store, ingest_runner: Optional[Any] = None) -> web.Application:
    """Build the aiohttp application.

    Args:
        store: Article store (``DatabaseQueue``), already started.
        ingest_runner: Object with an async ``trigger()`` returning a cycle
            report or None when busy (normally the ``IntervalScheduler``).
    """
    app = web.Application(client_max_size=config.MAX_BODY_BYTES)
    app[STORE_KEY] = store
    app[QUERY_KEY] = ArticleQueryService(store)
    app[RUNNER_KEY] = ingest_runner

    app.router.add_get('/api/articles', list_articles)
    app.router.add_get('/api/sources', list_sources)
    app.router.add_post('/api/sources', upsert_sources)
    app.router.add_post('/api/fetch', trigger_fetch)
    app.router.add_get('/health', health)
    return app
