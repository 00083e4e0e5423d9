#!/usr/bin/env python3
"""
Conditional feed fetcher.

Fetches one source's feed over HTTP, sending the stored validator token so an
unchanged feed costs a 304 instead of a download and a parse. Parsing is
handed to a thread pool because feedparser is CPU-bound. Failures are raised
as TransientFetchError so the ingestion cycle can contain them per source.
"""

from asyncio import get_event_loop, wait_for, TimeoutError
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Dict, List, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import TransientFetchError
from feed_parser import parse_feed
from telemetry import trace_span
from utils import now_timestamp

# Module-specific logger
logger = get_logger("fetcher")

# HTTP status codes
HTTP_NOT_MODIFIED = 304

ACCEPT_HEADER = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"


class FeedFetcher:
    """Fetch and parse individual sources.

    Args:
        store: Article store used to look up each source's validator token.
        executor: Thread pool for parsing; one is created when omitted.
    """

    def __init__(self, store, executor: Optional[ThreadPoolExecutor] = None) -> None:
        self.store = store
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor()

    async def _prepare_request_headers(self, source_id: str) -> Dict[str, str]:
        """Prepare HTTP headers for a conditional request."""
        headers = {
            'User-Agent': config.USER_AGENT,
            'Accept': ACCEPT_HEADER,
        }

        etag = await self.store.execute('get_source_etag', source_id=source_id)
        if etag:
            # Servers should quote ETags, but some store them bare
            if not (etag.startswith('"') or etag.startswith('W/"')):
                etag = f'"{etag}"'
            headers['If-None-Match'] = etag
            logger.debug(f"Using If-None-Match: {etag} for {source_id}")

        return headers

    def _compute_timeout(self) -> ClientTimeout:
        """Overall request timeout; HTTP_TIMEOUT=0 means none."""
        seconds = int(config.HTTP_TIMEOUT)
        return ClientTimeout(total=seconds if seconds > 0 else None)

    @trace_span(
        "fetch_source",
        tracer_name="fetcher",
        attr_from_args=lambda self, source, session: {
            "feed.source_id": str(source.get("id")),
            "feed.url": str(source.get("url")),
        },
    )
    async def fetch_source(self, source: Dict[str, Any], session: ClientSession) -> Dict[str, Any]:
        """Fetch one source and parse its items.

        Returns:
            ``{"articles": [...], "etag": str | None, "skipped": bool}``.
            ``skipped`` is True when the server answered 304 Not Modified.

        Raises:
            TransientFetchError: on a non-2xx status or a network failure.
        """
        source_id = source['id']
        url = source['url']
        headers = await self._prepare_request_headers(source_id)
        logger.info(f"Fetching {source_id} from {url}")

        try:
            async with session.get(
                url,
                headers=headers,
                timeout=self._compute_timeout(),
                max_redirects=config.MAX_REDIRECTS,
            ) as response:
                if response.status == HTTP_NOT_MODIFIED:
                    logger.info(f"Feed {source_id} not modified since last fetch")
                    return {'articles': [], 'etag': None, 'skipped': True}

                if not 200 <= response.status < 300:
                    raise TransientFetchError(source_id, f"HTTP {response.status}", status=response.status)

                new_etag = response.headers.get('ETag')
                content = await response.read()
        except TimeoutError as e:
            raise TransientFetchError(source_id, f"Timed out after {config.HTTP_TIMEOUT}s") from e
        except ClientError as e:
            raise TransientFetchError(source_id, f"Network error: {self._format_client_error(e)}") from e

        articles = await self.run_in_executor(parse_feed, content, source, now_timestamp())
        logger.info(f"Parsed {len(articles)} articles from {source_id}")
        return {'articles': articles, 'etag': new_etag, 'skipped': False}

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in a thread pool executor."""
        loop = get_event_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    def _format_client_error(self, error: ClientError) -> str:
        """Describe aiohttp client errors with any available status/errno."""
        parts: List[str] = [error.__class__.__name__]
        status = getattr(error, 'status', None)
        if status is not None:
            parts.append(f"status={status}")
        os_error = getattr(error, 'os_error', None)
        if os_error is not None:
            errno = getattr(os_error, 'errno', None)
            if errno is not None:
                parts.append(f"errno={errno}")
        message = str(error)
        if message:
            parts.append(message)
        return " ".join(parts)

    async def close(self) -> None:
        """Shut down the parsing thread pool if this fetcher created it."""
        if not self._owns_executor or not self.executor:
            return
        logger.debug("Shutting down thread pool executor...")
        try:
            await wait_for(
                get_event_loop().run_in_executor(None, lambda: self.executor.shutdown(wait=True)),
                timeout=30.0,
            )
        except TimeoutError:
            logger.warning("Thread pool executor shutdown timed out after 30 seconds")
            self.executor.shutdown(wait=False)
