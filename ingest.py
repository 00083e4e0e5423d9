#!/usr/bin/env python3
"""
Ingestion cycle: fetch every source, store new articles, apply retention.

One cycle is a barrier, not a pipeline. All sources are fetched concurrently
and the cycle waits for every one of them to settle before writing a single
batch. A source that fails is reported in its own result and never cancels or
blocks the rest.
"""

from asyncio import gather
from time import monotonic
from typing import Any, Dict, List, Optional, Tuple

from aiohttp import ClientSession

from config import config, get_logger
from errors import StoreError, TransientFetchError
from telemetry import trace_span
from utils import format_duration, now_timestamp

# Module-specific logger
logger = get_logger("ingest")

HOUR_IN_SECONDS = 3600


class IngestionCycle:
    """Run one fetch/store/cleanup pass over all configured sources.

    Args:
        store: Article store (``DatabaseQueue``).
        fetcher: Object exposing ``fetch_source(source, session)``.
        session_factory: Callable returning an ``aiohttp.ClientSession``-like
            async context manager; defaults to ``ClientSession``.
    """

    def __init__(self, store, fetcher, session_factory=None, retention_hours: Optional[int] = None):
        self.store = store
        self.fetcher = fetcher
        self.session_factory = session_factory or ClientSession
        self.retention_hours = retention_hours or config.RETENTION_HOURS

    def _empty_report(self, started: float) -> Dict[str, Any]:
        return {
            'results': [],
            'successful': 0,
            'skipped': 0,
            'failed': 0,
            'articles_found': 0,
            'inserted': 0,
            'cleaned': 0,
            'duration': round(monotonic() - started, 3),
        }

    @trace_span("ingest.cycle", tracer_name="ingest")
    async def run(self) -> Dict[str, Any]:
        """Run one cycle and return its report.

        Raises:
            StoreError: if sources cannot be listed or the article batch
                cannot be written. Fetch-info and cleanup failures are
                logged instead.
        """
        started = monotonic()
        sources = await self.store.execute('list_sources')
        if not sources:
            logger.info("No sources configured; nothing to fetch")
            return self._empty_report(started)

        logger.info(f"Starting ingestion cycle for {len(sources)} sources")
        async with self.session_factory() as session:
            outcomes = await gather(
                *(self.fetcher.fetch_source(source, session) for source in sources),
                return_exceptions=True,
            )

        report = self._empty_report(started)
        batch: List[Dict[str, Any]] = []
        fetched: List[Tuple[Dict[str, Any], Optional[str]]] = []

        for source, outcome in zip(sources, outcomes):
            entry = {
                'source_id': source['id'],
                'source_name': source.get('name'),
                'articles_found': 0,
                'skipped': False,
            }
            if isinstance(outcome, BaseException):
                if isinstance(outcome, TransientFetchError):
                    logger.error(f"Error fetching {source['id']}: {outcome}")
                else:
                    logger.error(f"Unexpected error fetching {source['id']}: {outcome!r}")
                entry['error'] = str(outcome) or outcome.__class__.__name__
                report['failed'] += 1
            elif outcome.get('skipped'):
                entry['skipped'] = True
                report['skipped'] += 1
            else:
                articles = outcome.get('articles') or []
                entry['articles_found'] = len(articles)
                report['successful'] += 1
                report['articles_found'] += len(articles)
                batch.extend(articles)
                fetched.append((entry, outcome.get('etag')))
            report['results'].append(entry)

        report['inserted'] = await self.store.execute('upsert_articles', articles=batch)

        now = now_timestamp()
        for entry, etag in fetched:
            try:
                await self.store.execute('set_fetch_info', source_id=entry['source_id'], etag=etag, fetched_at=now)
            except StoreError as e:
                logger.error(f"Could not record fetch info for {entry['source_id']}: {e}")
                entry['error'] = str(e)

        report['cleaned'] = await self._cleanup(now)
        report['duration'] = round(monotonic() - started, 3)

        logger.info(
            "Cycle finished in %s: successful=%d skipped=%d failed=%d found=%d inserted=%d cleaned=%d",
            format_duration(report['duration']),
            report['successful'],
            report['skipped'],
            report['failed'],
            report['articles_found'],
            report['inserted'],
            report['cleaned'],
        )
        return report

    async def _cleanup(self, now: int) -> int:
        """Delete articles past the retention window; failures count as zero."""
        cutoff = now - self.retention_hours * HOUR_IN_SECONDS
        try:
            return await self.store.execute('delete_articles_older_than', cutoff=cutoff)
        except StoreError as e:
            logger.error(f"Retention cleanup failed: {e}")
            return 0
