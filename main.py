#!/usr/bin/env python3
"""
Feed Aggregator entry point.

Modes:
    serve           run the HTTP API with the interval scheduler
    fetch           run a single ingestion cycle and print its report
    status          print store counts and the active configuration
    import-sources  upsert the sources listed in feeds.yaml
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web

from api import create_app
from config import config, get_logger
from errors import FeedAggregatorError
from fetcher import FeedFetcher
from ingest import IngestionCycle
from models import DatabaseQueue
from scheduler import IntervalScheduler
from sources import load_sources_file
from telemetry import init_telemetry, trace_span

# Module-specific logger
logger = get_logger("main")


class FeedAggregator:
    """Wires the store, fetcher, ingestion cycle and scheduler together."""

    def __init__(self, db_path: Optional[str] = None, sources_file: Optional[str] = None) -> None:
        self.store = DatabaseQueue(db_path or config.DATABASE_PATH)
        self.sources_file = sources_file or config.FEEDS_CONFIG_PATH
        self.fetcher: Optional[FeedFetcher] = None
        self.cycle: Optional[IngestionCycle] = None

    async def initialize(self) -> None:
        await self.store.start()
        self.fetcher = FeedFetcher(self.store)
        self.cycle = IngestionCycle(self.store, self.fetcher)

    async def close(self) -> None:
        if self.fetcher:
            await self.fetcher.close()
        await self.store.stop()

    async def import_sources(self) -> int:
        """Upsert every valid source from the sources file."""
        sources = load_sources_file(self.sources_file)
        if not sources:
            return 0
        return await self.store.execute('upsert_sources', sources=sources)

    @trace_span("main.fetch_once", tracer_name="main")
    async def fetch_once(self) -> dict:
        return await self.cycle.run()

    async def status(self) -> dict:
        articles = await self.store.execute('count_articles')
        source_count = await self.store.execute('count_sources')
        sources = await self.store.execute('list_sources')
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'articles': articles,
            'sources': source_count,
            'never_fetched': sum(1 for s in sources if not s.get('last_fetched_at')),
            'config': config.get_config_summary(),
        }

    async def serve(self, host: str, port: int) -> None:
        """Run the API and the scheduler until cancelled."""
        imported = await self.import_sources()
        if imported:
            logger.info(f"Seeded {imported} sources from {self.sources_file}")

        scheduler = IntervalScheduler(self.cycle.run)
        app = create_app(self.store, ingest_runner=scheduler)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        logger.info(f"API listening on http://{host}:{port}")

        scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()
            logger.info(f"Scheduler stopped: {scheduler.get_status()}")
            await runner.cleanup()


def print_status(status: dict) -> None:
    """Print formatted status information."""
    print("\n📊 Feed Aggregator Status")
    print(f"⏰ {status['timestamp']}")
    print(f"📰 Articles: {status['articles']}")
    print(f"📡 Sources: {status['sources']} ({status['never_fetched']} never fetched)")
    print("\n⚙️ Configuration:")
    for key, value in status['config'].items():
        print(f"   {key}: {value}")


async def run_mode(args) -> int:
    aggregator = FeedAggregator(sources_file=args.sources_file)
    await aggregator.initialize()
    try:
        if args.mode == 'serve':
            await aggregator.serve(args.host, args.port)
        elif args.mode == 'fetch':
            report = await aggregator.fetch_once()
            print(json.dumps(report, indent=2))
            return 0 if report['failed'] == 0 else 1
        elif args.mode == 'status':
            print_status(await aggregator.status())
        elif args.mode == 'import-sources':
            count = await aggregator.import_sources()
            print(f"Imported {count} sources from {aggregator.sources_file}")
            return 0 if count else 1
        return 0
    finally:
        await aggregator.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Feed Aggregator')
    parser.add_argument('mode', choices=['serve', 'fetch', 'status', 'import-sources'],
                        help='Operation mode')
    parser.add_argument('--host', type=str, default=config.API_HOST,
                        help='Address to bind the API to (serve mode)')
    parser.add_argument('--port', type=int, default=config.API_PORT,
                        help='Port to bind the API to (serve mode)')
    parser.add_argument('--sources-file', type=str, default=None,
                        help='YAML file with a sources mapping (default: FEEDS_CONFIG_PATH)')

    args = parser.parse_args()
    init_telemetry("feed-aggregator")

    try:
        sys.exit(asyncio.run(run_mode(args)))
    except KeyboardInterrupt:
        logger.info("Feed Aggregator shutting down")
    except FeedAggregatorError as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
