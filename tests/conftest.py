import os

# Keep test runs from exporting spans or instrumenting libraries
os.environ.setdefault("DISABLE_TELEMETRY", "true")

import pytest
import pytest_asyncio

from models import DatabaseQueue


@pytest_asyncio.fixture
async def store(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        yield db
    finally:
        await db.stop()


@pytest.fixture
def make_source():
    def _make(source_id="example", **overrides):
        source = {
            "id": source_id,
            "name": source_id.replace("-", " ").title(),
            "url": f"https://{source_id}.example.com/feed.xml",
            "homepage": f"https://{source_id}.example.com",
            "locale": "en",
            "category": "news",
            "logo": None,
        }
        source.update(overrides)
        return source

    return _make


@pytest.fixture
def make_article():
    def _make(link, source_id="example", pub_date=1_700_000_000, **overrides):
        article = {
            "title": f"Title for {link}",
            "description": None,
            "link": link,
            "pub_date": pub_date,
            "thumbnail": None,
            "source_id": source_id,
            "categories": [],
        }
        article.update(overrides)
        return article

    return _make
