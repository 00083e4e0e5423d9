import pytest

from main import FeedAggregator


SOURCES_YAML = """
sources:
  example:
    name: Example
    url: https://example.com/feed.xml
    homepage: https://example.com
    category: news
  broken:
    name: Broken
    url: not-a-url
    homepage: https://broken.example.com
    category: news
"""


@pytest.mark.asyncio
async def test_import_sources_then_status(tmp_path):
    sources_file = tmp_path / "feeds.yaml"
    sources_file.write_text(SOURCES_YAML)
    aggregator = FeedAggregator(db_path=str(tmp_path / "main.db"), sources_file=str(sources_file))
    await aggregator.initialize()
    try:
        assert await aggregator.import_sources() == 1

        status = await aggregator.status()
    finally:
        await aggregator.close()

    assert status['articles'] == 0
    assert status['sources'] == 1
    assert status['never_fetched'] == 1
    assert 'retention_hours' in status['config']
