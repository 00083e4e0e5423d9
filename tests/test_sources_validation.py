import pytest

from config import config
from errors import ValidationError
from sources import load_sources_file, validate_sources


def payload(source_id="example", **overrides):
    entry = {
        "id": source_id,
        "name": "Example News",
        "url": "https://example.com/feed.xml",
        "homepage": "https://example.com",
        "category": "news",
    }
    entry.update(overrides)
    return entry


def test_single_object_is_accepted_with_defaults():
    sources = validate_sources(payload())

    assert sources == [{
        "id": "example",
        "name": "Example News",
        "url": "https://example.com/feed.xml",
        "homepage": "https://example.com",
        "locale": config.DEFAULT_LOCALE,
        "category": "news",
        "logo": None,
    }]


def test_fifty_sources_accepted_fifty_one_rejected():
    assert len(validate_sources([payload(f"s-{i}") for i in range(50)])) == 50

    with pytest.raises(ValidationError, match="Too many sources"):
        validate_sources([payload(f"s-{i}") for i in range(51)])


@pytest.mark.parametrize("body", ["just a string", 42, None, []])
def test_non_object_bodies_are_rejected(body):
    with pytest.raises(ValidationError):
        validate_sources(body)


@pytest.mark.parametrize("field", ["id", "name", "url", "homepage", "category"])
def test_required_fields(field):
    with pytest.raises(ValidationError, match=field):
        validate_sources(payload(**{field: ""}))
    with pytest.raises(ValidationError, match=field):
        validate_sources(payload(**{field: 123}))


@pytest.mark.parametrize("field,value", [
    ("url", "ftp://example.com/feed"),
    ("url", "/relative/feed.xml"),
    ("homepage", "javascript:alert(1)"),
    ("id", "has spaces"),
    ("id", "under_score"),
])
def test_invalid_values(field, value):
    with pytest.raises(ValidationError):
        validate_sources(payload(**{field: value}))


def test_one_bad_entry_rejects_whole_batch():
    with pytest.raises(ValidationError, match="Source 1"):
        validate_sources([payload("good"), payload("bad id")])


def test_truncation_and_logo_handling():
    sources = validate_sources([
        payload("a" * 150, name="n" * 250, category="c" * 80, logo="https://example.com/logo.png", locale="pt"),
        payload("b", logo="not a url"),
    ])

    first, second = sources
    assert len(first["id"]) == 100
    assert len(first["name"]) == 200
    assert len(first["category"]) == 50
    assert first["logo"] == "https://example.com/logo.png"
    assert first["locale"] == "pt"
    assert second["logo"] is None


def test_load_sources_file(tmp_path):
    feeds = tmp_path / "feeds.yaml"
    feeds.write_text(
        """
sources:
  hacker-news:
    name: Hacker News
    url: https://news.ycombinator.com/rss
    homepage: https://news.ycombinator.com
    category: technology
  broken:
    name: Broken
    url: not-a-url
    homepage: https://example.com
    category: misc
  not-a-mapping: just text
"""
    )

    sources = load_sources_file(str(feeds))

    assert [s["id"] for s in sources] == ["hacker-news"]
    assert sources[0]["locale"] == config.DEFAULT_LOCALE


def test_load_sources_file_missing_or_empty(tmp_path):
    assert load_sources_file(str(tmp_path / "absent.yaml")) == []

    empty = tmp_path / "empty.yaml"
    empty.write_text("schedule: []\n")
    assert load_sources_file(str(empty)) == []
