"""Shared fixtures for tabfinder tests."""

import pytest

from tabfinder.engine.config import Config, SearchConfig
from tabfinder.engine.providers import RecordingActionSink, SnapshotProvider


def sample_snapshot():
    return {
        "tabs": [
            {"id": 11, "windowId": 1, "title": "GitHub", "url": "https://github.com",
             "favIconUrl": "https://github.com/favicon.ico"},
            {"id": 12, "windowId": 1, "title": "Python docs", "url": "https://docs.python.org/3/"},
            {"id": 13, "windowId": 2, "title": "Inbox", "url": "https://mail.example.com"},
        ],
        "bookmarks": [
            {"id": "0", "title": "", "children": [
                {"id": "1", "title": "Bookmarks bar", "children": [
                    {"id": "10", "title": "Hacker News", "url": "https://news.ycombinator.com"},
                    {"id": "11", "title": "Rust book", "url": "https://doc.rust-lang.org/book/"},
                ]},
                {"id": "2", "title": "Other", "children": [
                    {"id": "20", "title": "Settings", "url": "chrome://settings"},
                ]},
            ]},
        ],
        "history": [
            {"id": "h1", "title": "Weather forecast", "url": "https://weather.example.org"},
            {"id": "h2", "title": "asyncio docs", "url": "https://docs.python.org/3/library/asyncio.html"},
            {"id": "h3", "title": "Recipe: pancakes", "url": "https://food.example.net/pancakes"},
        ],
        "closed": [
            {"sessionId": "s1", "tab": {"title": "Closed wiki page",
                                        "url": "https://en.wikipedia.org/wiki/Levenshtein_distance"}},
            {"sessionId": "s2", "window": {"tabs": []}},
            {"sessionId": "s3", "tab": {"title": "Maps", "url": "https://maps.example.com"}},
        ],
    }


@pytest.fixture
def snapshot():
    return sample_snapshot()


@pytest.fixture
def provider(snapshot):
    return SnapshotProvider(data=snapshot)


@pytest.fixture
def sink():
    return RecordingActionSink()


@pytest.fixture
def test_config():
    """Config with a short debounce so tests stay fast."""
    return Config(search=SearchConfig(debounce_ms=20))
