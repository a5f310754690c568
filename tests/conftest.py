"""
Shared test fixtures.

- store: a Store over a fresh SQLite file per test
- FakeHNClient: in-memory stand-in for the Hacker News API with call counts
- FakeExtractor: records extraction calls, optionally fails
"""
import asyncio
from collections import Counter
from typing import Optional

import pytest
import pytest_asyncio

from hnreader.database.config import build_engine, init_db
from hnreader.database.store import Store
from hnreader.scrapers.article_extractor import ExtractedArticle, ExtractionError
from hnreader.scrapers.hn_client import HNItem, UpstreamError

NOW = 1_700_000_000


class FakeHNClient:
    """Serves items from a dict; IDs in `failing` raise UpstreamError."""

    def __init__(self, items: Optional[dict[int, dict]] = None, top: Optional[list[int]] = None):
        self.items = items or {}
        self.top = top or []
        self.failing: set[int] = set()
        self.calls: Counter = Counter()
        self.top_calls = 0
        self.delay = 0.0

    def add_story(self, story_id: int, **fields) -> dict:
        item = {
            "id": story_id,
            "type": "story",
            "by": "pg",
            "time": NOW,
            "title": f"Story {story_id}",
            "score": 10,
            "descendants": 0,
            "kids": [],
        }
        item.update(fields)
        self.items[story_id] = item
        return item

    def add_comment(self, comment_id: int, parent: int, **fields) -> dict:
        item = {
            "id": comment_id,
            "type": "comment",
            "by": "user",
            "time": NOW,
            "text": f"comment {comment_id}",
            "parent": parent,
            "kids": [],
        }
        item.update(fields)
        self.items[comment_id] = item
        self.items[parent].setdefault("kids", []).append(comment_id)
        return item

    async def fetch_top(self) -> list[int]:
        self.top_calls += 1
        return list(self.top)

    async def fetch_item(self, item_id: int) -> Optional[HNItem]:
        self.calls[item_id] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if item_id in self.failing:
            raise UpstreamError(f"GET /item/{item_id}.json: boom")
        data = self.items.get(item_id)
        return HNItem.model_validate(data) if data is not None else None

    async def fetch_batch(self, ids: list[int]) -> list[Optional[HNItem]]:
        results = await asyncio.gather(*(self.fetch_item(i) for i in ids), return_exceptions=True)
        return [None if isinstance(r, Exception) else r for r in results]

    async def close(self) -> None:
        pass


class FakeExtractor:

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[str] = []

    async def extract(self, url: str) -> ExtractedArticle:
        self.calls.append(url)
        if self.fail:
            raise ExtractionError("no content extracted")
        return ExtractedArticle(
            title="Article title",
            byline="Jane Doe",
            content="<div><p>Readable body</p></div>",
            excerpt="Readable body",
        )

    async def close(self) -> None:
        pass


@pytest_asyncio.fixture
async def store(tmp_path):
    """Store over a fresh SQLite database file."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield Store(engine)
    await engine.dispose()


@pytest.fixture
def hn():
    return FakeHNClient()


@pytest.fixture
def extractor():
    return FakeExtractor()


def story_row(story_id: int, **fields) -> dict:
    """Values for Store.upsert_item with sensible defaults."""
    values = {
        "id": story_id,
        "title": f"Story {story_id}",
        "url": None,
        "text": None,
        "score": 10,
        "by": "pg",
        "time": NOW,
        "descendants": 0,
        "type": "story",
        "fetched_at": NOW,
        "rank": None,
        "dead": False,
    }
    values.update(fields)
    return values


def comment_row(comment_id: int, story_id: int, parent_id: Optional[int] = None, **fields) -> dict:
    values = {
        "id": comment_id,
        "story_id": story_id,
        "parent_id": parent_id,
        "by": "user",
        "text": f"comment {comment_id}",
        "time": NOW,
        "dead": False,
        "deleted": False,
        "fetched_at": NOW,
    }
    values.update(fields)
    return values
