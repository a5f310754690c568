import asyncio
import time
from typing import Optional

from hnreader.database.store import Store
from hnreader.scrapers.article_extractor import ArticleExtractor, ExtractionError
from hnreader.scrapers.hn_client import HNClient, HNItem
from hnreader.services.singleflight import SingleFlight
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)


class Fetcher:
    """
    Service layer for pulling Hacker News data into the store.
    Handles: upstream fetch → shape → upsert, plus article extraction.

    All writes are upserts, so every operation is idempotent and an
    interrupted comment walk can simply be run again.

    The *_singleflight variants are what request handlers call: concurrent
    requests for the same story share one upstream operation.
    """

    def __init__(
        self,
        client: HNClient,
        store: Store,
        extractor: ArticleExtractor,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.store = store
        self.extractor = extractor
        self.stop_event = stop_event or asyncio.Event()
        # "item-" and "item-comments-" keys share a group but never collide
        self._sf_items = SingleFlight()
        self._sf_comments = SingleFlight()
        self._sf_articles = SingleFlight()

    # ─────────────────────────────────────────────────────────────────
    # Singleflight entry points
    # ─────────────────────────────────────────────────────────────────

    async def fetch_item_singleflight(self, item_id: int) -> None:
        await self._sf_items.do(f"item-{item_id}", lambda: self.fetch_item(item_id))

    async def fetch_item_with_comments_singleflight(self, item_id: int) -> None:
        await self._sf_items.do(
            f"item-comments-{item_id}", lambda: self.fetch_item_with_comments(item_id)
        )

    async def fetch_comments_singleflight(
        self, item_id: int, child_ids: list[int], only_new: bool = False
    ) -> int:
        return await self._sf_comments.do(
            f"comments-{item_id}",
            lambda: self.fetch_comments(item_id, child_ids, only_new=only_new),
        )

    async def extract_article_singleflight(self, item_id: int, url: str) -> None:
        await self._sf_articles.do(
            f"article-{item_id}", lambda: self.extract_article(item_id, url)
        )

    # ─────────────────────────────────────────────────────────────────
    # Operations
    # ─────────────────────────────────────────────────────────────────

    async def fetch_item(self, item_id: int, rank: Optional[int] = None) -> None:
        """
        Fetch one story and upsert it.

        Raises:
            UpstreamError: if the Hacker News request fails
        """
        item = await self.client.fetch_item(item_id)
        if item is None or item.id == 0:
            return
        await self.store.upsert_item(story_values(item, int(time.time()), rank))

    async def fetch_comments(
        self, item_id: int, child_ids: list[int], only_new: bool = False
    ) -> int:
        """
        Fetch a story's comment tree, level by level.

        Each level is fetched as one bounded-concurrency batch and its
        replies form the next level, so arbitrarily deep threads need no
        recursion. With only_new, comments already in the store are
        skipped together with their replies.

        Returns:
            Number of comments upserted (a partial count if stopped early)
        """
        if not child_ids:
            return 0

        known: set[int] = await self.store.comment_ids(item_id) if only_new else set()
        level = [cid for cid in child_ids if cid not in known]
        upserted = 0

        while level:
            if self.stop_event.is_set():
                logger.info(f"Comment fetch for story {item_id} stopped after {upserted} comments")
                return upserted

            items = await self.client.fetch_batch(level)
            now = int(time.time())
            next_level: list[int] = []

            for item in items:
                if item is None:
                    continue
                if self.stop_event.is_set():
                    logger.info(f"Comment fetch for story {item_id} stopped after {upserted} comments")
                    return upserted
                try:
                    await self.store.upsert_comment(comment_values(item, item_id, now))
                except Exception as e:
                    logger.error(f"Error upserting comment {item.id}: {e}")
                    continue
                upserted += 1
                next_level.extend(kid for kid in item.kids if kid not in known)

            level = next_level

        return upserted

    async def fetch_item_with_comments(self, item_id: int, rank: Optional[int] = None) -> None:
        """
        Fetch a story, its full comment tree, and (for newly seen stories
        with a URL) its reader-mode article.

        Raises:
            UpstreamError: if the story itself cannot be fetched
        """
        item = await self.client.fetch_item(item_id)
        if item is None or item.id == 0:
            return

        is_new = not await self.store.item_exists(item.id)
        await self.store.upsert_item(story_values(item, int(time.time()), rank))

        if item.kids:
            try:
                await self.fetch_comments(item.id, item.kids)
            except Exception as e:
                logger.error(f"Error fetching comments for story {item.id}: {e}")

        if is_new and item.url:
            await self.extract_article(item.id, item.url)

    async def extract_article(self, item_id: int, url: str) -> None:
        """
        Extract reader-mode content for a story URL and store it.

        A failed extraction is stored too (extraction_failed=True) so it is
        not retried on every read; a manual refresh re-attempts it.
        """
        now = int(time.time())
        try:
            article = await self.extractor.extract(url)
        except ExtractionError as e:
            logger.warning(f"Article extraction failed for story {item_id}: {e}")
            await self._store_article(item_id, {"extraction_failed": True, "fetched_at": now})
            return
        except Exception as e:
            logger.error(f"Unexpected error extracting article for story {item_id}: {e}")
            await self._store_article(item_id, {"extraction_failed": True, "fetched_at": now})
            return

        await self._store_article(item_id, {
            "content": article.content,
            "title": article.title,
            "excerpt": article.excerpt,
            "byline": article.byline,
            "extraction_failed": False,
            "fetched_at": now,
        })

    async def _store_article(self, item_id: int, values: dict) -> None:
        try:
            await self.store.upsert_article({
                "story_id": item_id,
                "content": None,
                "title": None,
                "excerpt": None,
                "byline": None,
                **values,
            })
        except Exception as e:
            logger.error(f"Error storing article for story {item_id}: {e}")


def story_values(item: HNItem, fetched_at: int, rank: Optional[int] = None) -> dict:
    """Shape an upstream item into a stories row."""
    return {
        "id": item.id,
        "title": item.title,
        "url": item.url or None,
        "text": item.text or None,
        "score": item.score,
        "by": item.by or "[unknown]",
        "time": item.time,
        "descendants": item.descendants,
        "type": item.type or "story",
        "fetched_at": fetched_at,
        "rank": rank,
        "dead": item.dead,
    }


def comment_values(item: HNItem, story_id: int, fetched_at: int) -> dict:
    """Shape an upstream comment into a comments row; direct replies get parent_id NULL."""
    return {
        "id": item.id,
        "story_id": story_id,
        "parent_id": None if item.parent == story_id else item.parent,
        "by": item.by or None,
        "text": item.text or None,
        "time": item.time,
        "dead": item.dead,
        "deleted": item.deleted,
        "fetched_at": fetched_at,
    }
