"""
Front-page poller.

Every interval (5 minutes by default):
1. Fetch the top story IDs and publish them to the TopList right away
2. Eager phase: top N stories with comments (+ article for new stories)
3. Lazy phase: the rest, metadata only
4. Atomically swap ranks, unless too few stories were fetched
5. Recompute period rankings
6. Publish a "stories_updated" event

The shared stop event is checked before every story fetch, so shutdown
never waits for a full poll.
"""
import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Optional

from hnreader.cache.toplist import TopList
from hnreader.config.settings import settings
from hnreader.database.store import RankPair, Store
from hnreader.events.broker import EventBroker
from hnreader.scrapers.hn_client import HNClient
from hnreader.services.fetcher import Fetcher
from hnreader.services.ranker import Ranker
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)

STORIES_UPDATED = "stories_updated"


@dataclass
class PollResult:
    top_count: int = 0
    fetched_ids: list[int] = field(default_factory=list)
    failed: int = 0
    ranks_swapped: bool = False
    stopped: bool = False


class Poller:

    def __init__(
        self,
        client: HNClient,
        fetcher: Fetcher,
        store: Store,
        ranker: Ranker,
        broker: EventBroker,
        toplist: TopList,
        stop_event: Optional[asyncio.Event] = None,
        interval: float = settings.poll_interval_seconds,
        eager_count: int = settings.eager_count,
        min_rank_pairs: int = settings.min_rank_pairs,
    ):
        self.client = client
        self.fetcher = fetcher
        self.store = store
        self.ranker = ranker
        self.broker = broker
        self.toplist = toplist
        self.stop_event = stop_event or asyncio.Event()
        self.interval = interval
        self.eager_count = eager_count
        self.min_rank_pairs = min_rank_pairs
        self.last_run: Optional[float] = None

    async def run(self) -> None:
        """Poll now, then every interval, until the stop event is set."""
        while not self.stop_event.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Poll cycle failed: {e}")

            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

        logger.info("Poller: shutting down")

    async def poll_once(self) -> PollResult:
        logger.info("Polling HN top stories")
        start = time.monotonic()
        result = PollResult()

        try:
            top_ids = await self.client.fetch_top()
        except Exception as e:
            logger.error(f"Error fetching top stories: {e}")
            return result

        result.top_count = len(top_ids)
        self.toplist.set(top_ids)
        logger.info(f"TopList updated: {len(top_ids)} stories")

        pairs: list[RankPair] = []
        eager = min(self.eager_count, len(top_ids))

        for position, story_id in enumerate(top_ids, start=1):
            if self.stop_event.is_set():
                phase = "eager" if position <= eager else "lazy"
                logger.info(f"Poller: stopped during {phase} fetch")
                result.stopped = True
                return result

            try:
                if position <= eager:
                    await self.fetcher.fetch_item_with_comments(story_id)
                else:
                    await self.fetcher.fetch_item(story_id)
            except Exception as e:
                logger.error(f"Error fetching story {story_id}: {e}")
                result.failed += 1
                continue

            pairs.append(RankPair(id=story_id, rank=position))
            result.fetched_ids.append(story_id)

        if len(pairs) >= self.min_rank_pairs:
            try:
                await self.store.swap_ranks(pairs)
                result.ranks_swapped = True
            except Exception as e:
                logger.error(f"Error swapping ranks: {e}")
        else:
            logger.warning(
                f"Skipping rank swap: only {len(pairs)} stories fetched "
                f"(minimum {self.min_rank_pairs})"
            )

        await self.ranker.compute_all()

        if result.fetched_ids:
            self.broker.publish(STORIES_UPDATED, json.dumps({
                "story_ids": result.fetched_ids,
                "timestamp": int(time.time()),
            }))

        self.last_run = time.time()
        logger.info(
            f"Poll complete: {len(result.fetched_ids)} stories updated, "
            f"{result.failed} failed in {time.monotonic() - start:.1f}s"
        )
        return result
