"""
Integration tests for the front-page poller.
"""
import asyncio
import json

import pytest

from hnreader.cache.toplist import TopList
from hnreader.events.broker import EventBroker
from hnreader.services.fetcher import Fetcher
from hnreader.services.ranker import Ranker
from hnreader.tasks.poller import STORIES_UPDATED, Poller
from tests.conftest import story_row


def make_poller(hn, store, extractor, stop=None, eager_count=2, min_rank_pairs=10):
    stop = stop or asyncio.Event()
    fetcher = Fetcher(hn, store, extractor, stop_event=stop)
    return Poller(
        hn, fetcher, store, Ranker(store), EventBroker(), TopList(),
        stop_event=stop,
        interval=0.01,
        eager_count=eager_count,
        min_rank_pairs=min_rank_pairs,
    )


def front_page(hn, count):
    for story_id in range(1, count + 1):
        hn.add_story(story_id, url=f"https://example.com/{story_id}")
        hn.add_comment(1000 + story_id, story_id)
    hn.top = list(range(count, 0, -1))


class TestPollOnce:

    @pytest.mark.asyncio
    async def test_full_poll_swaps_ranks_and_publishes(self, store, hn, extractor):
        front_page(hn, 12)
        await store.upsert_item(story_row(999, rank=1))
        poller = make_poller(hn, store, extractor)
        queue = poller.broker.subscribe()

        result = await poller.poll_once()

        assert result.ranks_swapped is True
        assert poller.toplist.snapshot() == tuple(hn.top)
        items, total = await store.list_items_by_rank(1, 30)
        assert total == 12
        assert [i.id for i in items] == hn.top
        assert (await store.get_item(999)).rank is None

        event = queue.get_nowait()
        assert event.type == STORIES_UPDATED
        assert json.loads(event.data)["story_ids"] == hn.top
        assert poller.last_run is not None

    @pytest.mark.asyncio
    async def test_eager_stories_get_comments_lazy_do_not(self, store, hn, extractor):
        front_page(hn, 12)
        poller = make_poller(hn, store, extractor, eager_count=2)

        await poller.poll_once()

        eager, lazy = hn.top[:2], hn.top[2:]
        for story_id in eager:
            assert await store.count_comments(story_id) == 1
        for story_id in lazy:
            assert await store.count_comments(story_id) == 0
        assert len(extractor.calls) == 2

    @pytest.mark.asyncio
    async def test_too_few_stories_keeps_previous_ranks(self, store, hn, extractor):
        await store.upsert_item(story_row(999, rank=1))
        front_page(hn, 12)
        for story_id in range(1, 5):
            hn.failing.add(story_id)
        poller = make_poller(hn, store, extractor)

        result = await poller.poll_once()

        assert len(result.fetched_ids) == 8
        assert result.failed == 4
        assert result.ranks_swapped is False
        assert (await store.get_item(999)).rank == 1
        # the TopList still reflects the upstream order
        assert len(poller.toplist) == 12

    @pytest.mark.asyncio
    async def test_exactly_minimum_pairs_swaps(self, store, hn, extractor):
        front_page(hn, 10)
        result = await make_poller(hn, store, extractor).poll_once()
        assert result.ranks_swapped is True

    @pytest.mark.asyncio
    async def test_top_list_failure_changes_nothing(self, store, hn, extractor):
        async def broken_top():
            raise RuntimeError("upstream down")

        hn.fetch_top = broken_top
        poller = make_poller(hn, store, extractor)
        poller.toplist.set([7, 8, 9])

        result = await poller.poll_once()

        assert result.top_count == 0
        assert poller.toplist.snapshot() == (7, 8, 9)

    @pytest.mark.asyncio
    async def test_stop_mid_cycle_skips_swap(self, store, hn, extractor):
        front_page(hn, 12)
        await store.upsert_item(story_row(999, rank=1))
        stop = asyncio.Event()
        poller = make_poller(hn, store, extractor, stop=stop)

        real_fetch_item = poller.fetcher.fetch_item

        async def fetch_then_stop(story_id, rank=None):
            await real_fetch_item(story_id, rank)
            stop.set()

        poller.fetcher.fetch_item = fetch_then_stop

        result = await poller.poll_once()

        assert result.stopped is True
        assert result.ranks_swapped is False
        assert (await store.get_item(999)).rank == 1


class TestRun:

    @pytest.mark.asyncio
    async def test_run_exits_when_stopped(self, store, hn, extractor):
        front_page(hn, 10)
        stop = asyncio.Event()
        poller = make_poller(hn, store, extractor, stop=stop)

        task = asyncio.create_task(poller.run())
        while hn.top_calls < 2:
            await asyncio.sleep(0.01)
        stop.set()

        await asyncio.wait_for(task, timeout=2)
        assert hn.top_calls >= 2
