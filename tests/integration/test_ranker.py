"""
Integration tests for period ranking computation.
"""
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from hnreader.services.ranker import DAY, HOUR, Ranker, decay_score
from tests.conftest import NOW, story_row


@pytest_asyncio.fixture
async def stories(store):
    """
    1: 1h old, score 50        (day, week)
    2: 10h old, score 500      (day, week)
    3: 30h old, score 300      (yesterday, week)
    4: 3 days old, score 900   (week)
    5: 8 days old, score 1000  (none)
    6: exactly 24h old, score 5 (day, week; windows include their start)
    """
    rows = [
        story_row(1, time=NOW - HOUR, score=50),
        story_row(2, time=NOW - 10 * HOUR, score=500),
        story_row(3, time=NOW - 30 * HOUR, score=300),
        story_row(4, time=NOW - 3 * DAY, score=900),
        story_row(5, time=NOW - 8 * DAY, score=1000),
        story_row(6, time=NOW - DAY, score=5),
    ]
    for row in rows:
        await store.upsert_item(row)
    return rows


async def ranked_ids(store, period):
    return [r.story_id for r in await store.get_rankings(period)]


class TestRanker:

    @pytest.mark.asyncio
    async def test_periods_select_half_open_windows(self, store, stories):
        counts = await Ranker(store).compute_all(now=NOW)

        assert counts == {"day": 3, "yesterday": 1, "week": 5}
        assert set(await ranked_ids(store, "day")) == {1, 2, 6}
        assert set(await ranked_ids(store, "yesterday")) == {3}
        assert 5 not in await ranked_ids(store, "week")

    @pytest.mark.asyncio
    async def test_day_uses_decayed_score(self, store, stories):
        await Ranker(store).compute_all(now=NOW)

        rankings = {r.story_id: r for r in await store.get_rankings("day")}
        assert rankings[2].score == pytest.approx(decay_score(500, 10))
        assert rankings[1].score == pytest.approx(decay_score(50, 1))
        assert rankings[1].computed_at == NOW

    @pytest.mark.asyncio
    async def test_yesterday_uses_raw_score(self, store, stories):
        await Ranker(store).compute_all(now=NOW)

        rankings = await store.get_rankings("yesterday")
        assert [(r.story_id, r.score) for r in rankings] == [(3, 300.0)]

    @pytest.mark.asyncio
    async def test_recompute_replaces_previous_rankings(self, store, stories):
        ranker = Ranker(store)
        await ranker.compute_all(now=NOW)
        await ranker.compute_all(now=NOW + 2 * DAY)

        # every story is now more than a day old
        assert await ranked_ids(store, "day") == []

    @pytest.mark.asyncio
    async def test_invalidates_cached_pages(self, store, stories):
        cache = AsyncMock()
        await Ranker(store, cache=cache).compute_all(now=NOW)
        cache.delete_pattern.assert_awaited_once_with("rankings:*")

    @pytest.mark.asyncio
    async def test_store_failure_is_reported_per_period(self, store, stories):
        ranker = Ranker(store)

        async def broken(period, rows):
            raise RuntimeError("disk full")

        store.replace_rankings = broken
        counts = await ranker.compute_all(now=NOW)
        assert counts == {"day": -1, "yesterday": -1, "week": -1}
