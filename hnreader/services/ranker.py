"""
Period rankings: alternative orderings of stored stories.

- day:       stories from the last 24h, time-decayed score
- yesterday: stories from 24-48h ago, raw score (a fixed snapshot)
- week:      stories from the last 7 days, time-decayed score

Decay: (score - 1) / (age_hours + 2) ^ 1.5
"""
import time
from typing import Optional

from hnreader.cache.redis_client import CacheKeys, RedisCache
from hnreader.database.store import RankingRow, Store
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)

HOUR = 3600
DAY = 24 * HOUR

PERIODS = ("day", "yesterday", "week")


def decay_score(raw_score: int, age_hours: float) -> float:
    """Recency-weighted score. Not clamped: scores of 0 or 1 give <= 0."""
    return (raw_score - 1) / (age_hours + 2) ** 1.5


class Ranker:

    def __init__(self, store: Store, cache: Optional[RedisCache] = None):
        self.store = store
        self.cache = cache

    async def compute_all(self, now: Optional[int] = None) -> dict[str, int]:
        """
        Recompute every period against one "now".

        Returns:
            Rows written per period (-1 for a period that failed)
        """
        now = int(time.time()) if now is None else now
        results = {
            "day": await self.compute_period("day", now - DAY, now, now, use_raw_score=False),
            "yesterday": await self.compute_period("yesterday", now - 2 * DAY, now - DAY, now, use_raw_score=True),
            "week": await self.compute_period("week", now - 7 * DAY, now, now, use_raw_score=False),
        }

        if self.cache is not None:
            await self.cache.delete_pattern(CacheKeys.rankings_pattern())

        return results

    async def compute_period(
        self,
        period: str,
        start: int,
        end: int,
        now: int,
        use_raw_score: bool,
    ) -> int:
        """Replace the rankings of one period with scores for stories created in [start, end)."""
        try:
            items = await self.store.list_items_by_time_range(start, end)
            rows = []
            for item in items:
                if use_raw_score:
                    score = float(item.score)
                else:
                    score = decay_score(item.score, (now - item.time) / HOUR)
                rows.append(RankingRow(story_id=item.id, score=score, computed_at=now))

            count = await self.store.replace_rankings(period, rows)
        except Exception as e:
            logger.error(f"Ranker: failed to compute '{period}' rankings: {e}")
            return -1

        logger.info(f"Ranker: computed {count} '{period}' rankings")
        return count
