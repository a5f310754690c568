"""
Daily cleanup of stale stories.

Removes stories that are off the front page, were last fetched more than
`retention_days` ago and appear in no period ranking, together with their
comments and article. Runs first one hour after startup so a cold store is
not swept immediately.
"""
import asyncio
import time
from typing import Optional

from hnreader.config.settings import settings
from hnreader.database.store import Store
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)


class Cleaner:

    def __init__(
        self,
        store: Store,
        stop_event: Optional[asyncio.Event] = None,
        initial_delay: float = settings.cleaner_initial_delay_seconds,
        interval: float = settings.cleaner_interval_seconds,
        retention_days: int = settings.retention_days,
    ):
        self.store = store
        self.stop_event = stop_event or asyncio.Event()
        self.initial_delay = initial_delay
        self.interval = interval
        self.retention_days = retention_days
        self.last_run: Optional[float] = None

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True if the stop event fired meanwhile."""
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def run(self) -> None:
        if await self._wait(self.initial_delay):
            logger.info("Cleaner: shutting down before first run")
            return

        while not self.stop_event.is_set():
            try:
                await self.cleanup()
            except Exception as e:
                logger.error(f"Cleanup failed: {e}")

            if await self._wait(self.interval):
                break

        logger.info("Cleaner: shutting down")

    async def cleanup(self, now: Optional[int] = None) -> int:
        """
        Delete stale off-page stories.

        Returns:
            Number of stories deleted
        """
        logger.info("Cleaner: starting cleanup")
        now = int(time.time()) if now is None else now
        cutoff = now - self.retention_days * 86400

        ids = await self.store.stale_unranked_item_ids(cutoff)

        deleted = 0
        for story_id in ids:
            if self.stop_event.is_set():
                logger.info("Cleaner: stopped during cleanup")
                break
            try:
                await self.store.delete_item_cascade(story_id)
            except Exception as e:
                logger.error(f"Cleaner: error deleting story {story_id}: {e}")
                continue
            deleted += 1

        if deleted > 0:
            logger.info(f"Cleaner: deleted {deleted} old stories")
            try:
                await self.store.compact()
            except Exception as e:
                logger.error(f"Cleaner: vacuum error: {e}")

        self.last_run = time.time()
        logger.info("Cleaner: cleanup complete")
        return deleted
