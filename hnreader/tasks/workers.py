import asyncio
from typing import Optional

from hnreader.tasks.cleaner import Cleaner
from hnreader.tasks.poller import Poller
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)


class BackgroundWorkers:
    """
    Owns the long-lived background tasks (poller, cleaner) and the one
    stop event they share with the fetcher.

    Usage:
        workers = BackgroundWorkers(poller, cleaner, stop_event)
        workers.start()
        ...
        await workers.stop()
    """

    def __init__(self, poller: Poller, cleaner: Cleaner, stop_event: asyncio.Event):
        self.poller = poller
        self.cleaner = cleaner
        self.stop_event = stop_event
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self.poller.run(), name="poller"),
            asyncio.create_task(self.cleaner.run(), name="cleaner"),
        ]
        logger.info("Background workers started")

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Signal shutdown and wait for the tasks; cancel them after `timeout`."""
        self.stop_event.set()
        if not self._tasks:
            return

        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Worker {task.get_name()} exited with error: {task.exception()}")

        self._tasks = []
        logger.info("Background workers stopped")
