import threading
from typing import Sequence


class TopList:
    """
    In-memory snapshot of the current front-page story order.

    Replaced wholesale by the poller after each successful top-stories
    fetch and read by the stories endpoint for pagination. Each write
    swaps in a new immutable tuple, so readers always see one complete
    ordering. Not persisted: empty after a restart until the first poll.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._ids: tuple[int, ...] = ()

    def set(self, ids: Sequence[int]) -> None:
        snapshot = tuple(ids)
        with self._lock:
            self._ids = snapshot

    def snapshot(self) -> tuple[int, ...]:
        with self._lock:
            return self._ids

    def page(self, page: int, page_size: int) -> tuple[list[int], int]:
        """IDs on a 1-indexed page, plus the total number of IDs."""
        ids = self.snapshot()
        total = len(ids)
        if total == 0 or page < 1:
            return [], total

        offset = (page - 1) * page_size
        if offset >= total:
            return [], total
        return list(ids[offset:offset + page_size]), total

    def __len__(self) -> int:
        return len(self.snapshot())
