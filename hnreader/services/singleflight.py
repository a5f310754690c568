import asyncio
from typing import Any, Awaitable, Callable


class SingleFlight:
    """
    Coalesce concurrent calls that share a key.

    The first caller for a key starts the work as a task; callers arriving
    while it is in flight await the same task and receive the same result
    or exception. The key is forgotten as soon as the task finishes, so a
    later call starts fresh work.

    A waiter being cancelled does not cancel the shared task (it is
    shielded), so the remaining waiters still get their result.
    """

    def __init__(self):
        self._calls: dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._calls

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._calls.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._calls[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._calls.get(key) is task:
            del self._calls[key]
        # Mark the exception as retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()
