"""
In-memory event broker for Server-Sent Events.

- publish() assigns a strictly increasing ID, appends the event to a
  bounded ring buffer and offers it to every subscriber queue
- A full subscriber queue skips the event (best-effort delivery); clients
  catch up by reconnecting with their last event ID
- events_after() replays the buffer for reconnecting clients, or reports
  that the client is too far behind and must resync

Counter, ring buffer and subscriber set share one lock; delivery to the
subscriber queues happens after it is released.
"""
import asyncio
import threading
from collections import deque
from dataclasses import dataclass
from typing import Optional

from hnreader.config.settings import settings

SYNC_REQUIRED = "sync_required"


@dataclass(frozen=True)
class Event:
    id: int
    type: str
    data: str

    def format(self) -> str:
        """SSE wire frame."""
        return f"id: {self.id}\nevent: {self.type}\ndata: {self.data}\n\n"


class EventBroker:

    def __init__(
        self,
        ring_size: int = settings.event_ring_size,
        subscriber_buffer: int = settings.subscriber_buffer,
    ):
        self._lock = threading.Lock()
        self._ring: deque[Event] = deque(maxlen=ring_size)
        self._subscribers: set[asyncio.Queue] = set()
        self._next_id = 1
        self.subscriber_buffer = subscriber_buffer

    def publish(self, event_type: str, data: str) -> Event:
        """Record an event and offer it to every current subscriber."""
        with self._lock:
            event = Event(id=self._next_id, type=event_type, data=data)
            self._next_id += 1
            self._ring.append(event)
            subscribers = list(self._subscribers)

        for queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # slow consumer, skip
                pass
        return event

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.subscriber_buffer)
        with self._lock:
            self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers.discard(queue)
        # Drop anything still buffered for the departed subscriber
        while not queue.empty():
            queue.get_nowait()

    def events_after(self, last_id: int) -> tuple[Optional[list[Event]], bool]:
        """
        Buffered events newer than `last_id`.

        Returns:
            ([], True) when nothing is buffered,
            (None, False) when last_id < oldest.id - 1 (replay impossible),
            otherwise (events with id > last_id in ascending order, True)
        """
        with self._lock:
            if not self._ring:
                return [], True

            oldest = self._ring[0].id
            if last_id < oldest - 1:
                return None, False

            return [event for event in self._ring if event.id > last_id], True

    def resync_event(self) -> Event:
        """The signal sent to a client that fell out of the replay window."""
        return Event(id=self.latest_id, type=SYNC_REQUIRED, data="{}")

    @property
    def latest_id(self) -> int:
        with self._lock:
            return self._next_id - 1

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
