"""
Server-Sent Events stream.

On connect the client gets a ": connected" comment, then (if it sent a
last event ID) either the buffered events it missed or a single
"sync_required" event when it fell out of the replay window. Live events
follow; a keepalive comment is sent when the stream is otherwise idle.
"""
import asyncio
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import StreamingResponse

from hnreader.api.dependencies import get_broker, require_auth
from hnreader.events.broker import EventBroker
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["events"], dependencies=[Depends(require_auth)])


def parse_last_event_id(*values: Optional[str]) -> Optional[int]:
    """First value that parses as a non-negative integer, else None."""
    for value in values:
        if value is None:
            continue
        try:
            last_id = int(value.strip())
        except ValueError:
            continue
        if last_id >= 0:
            return last_id
    return None


async def event_stream(
    broker: EventBroker,
    last_id: Optional[int],
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive: float,
    stop_event: Optional[asyncio.Event] = None,
) -> AsyncIterator[str]:
    # Subscribe before replaying so nothing published in between is lost
    queue = broker.subscribe()
    sent = broker.latest_id if last_id is None else last_id
    try:
        yield ": connected\n\n"

        if last_id is not None:
            events, ok = broker.events_after(last_id)
            if not ok:
                resync = broker.resync_event()
                sent = resync.id
                yield resync.format()
            else:
                for event in events:
                    sent = event.id
                    yield event.format()

        while True:
            if stop_event is not None and stop_event.is_set():
                break
            if await is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            # Already delivered by the replay
            if event.id <= sent:
                continue
            sent = event.id
            yield event.format()
    finally:
        broker.unsubscribe(queue)


@router.get("/events")
async def stream_events(
    request: Request,
    last_event_id_param: Optional[str] = Query(None, alias="lastEventId"),
    last_event_id_header: Optional[str] = Header(None, alias="Last-Event-ID"),
    broker: EventBroker = Depends(get_broker),
):
    """SSE stream of story updates. Reconnecting clients resume via Last-Event-ID."""
    last_id = parse_last_event_id(last_event_id_header, last_event_id_param)
    settings = request.app.state.settings

    logger.debug(f"SSE client connected (last_id={last_id})")
    return StreamingResponse(
        event_stream(
            broker,
            last_id,
            request.is_disconnected,
            settings.keepalive_seconds,
            stop_event=request.app.state.stop_event,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
