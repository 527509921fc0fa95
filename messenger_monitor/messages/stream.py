"""Server-sent-events fan-out of ledger messages.

A new observer first receives the whole history as one ``allMessages``
event, then one ``newMessage`` event per message published afterwards.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog

from messenger_monitor.browser.extractor import ExtractedMessage
from messenger_monitor.messages.ledger import MessageLedger

logger = structlog.get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}
KEEPALIVE_SECONDS = 15.0


def format_event(event: str, data: Any) -> str:
    """Encode one SSE frame."""
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


async def message_events(
    ledger: MessageLedger,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for one observer until it disconnects."""
    queue: asyncio.Queue[ExtractedMessage] = asyncio.Queue()
    # Subscribe before snapshotting so nothing published in between is lost
    unsubscribe = ledger.subscribe(queue.put_nowait)
    logger.info("event_subscriber_connected", subscribers=ledger.subscriber_count)

    try:
        history = ledger.get_all()
        seen_ids = {message.id for message in history}
        yield format_event("allMessages", [message.model_dump() for message in history])

        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            try:
                message = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if message.id in seen_ids:
                continue
            yield format_event("newMessage", message.model_dump())
    finally:
        unsubscribe()
        logger.info("event_subscriber_disconnected", subscribers=ledger.subscriber_count)
