"""Tests for the message ledger and its server-sent-events stream."""

import json

import pytest

from messenger_monitor.browser.extractor import ExtractedMessage
from messenger_monitor.messages.ledger import MessageLedger
from messenger_monitor.messages.stream import format_event, message_events


def message(text: str) -> ExtractedMessage:
    return ExtractedMessage.create(text, "Анна", "chat_preview")


def test_publish_keeps_history_in_order():
    """Test that get_all() returns a copy, oldest first."""
    ledger = MessageLedger()
    ledger.publish(message("first"))
    ledger.publish(message("second"))

    history = ledger.get_all()
    history.clear()

    assert [m.text for m in ledger.get_all()] == ["first", "second"]
    assert len(ledger) == 2


def test_subscribers_receive_published_messages():
    """Test fan-out and unsubscribe."""
    ledger = MessageLedger()
    received = []
    unsubscribe = ledger.subscribe(received.append)

    ledger.publish(message("one"))
    unsubscribe()
    unsubscribe()
    ledger.publish(message("two"))

    assert [m.text for m in received] == ["one"]
    assert ledger.subscriber_count == 0


def test_failing_listener_does_not_affect_others():
    """Test listener isolation."""
    ledger = MessageLedger()
    received = []

    def broken(_message):
        raise RuntimeError("socket closed")

    ledger.subscribe(broken)
    ledger.subscribe(received.append)

    ledger.publish(message("hello"))

    assert [m.text for m in received] == ["hello"]
    assert len(ledger) == 1


def test_clear():
    """Test emptying the history."""
    ledger = MessageLedger()
    ledger.publish(message("hello"))
    ledger.clear()

    assert ledger.get_all() == []


def test_format_event():
    """Test SSE frame encoding keeps Cyrillic readable."""
    frame = format_event("newMessage", {"text": "Привет"})

    assert frame == 'event: newMessage\ndata: {"text": "Привет"}\n\n'


@pytest.mark.asyncio
async def test_event_stream_replays_history_then_streams():
    """Test allMessages first, then one newMessage per publish."""
    ledger = MessageLedger()
    old = message("old")
    ledger.publish(old)

    stream = message_events(ledger)

    first = await stream.__anext__()
    assert first.startswith("event: allMessages\n")
    payload = json.loads(first.split("data: ", 1)[1])
    assert [m["id"] for m in payload] == [old.id]
    assert ledger.subscriber_count == 1

    new = message("new")
    ledger.publish(new)

    second = await stream.__anext__()
    assert second.startswith("event: newMessage\n")
    assert json.loads(second.split("data: ", 1)[1])["text"] == "new"

    await stream.aclose()
    assert ledger.subscriber_count == 0


@pytest.mark.asyncio
async def test_event_stream_keepalive_and_disconnect():
    """Test keepalive comments and stopping on disconnect."""
    ledger = MessageLedger()
    disconnected = False

    async def is_disconnected():
        return disconnected

    stream = message_events(ledger, is_disconnected, keepalive=0.01)

    await stream.__anext__()
    assert await stream.__anext__() == ": keepalive\n\n"

    disconnected = True
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert ledger.subscriber_count == 0
