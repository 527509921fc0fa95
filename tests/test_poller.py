"""Tests for the poll loop and its dedup gate."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from messenger_monitor.browser.extractor import ExtractedMessage, ExtractionError
from messenger_monitor.messages.ledger import MessageLedger
from messenger_monitor.monitor.poller import (
    NOTIFY_FUNCTION,
    OBSERVER_INIT_SCRIPT,
    MessagePoller,
    make_dedup_key,
)
from messenger_monitor.monitor.session import Session
from tests.fakes import FakePage


def message(text: str, sender: str = "Анна") -> ExtractedMessage:
    return ExtractedMessage.create(text, sender, "bubble_scan")


def running_session() -> Session:
    session = Session()
    session.running = True
    session.page = FakePage(url="https://example.test/messenger")
    return session


def make_poller(session: Session, batches=None, interval: float = 3.0):
    extractor = MagicMock()
    extractor.extract = AsyncMock(side_effect=batches or [])
    ledger = MessageLedger()
    return MessagePoller(session, extractor, ledger, interval_seconds=interval), extractor, ledger


def test_dedup_key_format():
    """Test sender plus the first 100 characters."""
    text = "a" * 150

    assert make_dedup_key(message(text)) == "Анна_" + "a" * 100


@pytest.mark.asyncio
async def test_message_forwarded_at_most_once():
    """Test that a repeated message reaches the sink once."""
    session = running_session()
    poller, _, ledger = make_poller(
        session, [[message("Привет")], [message("Привет"), message("Привет")]]
    )

    assert await poller.poll_once() == 1
    assert await poller.poll_once() == 0
    assert [m.text for m in ledger.get_all()] == ["Привет"]
    assert session.seen_keys == {"Анна_Привет"}


@pytest.mark.asyncio
async def test_texts_differing_after_100_characters_collide():
    """Test that only the first 100 characters identify a message."""
    prefix = "x" * 100
    session = running_session()
    poller, _, ledger = make_poller(session, [[message(prefix + " one"), message(prefix + " two")]])

    assert await poller.poll_once() == 1
    assert ledger.get_all()[0].text == prefix + " one"


@pytest.mark.asyncio
async def test_texts_differing_within_100_characters_are_distinct():
    """Test that a difference at character 100 keeps both messages."""
    prefix = "x" * 99
    session = running_session()
    poller, _, _ = make_poller(session, [[message(prefix + "1"), message(prefix + "2")]])

    assert await poller.poll_once() == 2


@pytest.mark.asyncio
async def test_same_text_from_different_senders_is_distinct():
    """Test that the sender is part of the key."""
    session = running_session()
    poller, _, _ = make_poller(
        session, [[message("Да", "Анна"), message("Да", "Анна Смирнова")]]
    )

    assert await poller.poll_once() == 2


@pytest.mark.asyncio
async def test_empty_text_is_skipped():
    """Test that blank messages never reach the sink."""
    session = running_session()
    poller, _, ledger = make_poller(session, [[message("   ")]])

    assert await poller.poll_once() == 0
    assert len(ledger) == 0
    assert session.seen_keys == set()


@pytest.mark.asyncio
async def test_extraction_error_does_not_stop_polling():
    """Test that a failed tick is logged and the next tick proceeds."""
    session = running_session()
    poller, extractor, ledger = make_poller(
        session, [ExtractionError("page closed"), [message("Снова я")]]
    )

    assert await poller.poll_once() == 0
    assert await poller.poll_once() == 1
    assert extractor.extract.await_count == 2
    assert len(ledger) == 1


@pytest.mark.asyncio
async def test_tick_does_nothing_when_not_running():
    """Test the running guard on ticks and on accept()."""
    session = running_session()
    session.running = False
    poller, extractor, ledger = make_poller(session, [[message("Привет")]])

    assert await poller.poll_once() == 0
    extractor.extract.assert_not_called()
    assert poller.accept([message("Привет")]) == 0
    assert len(ledger) == 0


@pytest.mark.asyncio
async def test_tick_with_no_candidates_forwards_nothing():
    """Test an empty extraction, e.g. outside the messenger."""
    session = running_session()
    poller, _, ledger = make_poller(session, [[]])

    assert await poller.poll_once() == 0
    assert len(ledger) == 0


@pytest.mark.asyncio
async def test_loop_polls_until_stopped():
    """Test the background task and its record on the session."""
    session = running_session()
    poller, extractor, ledger = make_poller(session, interval=0.01)
    extractor.extract = AsyncMock(return_value=[message("Привет")])

    task = poller.start()
    assert session.poll_task is task

    await asyncio.sleep(0.08)
    session.running = False
    await asyncio.wait_for(task, timeout=1)

    assert extractor.extract.await_count >= 2
    assert len(ledger) == 1


@pytest.mark.asyncio
async def test_notify_wakes_loop_early():
    """Test that a document change signal triggers a tick before the interval."""
    session = running_session()
    poller, extractor, _ = make_poller(session, interval=60)
    extractor.extract = AsyncMock(return_value=[])

    task = poller.start()
    await asyncio.sleep(0.02)
    assert extractor.extract.await_count == 1

    poller.notify()
    await asyncio.sleep(0.02)
    assert extractor.extract.await_count == 2

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_watch_document_installs_observer():
    """Test that the change listener is exposed and injected."""
    session = running_session()
    poller, _, _ = make_poller(session)
    page = session.page

    assert await poller.watch_document(page) is True
    assert page.exposed[NOTIFY_FUNCTION] == poller.notify
    assert page.init_scripts == [OBSERVER_INIT_SCRIPT]


@pytest.mark.asyncio
async def test_watch_document_failure_is_tolerated():
    """Test that a page refusing the binding leaves the timer in charge."""
    session = running_session()
    poller, _, _ = make_poller(session)
    page = MagicMock()
    page.expose_function = AsyncMock(side_effect=Exception("already registered"))

    assert await poller.watch_document(page) is False


class FlakySink:
    """Sink whose first publish fails."""

    def __init__(self) -> None:
        self.calls = 0
        self.received: list[ExtractedMessage] = []

    def publish(self, message: ExtractedMessage) -> None:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("observer went away")
        self.received.append(message)


@pytest.mark.asyncio
async def test_sink_failure_does_not_stop_the_tick():
    """Test that a failing publish skips only that message."""
    session = running_session()
    extractor = MagicMock()
    extractor.extract = AsyncMock(side_effect=[[message("один"), message("два")], [message("три")]])
    sink = FlakySink()
    poller = MessagePoller(session, extractor, sink)

    assert await poller.poll_once() == 2
    assert await poller.poll_once() == 1
    assert [m.text for m in sink.received] == ["два", "три"]
    # The failed message still counts as seen
    assert "Анна_один" in session.seen_keys


@pytest.mark.asyncio
async def test_loop_survives_sink_failure():
    """Test that the polling task keeps ticking after a publish error."""
    session = running_session()
    extractor = MagicMock()
    counter = iter(range(1000))
    extractor.extract = AsyncMock(side_effect=lambda page: [message(f"сообщение {next(counter)}")])
    poller = MessagePoller(session, extractor, FlakySink(), interval_seconds=0.01)

    task = poller.start()
    await asyncio.sleep(0.1)

    assert not task.done()
    assert poller.tick_count > 2

    session.running = False
    await asyncio.wait_for(task, timeout=1)
