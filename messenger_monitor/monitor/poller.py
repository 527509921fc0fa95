"""Fixed-interval message polling with a content-derived dedup gate.

The loop wakes up every poll interval, or earlier when the page reports a
document change. Waking twice for the same content is harmless because
every message passes the dedup gate before it is forwarded.
"""

import asyncio

import structlog
from playwright.async_api import Page

from messenger_monitor.browser.extractor import ExtractedMessage, MessageExtractor
from messenger_monitor.monitor.session import MessageSink, Session

logger = structlog.get_logger(__name__)

DEDUP_TEXT_LENGTH = 100
STATUS_LOG_EVERY = 10
NOTIFY_FUNCTION = "messengerMonitorNotify"

# Debounced so a busy page wakes the poller at most once per second
OBSERVER_SCRIPT = """() => {
    if (window.__messengerMonitorObserver || !document.body) return;
    let pending = null;
    const observer = new MutationObserver(() => {
        if (pending) return;
        pending = setTimeout(() => {
            pending = null;
            if (window.%(notify)s) window.%(notify)s();
        }, 1000);
    });
    observer.observe(document.body, {childList: true, subtree: true});
    window.__messengerMonitorObserver = observer;
}""" % {"notify": NOTIFY_FUNCTION}

OBSERVER_INIT_SCRIPT = """(() => {
    const install = %s;
    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', install);
    } else {
        install();
    }
})();""" % OBSERVER_SCRIPT


def make_dedup_key(message: ExtractedMessage) -> str:
    """Sender plus the first 100 characters of the text.

    Two messages from one sender that differ only after character 100 share
    a key, so only the first of them is forwarded.
    """
    return f"{message.sender_name}_{message.text[:DEDUP_TEXT_LENGTH]}"


class MessagePoller:
    """Periodic extraction feeding new, unique messages to the sink."""

    def __init__(
        self,
        session: Session,
        extractor: MessageExtractor,
        sink: MessageSink,
        interval_seconds: float = 3.0,
    ) -> None:
        self.session = session
        self.extractor = extractor
        self.sink = sink
        self.interval = interval_seconds
        self.tick_count = 0
        self._wake = asyncio.Event()
        self._in_flight = False

    def start(self) -> asyncio.Task:
        """Start the polling task and record it on the session."""
        self._wake.clear()
        task = asyncio.create_task(self._run(), name="message-poller")
        self.session.poll_task = task
        return task

    def notify(self, *_args: object) -> None:
        """Wake the loop early (document-change signal)."""
        self._wake.set()

    async def watch_document(self, page: Page) -> bool:
        """Install the document-change observer on the page.

        Best effort: on failure the loop keeps running on its timer alone.
        """
        try:
            await page.expose_function(NOTIFY_FUNCTION, self.notify)
            await page.add_init_script(OBSERVER_INIT_SCRIPT)
            await page.evaluate(OBSERVER_SCRIPT)
            logger.info("document_change_listener_installed")
            return True
        except Exception as e:
            logger.warning("document_change_listener_failed", error=str(e))
            return False

    async def poll_once(self) -> int:
        """Run one tick.

        Returns:
            Number of messages forwarded to the sink.
        """
        session = self.session
        if not session.running or session.page is None:
            return 0
        if self._in_flight:
            logger.debug("poll_tick_skipped_in_flight")
            return 0

        self._in_flight = True
        self.tick_count += 1
        if self.tick_count % STATUS_LOG_EVERY == 0:
            logger.info("monitoring_active", checks=self.tick_count)

        try:
            messages = await self.extractor.extract(session.page)
        except Exception as e:
            logger.error("message_check_failed", error=str(e), exc_info=True)
            return 0
        finally:
            self._in_flight = False

        return self.accept(messages)

    def accept(self, messages: list[ExtractedMessage]) -> int:
        """Forward the messages whose dedup key has not been seen yet."""
        if not self.session.running:
            return 0

        forwarded = 0
        for message in messages:
            if not message.text.strip():
                continue
            key = make_dedup_key(message)
            if key in self.session.seen_keys:
                continue

            self.session.seen_keys.add(key)
            forwarded += 1
            logger.info(
                "new_message",
                sender=message.sender_name,
                text=message.text[:50],
                source=message.source,
            )
            try:
                self.sink.publish(message)
            except Exception as e:
                logger.error(
                    "message_publish_failed",
                    sender=message.sender_name,
                    error=str(e),
                    exc_info=True,
                )

        if forwarded:
            logger.info("new_messages_forwarded", count=forwarded)
        else:
            logger.debug("no_new_messages", candidates=len(messages))
        return forwarded

    async def _run(self) -> None:
        logger.info("message_polling_started", interval_seconds=self.interval)
        try:
            while self.session.running:
                await self.poll_once()
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
                self._wake.clear()
        finally:
            logger.info("message_polling_stopped", checks=self.tick_count)
