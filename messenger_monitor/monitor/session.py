"""The mutable state of one monitoring session."""

import asyncio
from typing import Protocol

from playwright.async_api import Page

from messenger_monitor.browser.context import BrowserManager
from messenger_monitor.browser.extractor import ExtractedMessage


class MessageSink(Protocol):
    """Where newly seen messages are forwarded."""

    def publish(self, message: ExtractedMessage) -> None: ...


class Session:
    """Automation handles and dedup state, owned by one SessionController.

    ``browser`` and ``page`` are opened and invalidated together.
    ``seen_keys`` only grows while running and is cleared on every
    start/stop.
    """

    def __init__(self) -> None:
        self.running = False
        self.browser: BrowserManager | None = None
        self.page: Page | None = None
        self.poll_task: asyncio.Task | None = None
        self.seen_keys: set[str] = set()
        self.awaiting_code = False
        self.cancel_event = asyncio.Event()

    @property
    def session_open(self) -> bool:
        return self.browser is not None

    @property
    def current_location(self) -> str | None:
        if self.page is None:
            return None
        try:
            return self.page.url
        except Exception:
            return None
