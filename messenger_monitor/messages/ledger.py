"""In-memory message ledger with subscriber fan-out.

The ledger keeps every published message for the lifetime of the process,
so newly attached observers can be sent the history first. Live messages
are pushed to subscribers synchronously as they are published.
"""

from typing import Callable

import structlog

from messenger_monitor.browser.extractor import ExtractedMessage

logger = structlog.get_logger(__name__)

Listener = Callable[[ExtractedMessage], None]


class MessageLedger:
    """Message sink: stores published messages and notifies listeners."""

    def __init__(self) -> None:
        self._messages: list[ExtractedMessage] = []
        self._listeners: list[Listener] = []

    def publish(self, message: ExtractedMessage) -> None:
        """Append a message and notify every listener.

        A failing listener is logged and skipped; it never affects the
        publisher or the other listeners.
        """
        self._messages.append(message)
        logger.debug(
            "message_published",
            message_id=message.id,
            listeners=len(self._listeners),
        )

        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.warning("listener_notification_failed", error=str(e))

    def get_all(self) -> list[ExtractedMessage]:
        """Return a copy of all published messages, oldest first."""
        return list(self._messages)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)
