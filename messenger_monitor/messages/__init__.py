"""Message storage and fan-out for monitored conversations."""

from messenger_monitor.messages.ledger import MessageLedger
from messenger_monitor.messages.stream import format_event, message_events

__all__ = ["MessageLedger", "format_event", "message_events"]
