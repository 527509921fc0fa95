"""Monitoring session lifecycle: start, poll, stop."""

from messenger_monitor.monitor.controller import SessionController, SessionStatus, StartResult
from messenger_monitor.monitor.poller import MessagePoller
from messenger_monitor.monitor.session import Session

__all__ = [
    "SessionController",
    "SessionStatus",
    "StartResult",
    "MessagePoller",
    "Session",
]
