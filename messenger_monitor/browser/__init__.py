"""Browser automation for the monitored messaging site.

This module provides browser session management, cascading element lookup,
the login state machine, messenger navigation and message extraction, all
built on Playwright.
"""

from messenger_monitor.browser.context import BrowserManager
from messenger_monitor.browser.auth import AuthManager, Credentials, LoginOutcome
from messenger_monitor.browser.extractor import ExtractedMessage, MessageExtractor
from messenger_monitor.browser.locator import ElementLocator
from messenger_monitor.browser.navigator import Navigator

__all__ = [
    "BrowserManager",
    "AuthManager",
    "Credentials",
    "LoginOutcome",
    "ExtractedMessage",
    "MessageExtractor",
    "ElementLocator",
    "Navigator",
]
