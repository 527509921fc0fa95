"""Top-level orchestration of a monitoring session.

SessionController sequences Login → Navigate → Poll, owns the browser and
page handles, and guarantees they are released when monitoring stops or
fails to start.
"""

import asyncio
import contextlib
from typing import Any, Callable

import structlog
from pydantic import BaseModel

from messenger_monitor.browser.auth import AuthManager, Credentials, LoginOutcome
from messenger_monitor.browser.context import BrowserManager, NavigationError, goto_with_retry
from messenger_monitor.browser.extractor import ExtractedMessage, MessageExtractor
from messenger_monitor.browser.locator import ElementLocator
from messenger_monitor.browser.navigator import Navigator
from messenger_monitor.config import Settings, settings
from messenger_monitor.monitor.poller import MessagePoller
from messenger_monitor.monitor.session import MessageSink, Session

logger = structlog.get_logger(__name__)

SYSTEM_SENDER = "Система"


class StartResult(BaseModel):
    """Outcome of a start request."""

    success: bool
    requires_code: bool = False
    already_running: bool = False
    message: str | None = None
    error_message: str | None = None
    error_type: str | None = None


class SessionStatus(BaseModel):
    """Point-in-time snapshot of the session."""

    running: bool
    session_open: bool
    current_location: str | None = None
    seen_count: int = 0
    awaiting_code: bool = False


class SessionController:
    """Start, stop and inspect monitoring.

    Attributes:
        session: The session state this controller owns.
        auth: Login state machine.
        navigator: Messenger navigation.
        extractor: Message extraction strategies.
    """

    def __init__(
        self,
        sink: MessageSink,
        selectors: dict[str, Any],
        *,
        config: Settings | None = None,
        browser_factory: Callable[[], BrowserManager] | None = None,
    ) -> None:
        self.sink = sink
        self.selectors = selectors
        self.config = config or settings
        self.browser_factory = browser_factory or (
            lambda: BrowserManager(
                headless=self.config.browser_headless,
                viewport={
                    "width": self.config.viewport_width,
                    "height": self.config.viewport_height,
                }
            )
        )

        locator = ElementLocator()
        self.auth = AuthManager(
            locator,
            selectors,
            manual_timeout=self.config.manual_login_timeout_seconds,
            check_interval=self.config.manual_login_check_seconds,
            progress_interval=self.config.manual_login_progress_seconds,
            grace_period=self.config.login_grace_seconds,
            debug_dir=self.config.debug_dir,
        )
        self.navigator = Navigator(locator, selectors)
        self.extractor = MessageExtractor(
            selectors,
            self.config.target_names,
            self.config.sender_fallback,
        )

        self.session = Session()
        self.poller: MessagePoller | None = None
        self._lock = asyncio.Lock()

    async def start(self, credentials: Credentials | None = None) -> StartResult:
        """Open the browser, log in, open the messenger and begin polling.

        Without credentials the operator logs in by hand in the browser
        window. A ``requires_code`` result leaves the browser open; call
        start() again with the same credentials plus the code to resume.
        """
        if self.session.running:
            logger.warning("monitoring_already_running")
            return StartResult(
                success=True,
                already_running=True,
                message="Monitoring is already running",
            )

        async with self._lock:
            if self.session.running:
                logger.warning("monitoring_already_running")
                return StartResult(
                    success=True,
                    already_running=True,
                    message="Monitoring is already running",
                )

            # Only under the lock: a stop queued ahead of us has already run
            self.session.cancel_event.clear()

            try:
                outcome = await self._authenticate(credentials)

                if outcome.requires_code:
                    self.session.awaiting_code = True
                    return StartResult(
                        success=False,
                        requires_code=True,
                        message="One-time code required",
                        error_type="CODE_REQUIRED",
                    )

                if not outcome.authenticated:
                    await self._teardown()
                    return StartResult(
                        success=False,
                        error_message=outcome.error_message,
                        error_type=outcome.error_type,
                    )

                self.session.awaiting_code = False
                await self._begin_monitoring()
                return StartResult(success=True, message="Monitoring started")

            except NavigationError as e:
                logger.error("monitoring_start_failed", error=str(e))
                await self._teardown()
                return StartResult(
                    success=False, error_message=str(e), error_type="NAVIGATION_ERROR"
                )
            except Exception as e:
                logger.error("monitoring_start_failed", error=str(e), exc_info=True)
                await self._teardown()
                return StartResult(
                    success=False, error_message=str(e), error_type="START_ERROR"
                )

    async def stop(self) -> None:
        """Stop polling and close the browser. Safe to call at any time."""
        logger.info("stopping_monitoring")
        # Wake any pending manual-login wait before waiting for the lock
        self.session.cancel_event.set()
        async with self._lock:
            await self._teardown()
        logger.info("monitoring_stopped")

    def get_status(self) -> SessionStatus:
        session = self.session
        return SessionStatus(
            running=session.running,
            session_open=session.session_open,
            current_location=session.current_location,
            seen_count=len(session.seen_keys),
            awaiting_code=session.awaiting_code,
        )

    async def _authenticate(self, credentials: Credentials | None) -> LoginOutcome:
        session = self.session

        if session.awaiting_code and session.page is not None:
            code = credentials.one_time_code if credentials else None
            if not code:
                logger.info("start_without_code_while_awaiting_code")
                return LoginOutcome(requires_code=True)
            logger.info("resuming_login_with_code")
            return await self.auth.resume_with_code(page=session.page, code=code,
                                                    cancel_event=session.cancel_event)

        if session.session_open:
            await self._teardown()

        logger.info("starting_browser_session")
        session.browser = self.browser_factory()
        session.page = await session.browser.open_page()

        logger.info("navigating_to_home_page")
        await goto_with_retry(session.page, self.selectors["site"]["home_url"])

        return await self.auth.login(session.page, credentials, session.cancel_event)

    async def _begin_monitoring(self) -> None:
        session = self.session
        page = session.page

        if await self.navigator.open_messenger(page):
            self.sink.publish(
                ExtractedMessage.create(
                    text="✅ Мессенджер открыт! Мониторинг активен и готов к работе.",
                    sender_name=SYSTEM_SENDER,
                    source="system",
                )
            )

        session.seen_keys.clear()
        session.running = True

        self.poller = MessagePoller(
            session,
            self.extractor,
            self.sink,
            interval_seconds=self.config.poll_interval_ms / 1000,
        )
        await self.poller.watch_document(page)
        self.poller.start()

        names = " / ".join(f'"{name}"' for name in self.config.target_names)
        logger.info("monitoring_started", targets=self.config.target_names)
        self.sink.publish(
            ExtractedMessage.create(
                text=f"✅ Мониторинг запущен и готов к работе! Ожидание сообщений от {names}...",
                sender_name=SYSTEM_SENDER,
                source="system",
            )
        )

    async def _teardown(self) -> None:
        session = self.session
        session.running = False

        task = session.poll_task
        session.poll_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        session.seen_keys.clear()
        session.awaiting_code = False
        self.poller = None

        browser = session.browser
        session.browser = None
        session.page = None
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning("browser_close_failed", error=str(e))
