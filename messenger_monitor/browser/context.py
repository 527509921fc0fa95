"""Browser session management with Playwright.

This module provides the BrowserManager that owns one Playwright Chromium
instance and its single document view. Nothing is persisted between runs:
every start launches a fresh browser context.
"""

import asyncio

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from messenger_monitor.config import settings

logger = structlog.get_logger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)


class NavigationError(Exception):
    """Raised when a page does not settle within the navigation timeout."""

    pass


class BrowserManager:
    """Owner of one automation session and its document view.

    Usage:
        manager = BrowserManager()
        page = await manager.open_page()
        # ... drive the page ...
        await manager.close()
    """

    _playwright: Playwright | None
    _browser: Browser | None
    _context: BrowserContext | None
    _page: Page | None

    def __init__(
        self,
        *,
        headless: bool | None = None,
        viewport: dict[str, int] | None = None,
    ) -> None:
        self.headless = settings.browser_headless if headless is None else headless
        self.viewport = viewport or {
            "width": settings.viewport_width,
            "height": settings.viewport_height,
        }
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    @property
    def page(self) -> Page | None:
        return self._page

    async def open_page(self) -> Page:
        """Launch Chromium and open the document view.

        Returns:
            The session's page. Calling this again returns the same page.

        Raises:
            RuntimeError: If browser fails to launch.
        """
        async with self._lock:
            if self._page is not None:
                return self._page

            try:
                logger.info("initializing_playwright")
                self._playwright = await async_playwright().start()

                logger.info(
                    "launching_browser",
                    headless=self.headless,
                    viewport=self.viewport,
                )
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=[
                        "--no-sandbox",
                        "--disable-setuid-sandbox",
                        "--disable-blink-features=AutomationControlled",
                        "--disable-dev-shm-usage",
                    ],
                )
                self._context = await self._browser.new_context(
                    viewport=self.viewport,
                    locale=settings.browser_locale,
                    timezone_id=settings.browser_timezone,
                    user_agent=USER_AGENT,
                )
                self._page = await self._context.new_page()
                self._page.set_default_timeout(settings.navigation_timeout_ms)

                logger.info("browser_initialized_successfully")
                return self._page

            except Exception as e:
                logger.error(
                    "browser_initialization_failed",
                    error=str(e),
                    exc_info=True,
                )
                await self._release()
                raise RuntimeError(f"Failed to initialize browser: {e}") from e

    async def close(self) -> None:
        """Close the page, the browser and Playwright. Safe to call repeatedly."""
        async with self._lock:
            await self._release()
            logger.info("browser_shutdown_complete")

    async def _release(self) -> None:
        self._page = None

        if self._context is not None:
            try:
                await self._context.close()
            except Exception as e:
                logger.warning("error_closing_context", error=str(e))
            finally:
                self._context = None

        if self._browser is not None:
            logger.info("closing_browser")
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning("error_closing_browser", error=str(e))
            finally:
                self._browser = None

        if self._playwright is not None:
            logger.info("stopping_playwright")
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning("error_stopping_playwright", error=str(e))
            finally:
                self._playwright = None


async def goto_with_retry(
    page: Page,
    url: str,
    *,
    timeout_ms: int | None = None,
    wait_until: str = "domcontentloaded",
    fallback_wait_until: str = "commit",
) -> None:
    """Navigate, retrying once with a more lenient load condition.

    Raises:
        NavigationError: If both attempts fail.
    """
    timeout = timeout_ms or settings.navigation_timeout_ms
    logger.debug("navigating_to_url", url=url, wait_until=wait_until)
    try:
        await page.goto(url, wait_until=wait_until, timeout=timeout)
    except Exception as first_error:
        logger.warning(
            "navigation_retry",
            url=url,
            wait_until=fallback_wait_until,
            error=str(first_error),
        )
        try:
            await page.goto(url, wait_until=fallback_wait_until, timeout=timeout)
        except Exception as e:
            raise NavigationError(f"Failed to load {url}: {e}") from e
    logger.debug("navigation_complete", url=url, current_url=page.url)
