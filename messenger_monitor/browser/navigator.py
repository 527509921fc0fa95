"""Best-effort move from the post-login landing page to the messenger."""

from typing import Any

import structlog
from playwright.async_api import Page

from messenger_monitor.browser.locator import ElementLocator, parse_descriptors

logger = structlog.get_logger(__name__)

MESSENGER_URL_TIMEOUT_MS = 15000


class Navigator:
    """Opens the conversation view by link when possible, by URL otherwise.

    Never raises: if nothing works, monitoring simply stays idle until the
    operator opens the messenger by hand.
    """

    def __init__(
        self,
        locator: ElementLocator,
        selectors: dict[str, Any],
        *,
        step_delay_ms: int = 3000,
    ) -> None:
        self.locator = locator
        self.selectors = selectors["navigation"]
        self.link_descriptors = parse_descriptors(self.selectors["messenger_link"])
        self.step_delay_ms = step_delay_ms

    def in_messenger(self, url: str) -> bool:
        return any(marker in url for marker in self.selectors["context_markers"])

    async def open_messenger(self, page: Page) -> bool:
        """Navigate to the messenger.

        Returns:
            True if the page ended up in a messaging context.
        """
        try:
            logger.info("navigating_to_messenger", url=page.url)
            if self.in_messenger(page.url):
                return True

            if await self._follow_link(page):
                return True

            logger.info("messenger_link_not_usable_trying_direct_urls")
            for url in self.selectors["messenger_urls"]:
                try:
                    await page.goto(
                        url, wait_until="domcontentloaded", timeout=MESSENGER_URL_TIMEOUT_MS
                    )
                    await page.wait_for_timeout(self.step_delay_ms)
                except Exception as e:
                    logger.warning("messenger_url_failed", url=url, error=str(e))
                    continue

                if self.in_messenger(page.url):
                    logger.info("messenger_opened_by_url", url=page.url)
                    return True

            logger.warning(
                "messenger_not_opened",
                url=page.url,
                hint="open the messenger manually in the browser; monitoring starts there",
            )
            return False

        except Exception as e:
            logger.error("messenger_navigation_error", error=str(e), exc_info=True)
            return False

    async def _follow_link(self, page: Page) -> bool:
        link = await self.locator.locate(page, self.link_descriptors)
        if link is None:
            return False

        href = await link.get_attribute("href")
        logger.info("messenger_link_found", href=href)
        await link.click()
        await page.wait_for_timeout(self.step_delay_ms)

        if self.in_messenger(page.url):
            logger.info("messenger_opened_by_link", url=page.url)
            return True
        return False
