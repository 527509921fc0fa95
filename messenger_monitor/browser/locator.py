"""Cascading element lookup over markup this project does not control.

The monitored site changes its markup without notice, so every element is
described by an ordered list of descriptors instead of one selector. The
locator walks that list and returns the first match that is actually
visible, scanning the main document before any embedded frames.
"""

from typing import Any, Iterable, Literal

import structlog
from playwright.async_api import ElementHandle, Frame, Page
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

VISIBILITY_SCRIPT = """el => {
    const style = window.getComputedStyle(el);
    return el.offsetWidth > 0 &&
        el.offsetHeight > 0 &&
        style.display !== 'none' &&
        style.visibility !== 'hidden' &&
        style.opacity !== '0';
}"""

# Input types that can never hold typed text
NON_TEXT_INPUT_TYPES = {"hidden", "submit", "button", "checkbox", "radio", "image", "reset", "file"}


class ElementNotFoundError(Exception):
    """Raised when a required control cannot be located."""

    pass


class Descriptor(BaseModel):
    """One way of finding a UI element."""

    kind: Literal["attribute", "text", "structure"] = "attribute"
    selector: str
    text: list[str] = Field(default_factory=list)
    match_on: list[str] = Field(default_factory=lambda: ["text"])
    exclude: list[str] = Field(default_factory=list)

    @classmethod
    def from_config(cls, entry: Any) -> "Descriptor":
        """Build a descriptor from a YAML entry (a bare selector or a mapping)."""
        if isinstance(entry, str):
            return cls(selector=entry)
        return cls.model_validate(entry)


def parse_descriptors(entries: Iterable[Any]) -> list[Descriptor]:
    """Parse a YAML descriptor list."""
    return [Descriptor.from_config(entry) for entry in entries]


class ElementLocator:
    """First-visible-match lookup over descriptor lists.

    All methods are read-only probes: nothing is clicked or typed, and a
    miss is reported as ``None`` / ``False`` rather than raised.
    """

    async def locate(
        self,
        page: Page,
        descriptors: list[Descriptor],
        *,
        include_frames: bool = True,
    ) -> ElementHandle | None:
        """Return the first visible element matched by the descriptors.

        Args:
            page: The page to search.
            descriptors: Candidates in priority order.
            include_frames: Also search embedded frames after the main document.

        Returns:
            Element handle, or None if nothing visible matched.
        """
        for frame in self._frames(page, include_frames):
            for descriptor in descriptors:
                try:
                    handles = await frame.query_selector_all(descriptor.selector)
                except Exception as e:
                    logger.debug(
                        "selector_query_failed",
                        selector=descriptor.selector,
                        error=str(e),
                    )
                    continue

                for handle in handles:
                    if not await self.matches(handle, descriptor):
                        continue
                    if not await self.is_visible(handle):
                        continue
                    logger.debug(
                        "element_located",
                        selector=descriptor.selector,
                        kind=descriptor.kind,
                        in_frame=frame is not page.main_frame,
                    )
                    return handle

        return None

    async def require(
        self,
        page: Page,
        descriptors: list[Descriptor],
        what: str,
    ) -> ElementHandle:
        """Like locate(), but raise when nothing is found.

        Raises:
            ElementNotFoundError: If no descriptor yields a visible element.
        """
        handle = await self.locate(page, descriptors)
        if handle is None:
            raise ElementNotFoundError(f"{what} not found")
        return handle

    async def exists(self, page: Page, selectors: list[str]) -> bool:
        """Check whether any selector matches in the main document.

        Visibility is not checked.
        """
        for selector in selectors:
            try:
                if await page.query_selector(selector) is not None:
                    return True
            except Exception as e:
                logger.debug("selector_query_failed", selector=selector, error=str(e))
        return False

    async def first_visible_input(self, page: Page) -> ElementHandle | None:
        """Last-resort fallback: the first visible text-capable input.

        Low confidence by nature; callers log when they rely on it.
        """
        try:
            inputs = await page.query_selector_all("input")
        except Exception as e:
            logger.debug("selector_query_failed", selector="input", error=str(e))
            return None

        for handle in inputs:
            input_type = (await handle.get_attribute("type") or "text").lower()
            if input_type in NON_TEXT_INPUT_TYPES:
                continue
            if await self.is_visible(handle):
                return handle
        return None

    async def is_visible(self, handle: ElementHandle) -> bool:
        """Check rendered size, display, visibility and opacity."""
        try:
            return bool(await handle.evaluate(VISIBILITY_SCRIPT))
        except Exception:
            # Detached or navigated away
            return False

    async def matches(self, handle: ElementHandle, descriptor: Descriptor) -> bool:
        """Apply the descriptor's vocabulary and exclusions to an element."""
        if not descriptor.text and not descriptor.exclude:
            return True

        haystack = await self._haystack(handle, descriptor.match_on)
        if any(phrase.lower() in haystack for phrase in descriptor.exclude):
            return False
        if not descriptor.text:
            return True
        return any(phrase.lower() in haystack for phrase in descriptor.text)

    async def _haystack(self, handle: ElementHandle, sources: list[str]) -> str:
        parts = []
        for source in sources:
            try:
                if source == "text":
                    value = await handle.text_content()
                else:
                    value = await handle.get_attribute(source)
            except Exception:
                value = None
            if value:
                parts.append(value)
        return " ".join(parts).lower()

    def _frames(self, page: Page, include_frames: bool) -> list[Frame]:
        main = page.main_frame
        if not include_frames:
            return [main]
        return [main] + [frame for frame in page.frames if frame is not main]
