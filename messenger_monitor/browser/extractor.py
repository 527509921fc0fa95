"""Message extraction from the live messenger page.

The site renders messages both inside structured chat containers and as
loose message elements elsewhere in the document, so several strategies run
on every poll. Each strategy takes one snapshot of the document with a
single ``page.evaluate`` call, and all matching, phone-number parsing and
filtering happen in Python on that snapshot. Overlap between strategies is
expected; the poller's dedup gate removes it.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from playwright.async_api import Page
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

# Russian number formats: +7XXXXXXXXXX, 8XXXXXXXXXX, +7 (XXX) XXX-XX-XX, 8 (XXX) XXX-XX-XX
PHONE_PATTERNS = [
    re.compile(r"\+7\d{10}"),
    re.compile(r"8\d{10}"),
    re.compile(r"\+7\s?\(\d{3}\)\s?\d{3}[\s-]?\d{2}[\s-]?\d{2}"),
    re.compile(r"8\s?\(\d{3}\)\s?\d{3}[\s-]?\d{2}[\s-]?\d{2}"),
]

CHAT_CONTAINERS_SCRIPT = """({containers, items}) =>
    Array.from(document.querySelectorAll(containers)).map(el => ({
        text: el.textContent || '',
        html: el.innerHTML || '',
        items: Array.from(el.querySelectorAll(items)).map(m => (m.textContent || '').trim()),
    }))
"""

BUBBLES_SCRIPT = """(bubbles) => ({
    body: document.body ? (document.body.textContent || '') : '',
    bubbles: Array.from(document.querySelectorAll(bubbles)).map(el => (el.textContent || '').trim()),
})
"""

PREVIEWS_SCRIPT = """({previews, messages}) => ({
    body: document.body ? (document.body.textContent || '') : '',
    previews: Array.from(document.querySelectorAll(previews)).map(el => el.textContent || ''),
    messages: Array.from(document.querySelectorAll(messages)).map(el => (el.textContent || '').trim()),
})
"""


class ExtractionError(Exception):
    """Raised when a poll's document evaluation fails."""

    pass


class ExtractedMessage(BaseModel):
    """A message observed in one extraction pass."""

    id: str
    text: str
    sender_name: str
    phone_number: str | None = None
    observed_at: str
    source: str

    @classmethod
    def create(
        cls,
        text: str,
        sender_name: str,
        source: str,
        phone_number: str | None = None,
    ) -> "ExtractedMessage":
        return cls(
            id=f"{source}_{uuid.uuid4().hex[:12]}",
            text=text,
            sender_name=sender_name,
            phone_number=phone_number,
            observed_at=datetime.now(timezone.utc).isoformat(),
            source=source,
        )


def extract_phone_number(text: str) -> str | None:
    """Return the first phone number in the text, without whitespace."""
    for pattern in PHONE_PATTERNS:
        match = pattern.search(text)
        if match:
            return re.sub(r"\s", "", match.group(0))
    return None


class ExtractionStrategy:
    """Base class: one document snapshot in, extracted messages out."""

    name = "base"
    script = ""

    def __init__(
        self,
        selectors: dict[str, Any],
        target_names: list[str],
        default_sender: str,
    ) -> None:
        self.selectors = selectors
        self.target_names = target_names
        self.default_sender = default_sender

    def script_arg(self) -> Any:
        raise NotImplementedError

    def parse(self, snapshot: Any) -> list[ExtractedMessage]:
        raise NotImplementedError

    async def extract(self, page: Page) -> list[ExtractedMessage]:
        snapshot = await page.evaluate(self.script, self.script_arg())
        return self.parse(snapshot)

    def first_target(self, *texts: str) -> str | None:
        for text in texts:
            for name in self.target_names:
                if name in text:
                    return name
        return None

    def mentions_target(self, text: str) -> bool:
        return self.first_target(text) is not None

    def _message(
        self, text: str, sender: str | None, phone_number: str | None
    ) -> ExtractedMessage:
        return ExtractedMessage.create(
            text=text,
            sender_name=sender or self.default_sender,
            source=self.name,
            phone_number=phone_number,
        )


class ChatContainerStrategy(ExtractionStrategy):
    """Chat/dialog containers that mention a target: every message-like descendant."""

    name = "chat_container"
    script = CHAT_CONTAINERS_SCRIPT

    def script_arg(self) -> Any:
        return {
            "containers": ", ".join(self.selectors["chat_containers"]),
            "items": ", ".join(self.selectors["message_items"]),
        }

    def parse(self, snapshot: Any) -> list[ExtractedMessage]:
        messages = []
        for container in snapshot or []:
            text = container.get("text", "")
            html = container.get("html", "")
            sender = self.first_target(text, html)
            if sender is None:
                continue

            phone_number = extract_phone_number(text) or extract_phone_number(html)
            for item in container.get("items", []):
                item = item.strip()
                if item:
                    messages.append(self._message(item, sender, phone_number))
        return messages


class BubbleScanStrategy(ExtractionStrategy):
    """Loose message bubbles anywhere in a document that mentions a target."""

    name = "bubble_scan"
    script = BUBBLES_SCRIPT

    def script_arg(self) -> Any:
        return ", ".join(self.selectors["message_bubbles"])

    def parse(self, snapshot: Any) -> list[ExtractedMessage]:
        if not snapshot or not self.mentions_target(snapshot.get("body", "")):
            return []

        messages = []
        for bubble in snapshot.get("bubbles", []):
            bubble = bubble.strip()
            if bubble:
                messages.append(
                    self._message(bubble, self.first_target(bubble), extract_phone_number(bubble))
                )
        return messages


class ChatPreviewStrategy(ExtractionStrategy):
    """Chat-list previews plus size-capped bubbles, with compose prompts filtered out."""

    name = "chat_preview"
    script = PREVIEWS_SCRIPT

    def __init__(
        self,
        selectors: dict[str, Any],
        target_names: list[str],
        default_sender: str,
    ) -> None:
        super().__init__(selectors, target_names, default_sender)
        self.preview_max_length = int(selectors.get("preview_max_length", 500))
        self.container_max_length = int(selectors.get("container_max_length", 1000))
        self.boilerplate = [p.lower() for p in selectors.get("boilerplate_phrases", [])]

    def script_arg(self) -> Any:
        return {
            "previews": ", ".join(self.selectors["chat_previews"]),
            "messages": ", ".join(self.selectors["conversation_messages"]),
        }

    def parse(self, snapshot: Any) -> list[ExtractedMessage]:
        if not snapshot:
            return []

        messages = []
        for preview in snapshot.get("previews", []):
            sender = self.first_target(preview)
            if sender is None:
                continue
            lines = [line.strip() for line in preview.splitlines() if line.strip()]
            if not lines:
                continue
            last_line = lines[-1]
            if len(last_line) < self.preview_max_length:
                phone_number = extract_phone_number(preview) or extract_phone_number(last_line)
                messages.append(self._message(last_line, sender, phone_number))

        if not self.mentions_target(snapshot.get("body", "")):
            return messages

        for text in snapshot.get("messages", []):
            text = text.strip()
            if not text or len(text) >= self.container_max_length:
                continue
            if self.is_boilerplate(text):
                continue
            messages.append(
                self._message(text, self.first_target(text), extract_phone_number(text))
            )
        return messages

    def is_boilerplate(self, text: str) -> bool:
        lowered = text.lower()
        return any(phrase in lowered for phrase in self.boilerplate)


class MessageExtractor:
    """Runs every strategy against the page, gated on a messaging context."""

    def __init__(
        self,
        selectors: dict[str, Any],
        target_names: list[str],
        default_sender: str | None = None,
        strategies: list[ExtractionStrategy] | None = None,
    ) -> None:
        self.selectors = selectors["extraction"]
        self.target_names = target_names
        self.default_sender = default_sender or target_names[-1]
        self.strategies = strategies or [
            cls(self.selectors, target_names, self.default_sender)
            for cls in (ChatContainerStrategy, BubbleScanStrategy, ChatPreviewStrategy)
        ]

    def in_messaging_context(self, url: str) -> bool:
        return any(marker in url for marker in self.selectors["context_markers"])

    async def extract(self, page: Page) -> list[ExtractedMessage]:
        """Extract candidate messages from the page.

        Returns:
            Every candidate found this pass, duplicates included.

        Raises:
            ExtractionError: If every strategy failed.
        """
        current_url = page.url
        if not self.in_messaging_context(current_url):
            logger.debug("not_in_messaging_context", url=current_url)
            return []

        messages: list[ExtractedMessage] = []
        failures = []
        for strategy in self.strategies:
            try:
                found = await strategy.extract(page)
            except Exception as e:
                logger.warning("extraction_strategy_failed", strategy=strategy.name, error=str(e))
                failures.append(f"{strategy.name}: {e}")
                continue
            messages.extend(found)

        if failures and len(failures) == len(self.strategies):
            raise ExtractionError("; ".join(failures))

        logger.debug("extraction_complete", candidates=len(messages))
        return messages
