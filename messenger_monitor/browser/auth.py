"""Login state machine for the monitored messaging site.

This module drives a page from "unauthenticated" to "authenticated", either
by waiting for an operator to log in inside the live browser, or by typing
an identifier and secret, with an optional one-time code step.

States: Unauthenticated → FormOpening → CredentialEntry →
AwaitingCodeOrResult → Authenticated | Failed
"""

import asyncio
import re
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

import structlog
from playwright.async_api import ElementHandle, Page
from pydantic import BaseModel, SecretStr

from messenger_monitor.browser.context import NavigationError, goto_with_retry
from messenger_monitor.browser.locator import (
    Descriptor,
    ElementLocator,
    ElementNotFoundError,
    parse_descriptors,
)

logger = structlog.get_logger(__name__)

DESCRIPTOR_LISTS = (
    "login_button",
    "identifier_input",
    "identifier_submit",
    "secret_input",
    "login_submit",
    "code_input",
    "code_submit",
    "error_message",
)

LOGIN_PAGE_TIMEOUT_MS = 60000
SETTLE_TIMEOUT_MS = 15000
MIN_IDENTIFIER_LENGTH = 5


class LoginState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORM_OPENING = "form_opening"
    CREDENTIAL_ENTRY = "credential_entry"
    AWAITING_CODE_OR_RESULT = "awaiting_code_or_result"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class Credentials(BaseModel):
    """Login input for one attempt. Never persisted, never logged."""

    identifier: str
    secret: SecretStr
    one_time_code: str | None = None


class LoginOutcome(BaseModel):
    """Result of a login attempt.

    At most one of ``authenticated`` and ``requires_code`` is true.
    """

    authenticated: bool = False
    requires_code: bool = False
    error_message: str | None = None
    error_type: str | None = None


class AuthenticationError(Exception):
    """Raised when the site rejects a login or a login cannot be completed."""

    pass


class AuthManager:
    """Drives the login flow on a single page.

    Handles:
    1. Opening the login form (URL first, then a "sign in" control)
    2. Identifier entry and submit
    3. Secret entry and submit
    4. One-time code challenge (reported to the caller, then resumed)
    5. Manual login by an operator in the live browser
    """

    def __init__(
        self,
        locator: ElementLocator,
        selectors: dict[str, Any],
        *,
        manual_timeout: float = 300,
        check_interval: float = 5,
        progress_interval: float = 30,
        grace_period: float = 120,
        step_delay_ms: int = 2000,
        typing_delay_ms: int = 100,
        confirm_delay_ms: int = 5000,
        debug_dir: str | None = None,
    ) -> None:
        self.locator = locator
        self.selectors = selectors["auth"]
        self.descriptors: dict[str, list[Descriptor]] = {
            name: parse_descriptors(self.selectors.get(name, []))
            for name in DESCRIPTOR_LISTS
        }
        self.code_vocabulary = [w.lower() for w in self.selectors.get("code_vocabulary", [])]
        self.code_attributes = self.selectors.get("code_attributes", ["placeholder", "name"])
        self.manual_timeout = manual_timeout
        self.check_interval = check_interval
        self.progress_interval = progress_interval
        self.grace_period = grace_period
        self.step_delay_ms = step_delay_ms
        self.typing_delay_ms = typing_delay_ms
        self.confirm_delay_ms = confirm_delay_ms
        self.debug_dir = debug_dir
        self.state = LoginState.UNAUTHENTICATED

    async def login(
        self,
        page: Page,
        credentials: Credentials | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> LoginOutcome:
        """Run the login flow from the current page.

        Without credentials the operator is expected to log in manually in
        the browser window.

        Returns:
            The outcome; ``requires_code`` means the caller must come back
            with a one-time code through resume_with_code().
        """
        self._transition(LoginState.UNAUTHENTICATED)

        async def flow() -> LoginOutcome:
            if await self.is_logged_in(page):
                return self._succeed("already_logged_in")

            await self.open_login_form(page)

            if credentials is None:
                return await self.wait_for_manual_login(page, cancel_event)
            return await self._login_with_credentials(page, credentials, cancel_event)

        return await self._guarded(page, flow)

    async def resume_with_code(
        self,
        page: Page,
        code: str,
        cancel_event: asyncio.Event | None = None,
    ) -> LoginOutcome:
        """Continue a login parked on the one-time code prompt."""

        async def flow() -> LoginOutcome:
            self._transition(LoginState.AWAITING_CODE_OR_RESULT)
            code_input = await self.locator.locate(page, self.descriptors["code_input"])
            if code_input is None:
                logger.info("code_input_gone_before_resume", url=page.url)
                return await self.check_result(page, code, cancel_event)
            return await self._submit_code(page, code_input, code, cancel_event)

        return await self._guarded(page, flow)

    async def is_logged_in(self, page: Page) -> bool:
        """Check if the page shows an authenticated session.

        The URL check alone is not enough because the site's client-side
        router can lag the DOM, so page elements are checked as well.
        """
        try:
            current_url = page.url
            if any(seg in current_url for seg in self.selectors["authenticated_url_segments"]):
                logger.debug("logged_in_detected_by_url", url=current_url)
                return True

            if not await self.locator.exists(page, self.selectors["profile_markers"]):
                return False
            if await self.locator.exists(page, self.selectors["login_markers"]):
                return False

            logger.debug("logged_in_detected_by_elements")
            return True
        except Exception as e:
            logger.debug("login_check_failed", error=str(e))
            return False

    async def open_login_form(self, page: Page) -> bool:
        """Bring up the login form.

        Returns:
            True if the form is believed to be open. False is not fatal;
            the following step decides what to do.
        """
        self._transition(LoginState.FORM_OPENING)
        try:
            await goto_with_retry(
                page, self.selectors["login_url"], timeout_ms=LOGIN_PAGE_TIMEOUT_MS
            )
        except NavigationError as e:
            logger.warning("login_page_navigation_failed", error=str(e))
        await page.wait_for_timeout(self.step_delay_ms)

        if self.selectors["login_url_marker"] in page.url:
            logger.debug("login_form_opened_via_url", url=page.url)
            return True

        logger.info("login_form_not_opened_via_url", url=page.url)
        button = await self.locator.locate(page, self.descriptors["login_button"])
        if button is None:
            logger.warning("login_button_not_found", url=page.url)
            return False

        await button.click()
        await page.wait_for_timeout(self.step_delay_ms)
        logger.info("login_button_clicked", url=page.url)
        return True

    async def wait_for_manual_login(
        self,
        page: Page,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> LoginOutcome:
        """Poll until the operator has logged in, the wait times out, or it is cancelled."""
        timeout = self.manual_timeout if timeout is None else timeout
        cancel = cancel_event or asyncio.Event()
        loop = asyncio.get_running_loop()
        started = loop.time()
        next_progress = self.progress_interval

        logger.info("waiting_for_manual_login", timeout_seconds=timeout, url=page.url)

        while True:
            if cancel.is_set():
                logger.info("manual_login_cancelled")
                return self._fail("Login cancelled", "LOGIN_CANCELLED")

            if await self.is_logged_in(page):
                return self._succeed("manual_login_detected")

            elapsed = loop.time() - started
            if elapsed >= timeout:
                break

            if elapsed >= next_progress:
                logger.info(
                    "waiting_for_manual_login_progress",
                    waited_seconds=int(elapsed),
                    timeout_seconds=timeout,
                )
                next_progress += self.progress_interval

            try:
                await asyncio.wait_for(
                    cancel.wait(), timeout=min(self.check_interval, timeout - elapsed)
                )
            except asyncio.TimeoutError:
                pass

        return self._fail(
            f"Login was not completed within {timeout:g} seconds",
            "AUTHENTICATION_ERROR",
        )

    async def check_result(
        self,
        page: Page,
        code: str | None,
        cancel_event: asyncio.Event | None = None,
    ) -> LoginOutcome:
        """Decide the outcome after the secret was submitted.

        Precedence: error text, then a code prompt, then authentication signals.
        """
        self._transition(LoginState.AWAITING_CODE_OR_RESULT)

        error_text = await self._find_error_text(page)
        if error_text:
            raise AuthenticationError(error_text)

        code_input = await self.locator.locate(page, self.descriptors["code_input"])
        if code_input is not None:
            if not code:
                logger.info("one_time_code_required", url=page.url)
                return LoginOutcome(requires_code=True)
            return await self._submit_code(page, code_input, code, cancel_event)

        return await self._confirm_authenticated(page, cancel_event)

    async def _login_with_credentials(
        self,
        page: Page,
        credentials: Credentials,
        cancel_event: asyncio.Event | None,
    ) -> LoginOutcome:
        self._transition(LoginState.CREDENTIAL_ENTRY)

        identifier_input = await self.locator.locate(page, self.descriptors["identifier_input"])
        if identifier_input is None:
            identifier_input = await self.locator.first_visible_input(page)
            if identifier_input is not None:
                logger.warning("low_confidence_input_fallback", field="identifier")

        if identifier_input is None:
            logger.warning("identifier_input_not_found", url=page.url)
            await self._save_debug_screenshot(page, "login-form-missing")
            outcome = await self.wait_for_manual_login(page, cancel_event, self.grace_period)
            if outcome.authenticated or outcome.error_type == "LOGIN_CANCELLED":
                return outcome
            raise ElementNotFoundError("Identifier input field not found on login page")

        await self._enter_identifier(identifier_input, credentials.identifier)
        await self._submit(page, identifier_input, "identifier_submit")

        secret_input = await self.locator.locate(page, self.descriptors["secret_input"])
        if secret_input is None:
            logger.warning("secret_input_not_found", url=page.url)
            if await self.is_logged_in(page):
                return self._succeed("logged_in_after_identifier")
            if await self.locator.locate(page, self.descriptors["code_input"]) is not None:
                return await self.check_result(page, credentials.one_time_code, cancel_event)
            raise ElementNotFoundError("Password input field not found")

        logger.info("entering_secret")
        await self._type_into(secret_input, credentials.secret.get_secret_value())
        await self._submit(page, secret_input, "login_submit")
        await self._settle(page)

        return await self.check_result(page, credentials.one_time_code, cancel_event)

    async def _submit_code(
        self,
        page: Page,
        code_input: ElementHandle,
        code: str,
        cancel_event: asyncio.Event | None,
    ) -> LoginOutcome:
        logger.info("submitting_one_time_code", code_length=len(code))
        await self._type_into(code_input, code)
        await self._submit(page, code_input, "code_submit")
        await self._settle(page)

        error_text = await self._find_error_text(page)
        if error_text:
            return self._fail(error_text, "INVALID_CODE")

        # Cannot tell a slow page from a rejected code here; both count as rejected.
        still_there = await self.locator.locate(page, self.descriptors["code_input"])
        if still_there is not None and await self._is_code_field(still_there):
            return self._fail("Invalid one-time code", "INVALID_CODE")

        return await self._confirm_authenticated(page, cancel_event)

    async def _confirm_authenticated(
        self,
        page: Page,
        cancel_event: asyncio.Event | None,
    ) -> LoginOutcome:
        if await self.is_logged_in(page):
            return self._succeed("login_verified")

        await page.wait_for_timeout(self.confirm_delay_ms)
        if await self.is_logged_in(page):
            return self._succeed("login_verified_on_retry")

        logger.warning(
            "login_not_confirmed",
            url=page.url,
            grace_seconds=self.grace_period,
        )
        outcome = await self.wait_for_manual_login(page, cancel_event, self.grace_period)
        if outcome.authenticated or outcome.error_type == "LOGIN_CANCELLED":
            return outcome
        raise AuthenticationError("Login could not be confirmed")

    async def _enter_identifier(self, field: ElementHandle, identifier: str) -> None:
        normalized = re.sub(r"[\s\-()]", "", identifier)
        logger.info("entering_identifier", length=len(normalized))
        await self._type_into(field, normalized)

        entered = await field.input_value()
        if len(entered or "") < MIN_IDENTIFIER_LENGTH:
            logger.warning("identifier_not_accepted_retrying", entered_length=len(entered or ""))
            await self._type_into(field, normalized.removeprefix("+"))

    async def _type_into(self, field: ElementHandle, value: str) -> None:
        await field.click(click_count=3)
        await field.fill("")
        await field.type(value, delay=self.typing_delay_ms)

    async def _submit(self, page: Page, field: ElementHandle, step: str) -> None:
        button = await self.locator.locate(page, self.descriptors[step])
        if button is not None:
            await button.click()
            logger.debug("submit_clicked", step=step)
        else:
            await field.press("Enter")
            logger.debug("submit_enter_pressed", step=step)
        await page.wait_for_timeout(self.step_delay_ms)

    async def _settle(self, page: Page) -> None:
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=SETTLE_TIMEOUT_MS)
        except Exception as e:
            logger.debug("load_state_wait_timed_out", error=str(e))

    async def _find_error_text(self, page: Page) -> str | None:
        handle = await self.locator.locate(page, self.descriptors["error_message"])
        if handle is None:
            return None
        text = " ".join((await handle.text_content() or "").split())
        if text:
            logger.warning("login_error_text_detected", text=text[:200])
        return text[:200] or None

    async def _is_code_field(self, handle: ElementHandle) -> bool:
        for attribute in self.code_attributes:
            value = await handle.get_attribute(attribute)
            if value and any(word in value.lower() for word in self.code_vocabulary):
                return True
        return False

    async def _guarded(
        self,
        page: Page,
        flow: Callable[[], Awaitable[LoginOutcome]],
    ) -> LoginOutcome:
        try:
            return await flow()
        except ElementNotFoundError as e:
            await self._save_debug_screenshot(page, "login-element-missing")
            return self._fail(str(e), "ELEMENT_NOT_FOUND")
        except AuthenticationError as e:
            return self._fail(str(e), "AUTHENTICATION_ERROR")
        except Exception as e:
            logger.error("login_flow_error", error=str(e), exc_info=True)
            await self._save_debug_screenshot(page, "login-error")
            return self._fail(f"Login failed: {e}", "AUTHENTICATION_ERROR")

    async def _save_debug_screenshot(self, page: Page, name: str) -> None:
        if not self.debug_dir:
            return
        path = Path(self.debug_dir) / f"{name}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
            logger.info("debug_screenshot_saved", path=str(path))
        except Exception as e:
            logger.warning("debug_screenshot_failed", error=str(e))

    def _succeed(self, reason: str) -> LoginOutcome:
        self._transition(LoginState.AUTHENTICATED)
        logger.info("login_successful", reason=reason)
        return LoginOutcome(authenticated=True)

    def _fail(self, message: str, error_type: str) -> LoginOutcome:
        self._transition(LoginState.FAILED)
        logger.warning("login_failed", error=message, error_type=error_type)
        return LoginOutcome(error_message=message, error_type=error_type)

    def _transition(self, state: LoginState) -> None:
        if state is not self.state:
            logger.debug("login_state_changed", previous=self.state.value, state=state.value)
        self.state = state
