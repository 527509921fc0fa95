"""Tests for the login state machine.

This module tests credential entry, the one-time code round trip, error
precedence, manual login waiting and cancellation against a fake page.
"""

import asyncio

import pytest
from pydantic import SecretStr

from messenger_monitor.browser.auth import AuthManager, Credentials, LoginState
from messenger_monitor.browser.locator import ElementLocator
from tests.fakes import FakeElement, FakePage

HOME = "https://example.test/"
PROFILE = "https://example.test/profile"


def make_auth(selectors, **overrides) -> AuthManager:
    options = {
        "manual_timeout": 0.05,
        "check_interval": 0.01,
        "progress_interval": 0.02,
        "grace_period": 0,
    }
    options.update(overrides)
    return AuthManager(ElementLocator(), selectors, **options)


def credentials(code: str | None = None) -> Credentials:
    return Credentials(
        identifier="+7 (999) 123-45-67",
        secret=SecretStr("hunter2"),
        one_time_code=code,
    )


def login_form(url: str = HOME) -> FakePage:
    page = FakePage(url=url)
    page.add("input.phone", FakeElement(attrs={"type": "tel"}))
    page.add("button.next", FakeElement("Далее"))
    page.add("input.password", FakeElement(attrs={"type": "password"}))
    page.add("button.submit", FakeElement("Войти"))
    return page


def go_to_profile(page: FakePage):
    def navigate() -> None:
        page.remove("input.code")
        page.url = PROFILE

    return navigate


@pytest.mark.asyncio
async def test_already_logged_in_short_circuits(selectors):
    """Test that an authenticated page skips the login form entirely."""
    page = FakePage(url="https://example.test/profile/items")
    auth = make_auth(selectors)

    outcome = await auth.login(page, credentials())

    assert outcome.authenticated is True
    assert outcome.requires_code is False
    assert page.visited == []
    assert auth.state is LoginState.AUTHENTICATED


@pytest.mark.asyncio
async def test_is_logged_in_uses_page_markers(selectors):
    """Test the element-based authentication check."""
    auth = make_auth(selectors)
    page = FakePage(url=HOME)

    assert await auth.is_logged_in(page) is False

    page.add("a.profile", FakeElement(visible=False))
    assert await auth.is_logged_in(page) is True

    # A visible login link means the profile link is not ours
    page.add("a.login", FakeElement("Вход"))
    assert await auth.is_logged_in(page) is False


@pytest.mark.asyncio
async def test_credentials_login_succeeds(selectors):
    """Test identifier and secret entry ending on an authenticated page."""
    page = login_form()
    page.elements["button.submit"][0].on_click = go_to_profile(page)
    auth = make_auth(selectors)

    outcome = await auth.login(page, credentials())

    assert outcome.authenticated is True
    assert page.elements["input.phone"][0].value == "+79991234567"
    assert page.elements["input.password"][0].value == "hunter2"
    assert page.elements["button.next"][0].clicks == 1
    assert page.visited[0][0] == selectors["auth"]["login_url"]


@pytest.mark.asyncio
async def test_identifier_retyped_without_plus_when_rejected(selectors):
    """Test the retry without a leading plus sign."""

    class PlusRejectingInput(FakeElement):
        async def type(self, value, delay=None):
            if not value.startswith("+"):
                self.value += value

    page = login_form()
    phone = PlusRejectingInput(attrs={"type": "tel"})
    page.elements["input.phone"] = [phone]
    page.elements["button.submit"][0].on_click = go_to_profile(page)

    outcome = await make_auth(selectors).login(page, credentials())

    assert outcome.authenticated is True
    assert phone.value == "79991234567"


@pytest.mark.asyncio
async def test_enter_pressed_when_no_submit_button(selectors):
    """Test the Enter key fallback for submission."""
    page = login_form()
    page.remove("button.next")
    page.elements["button.submit"][0].on_click = go_to_profile(page)

    outcome = await make_auth(selectors).login(page, credentials())

    assert outcome.authenticated is True
    assert page.elements["input.phone"][0].pressed == ["Enter"]


@pytest.mark.asyncio
async def test_code_required_then_resume_succeeds(selectors):
    """Test the one-time code round trip."""
    page = login_form()
    code_input = page.add("input.code", FakeElement(attrs={"placeholder": "Код из SMS"}))
    auth = make_auth(selectors)

    outcome = await auth.login(page, credentials())

    assert outcome.requires_code is True
    assert outcome.authenticated is False
    assert outcome.error_type is None

    page.add("button.confirm", FakeElement("Подтвердить", on_click=go_to_profile(page)))

    outcome = await auth.resume_with_code(page, "4321")

    assert outcome.authenticated is True
    assert outcome.requires_code is False
    assert code_input.value == "4321"


@pytest.mark.asyncio
async def test_code_supplied_up_front_is_submitted(selectors):
    """Test that a code given with the credentials is used immediately."""
    page = login_form()
    page.add("input.code", FakeElement(attrs={"placeholder": "Код из SMS"}))
    page.add("button.confirm", FakeElement("Подтвердить", on_click=go_to_profile(page)))

    outcome = await make_auth(selectors).login(page, credentials(code="4321"))

    assert outcome.authenticated is True


@pytest.mark.asyncio
async def test_code_field_still_present_means_invalid_code(selectors):
    """Test that a code prompt surviving submission is a rejected code."""
    page = login_form()
    page.add("input.code", FakeElement(attrs={"name": "sms-code"}))
    page.add("button.confirm", FakeElement("Подтвердить"))
    auth = make_auth(selectors)

    outcome = await auth.login(page, credentials(code="0000"))

    assert outcome.authenticated is False
    assert outcome.error_type == "INVALID_CODE"
    assert outcome.error_message == "Invalid one-time code"
    assert auth.state is LoginState.FAILED


@pytest.mark.asyncio
async def test_error_text_after_code_is_invalid_code(selectors):
    """Test that error text after code submission is reported verbatim."""
    page = login_form()
    page.add("input.code", FakeElement(attrs={"placeholder": "Код"}))

    def reject() -> None:
        page.add(".error", FakeElement("Неверный код"))

    page.add("button.confirm", FakeElement("Подтвердить", on_click=reject))

    outcome = await make_auth(selectors).login(page, credentials(code="0000"))

    assert outcome.error_type == "INVALID_CODE"
    assert outcome.error_message == "Неверный код"


@pytest.mark.asyncio
async def test_error_text_takes_precedence_over_code_prompt(selectors):
    """Test that a wrong password is reported even if a code field shows."""
    page = login_form()
    page.add("input.code", FakeElement(attrs={"placeholder": "Код"}))

    def reject() -> None:
        page.add(".error", FakeElement("  Неверный   пароль "))

    page.elements["button.submit"][0].on_click = reject

    outcome = await make_auth(selectors).login(page, credentials())

    assert outcome.requires_code is False
    assert outcome.error_type == "AUTHENTICATION_ERROR"
    assert outcome.error_message == "Неверный пароль"


@pytest.mark.asyncio
async def test_unrelated_error_container_is_ignored(selectors):
    """Test that error-styled text without failure vocabulary is ignored."""
    page = login_form()
    page.add(".error", FakeElement("Подсказка: используйте номер телефона"))
    page.elements["button.submit"][0].on_click = go_to_profile(page)

    outcome = await make_auth(selectors).login(page, credentials())

    assert outcome.authenticated is True


@pytest.mark.asyncio
async def test_unconfirmed_login_fails_after_grace_window(selectors):
    """Test failure when nothing signals authentication."""
    page = login_form()

    outcome = await make_auth(selectors).login(page, credentials())

    assert outcome.authenticated is False
    assert outcome.error_type == "AUTHENTICATION_ERROR"
    assert outcome.error_message == "Login could not be confirmed"


@pytest.mark.asyncio
async def test_low_confidence_fallback_used_for_identifier(selectors):
    """Test that the first visible input takes the identifier when no descriptor matches."""
    page = FakePage(url=HOME)
    fallback = page.add("input", FakeElement(attrs={"type": "text"}))

    outcome = await make_auth(selectors).login(page, credentials())

    assert fallback.value == "+79991234567"
    # No secret field and no fallback for it
    assert outcome.error_type == "ELEMENT_NOT_FOUND"
    assert outcome.error_message == "Password input field not found"


@pytest.mark.asyncio
async def test_missing_identifier_field_is_element_not_found(selectors, tmp_path):
    """Test ELEMENT_NOT_FOUND and the debug screenshot."""
    page = FakePage(url=HOME)
    auth = make_auth(selectors, debug_dir=str(tmp_path))

    outcome = await auth.login(page, credentials())

    assert outcome.error_type == "ELEMENT_NOT_FOUND"
    assert "Identifier input field not found" in outcome.error_message
    assert page.screenshots


@pytest.mark.asyncio
async def test_login_form_opened_by_button_when_url_fails(selectors):
    """Test the sign-in control fallback."""
    page = FakePage(url=HOME)
    page.goto_failures = [Exception("timeout"), Exception("timeout")]

    def open_form() -> None:
        page.url = HOME + "#login"

    button = page.add("button.login", FakeElement("Войти", on_click=open_form))

    assert await make_auth(selectors).open_login_form(page) is True
    assert button.clicks == 1


@pytest.mark.asyncio
async def test_manual_login_times_out(selectors):
    """Test the manual login timeout."""
    page = FakePage(url=HOME)

    outcome = await make_auth(selectors).login(page)

    assert outcome.authenticated is False
    assert outcome.error_type == "AUTHENTICATION_ERROR"
    assert "not completed" in outcome.error_message


@pytest.mark.asyncio
async def test_manual_login_detected(selectors):
    """Test that an operator login during the wait is picked up."""
    page = FakePage(url=HOME)
    auth = make_auth(selectors, manual_timeout=2)
    asyncio.get_running_loop().call_later(
        0.03, lambda: page.add("a.profile", FakeElement())
    )

    outcome = await auth.login(page)

    assert outcome.authenticated is True


@pytest.mark.asyncio
async def test_manual_login_cancelled(selectors):
    """Test that setting the cancel event aborts the wait promptly."""
    page = FakePage(url=HOME)
    auth = make_auth(selectors, manual_timeout=10, check_interval=5)
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.03, cancel.set)

    outcome = await asyncio.wait_for(auth.login(page, cancel_event=cancel), timeout=2)

    assert outcome.authenticated is False
    assert outcome.error_type == "LOGIN_CANCELLED"
