"""
LinkedIn login and checkpoint state machine.

    LOGGING_IN -> SUCCESS | LOGIN_FAILED | CHECKPOINT_CHALLENGE
    CHECKPOINT_CHALLENGE -> EMAIL_VERIFICATION_PENDING | PERMANENT_CHECKPOINT

classify_login_result() is pure; LoginFlow gathers the page signals it needs.
"""

import logging
from typing import Optional

from playwright.async_api import Page, Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from core.human_behavior import HumanBehaviorSimulator
from core.models import LoginState

logger = logging.getLogger(__name__)

LOGIN_URL = "https://www.linkedin.com/login"
FEED_URL = "https://www.linkedin.com/feed/"

USERNAME_SELECTOR = "#username"
PASSWORD_SELECTOR = "#password"
LOGIN_SUBMIT_SELECTOR = 'button[type="submit"]'
LOGIN_ERROR_SELECTOR = "#error-for-username, #error-for-password, div.alert-content"
PIN_INPUT_SELECTOR = 'input[name="pin"], input[id="input__email_verification_pin"]'
PIN_SUBMIT_SELECTOR = 'button[type="submit"], button[data-litms-control-urn*="verify"]'

CHECKPOINT_URL_MARKERS = ("/checkpoint", "/challenge")
VERIFICATION_TEXT_MARKERS = (
    "verification code",
    "enter the code",
    "we sent a code",
    "6-digit code",
    "check your email",
)


def is_checkpoint_url(url: str) -> bool:
    return any(marker in url for marker in CHECKPOINT_URL_MARKERS)


def classify_login_result(
    url: str,
    has_pin_input: bool = False,
    has_login_error: bool = False,
    page_text: str = "",
) -> LoginState:
    """Map post-submit page signals to a terminal or pending login state."""
    if has_login_error:
        return LoginState.LOGIN_FAILED

    if is_checkpoint_url(url):
        text = (page_text or "").lower()
        if has_pin_input or any(marker in text for marker in VERIFICATION_TEXT_MARKERS):
            return LoginState.EMAIL_VERIFICATION_PENDING
        return LoginState.PERMANENT_CHECKPOINT

    if "/login" in url:
        return LoginState.LOGIN_FAILED

    return LoginState.SUCCESS


class LoginFlow:
    """Drives the LinkedIn login form with simulated timing."""

    def __init__(
        self,
        simulator: HumanBehaviorSimulator,
        navigation_timeout_ms: int = 30_000,
        login_timeout_ms: int = 45_000,
    ):
        self.simulator = simulator
        self.navigation_timeout_ms = navigation_timeout_ms
        self.login_timeout_ms = login_timeout_ms

    async def login(self, page: Page, email: str, password: str, timeout_ms: Optional[int] = None) -> LoginState:
        timeout_ms = timeout_ms or self.login_timeout_ms
        logger.debug("Navigating to LinkedIn login")
        await page.goto(LOGIN_URL, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        await self.simulator.navigation_pause()

        await self.simulator.move_mouse(page)
        await self.simulator.type_text(page, USERNAME_SELECTOR, email)
        await self.simulator.hesitate()
        await self.simulator.type_text(page, PASSWORD_SELECTOR, password)
        await self.simulator.hesitate()

        try:
            async with page.expect_navigation(wait_until="domcontentloaded", timeout=timeout_ms):
                await page.click(LOGIN_SUBMIT_SELECTOR)
        except PlaywrightTimeoutError:
            # Inline errors and some checkpoints render without a navigation
            logger.debug("No navigation after login submit, classifying current page")

        await self.simulator.navigation_pause()
        state = await self.classify_page(page)
        logger.info(f"Login finished in state {state.value}")
        return state

    async def classify_page(self, page: Page) -> LoginState:
        url = page.url
        has_pin_input = await page.query_selector(PIN_INPUT_SELECTOR) is not None
        has_login_error = await self._has_login_error(page)

        page_text = ""
        if is_checkpoint_url(url) and not has_pin_input:
            page_text = await page.inner_text("body")

        return classify_login_result(url, has_pin_input, has_login_error, page_text)

    async def _has_login_error(self, page: Page) -> bool:
        element = await page.query_selector(LOGIN_ERROR_SELECTOR)
        if element is None:
            return False
        text = await element.inner_text()
        return bool(text and text.strip())

    async def validate_session(self, page: Page) -> bool:
        """Load the feed with the restored cookies and check we stayed signed in."""
        try:
            await page.goto(FEED_URL, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        except PlaywrightError as e:
            logger.warning(f"Session validation navigation failed: {e}")
            return False

        url = page.url
        valid = "/login" not in url and "/checkpoint" not in url and "/authwall" not in url
        logger.debug(f"Session validation {'passed' if valid else 'failed'} ({url})")
        return valid

    async def submit_code(self, page: Page, code: str, timeout_ms: int = 15_000) -> LoginState:
        """
        Type a one-time code into the held checkpoint page and classify the result.

        Raises:
            playwright Error: if the code input never appears.
        """
        await page.wait_for_selector(PIN_INPUT_SELECTOR, timeout=5000)
        await self.simulator.type_text(page, PIN_INPUT_SELECTOR, code)
        await self.simulator.hesitate()

        try:
            async with page.expect_navigation(wait_until="domcontentloaded", timeout=timeout_ms):
                await page.click(PIN_SUBMIT_SELECTOR)
        except PlaywrightTimeoutError:
            logger.debug("No navigation after code submit, classifying current page")

        return await self.classify_page(page)
