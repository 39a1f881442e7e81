# immobot/auth.py
"""Keeps the browser session logged in to the portal account.

The search and contact forms are used as a logged-in tenant. Before each
check the cycle asks ``AccountLogin.ensure_logged_in``; a session restored
from the persistent profile or saved cookies usually passes without typing.
"""
from typing import Optional, Sequence
from .application import find_first
from .humanizer import human_click, human_delay, human_type, scroll_into_view
from .utils import logger

LOGIN_PATH = "/geschlossenerbereich/start.html"
ACCOUNT_PATH = "/meinkonto/"

LOGGED_IN_SELECTORS = [
    '[data-testid="user-menu"]',
    ".sso-login--logged-in",
    'a[href*="abmelden"]',
    'a[href*="logout"]',
    ".oss-header-user-icon",
]
LOGGED_OUT_SELECTORS = [
    '[data-testid="login-button"]',
    'a[href*="login"]',
    ".sso-login--logged-out",
]
LOGIN_REDIRECT_MARKERS = ("login", "sso")

EMAIL_SELECTORS = ["#username", 'input[name="username"]', 'input[type="email"]', "#email"]
PASSWORD_SELECTORS = ["#password", 'input[name="password"]', 'input[type="password"]']
OPEN_FORM_SELECTORS = ['[data-testid="login-button"]', 'button[type="submit"]', 'a[href*="login"]']
SUBMIT_SELECTORS = ['button[type="submit"]', '[data-testid="submit-button"]', "#loginOrRegistration",
                    'input[type="submit"]']
FIELD_WAIT_ROUNDS = 3


def _wait_for_first(page, selectors: Sequence[str], rounds: int = FIELD_WAIT_ROUNDS):
    for i in range(rounds):
        element, selector = find_first(page, selectors)
        if element is not None:
            return element, selector
        if i < rounds - 1:
            human_delay(1000, 2000)
    return None, None


def _click_first(page, selectors: Sequence[str]) -> Optional[str]:
    element, selector = find_first(page, selectors)
    if element is None:
        return None
    human_click(page, element)
    return selector


class AccountLogin:
    def __init__(self, settings, monitor=None, artifacts=None):
        self.settings = settings
        self.monitor = monitor
        self.artifacts = artifacts

    def _screenshot(self, session, name):
        if self.artifacts is not None:
            self.artifacts.try_screenshot(session.page, name)

    def is_logged_in(self, session) -> bool:
        """Look for account markers on the current page, else probe the account page for a login redirect."""
        page = session.page
        element, selector = find_first(page, LOGGED_IN_SELECTORS)
        if element is not None:
            logger.debug("Logged in (found %s)", selector)
            return True
        element, selector = find_first(page, LOGGED_OUT_SELECTORS)
        if element is not None:
            logger.debug("Not logged in (found %s)", selector)
            return False

        session.goto(self.settings.base_url + ACCOUNT_PATH)
        human_delay(1000, 2000)
        url = (page.url or "").lower()
        if any(marker in url for marker in LOGIN_REDIRECT_MARKERS):
            logger.debug("Not logged in (redirected to %s)", page.url)
            return False
        return True

    def login(self, session) -> bool:
        logger.info("Logging in to ImmobilienScout24 as %s", self.settings.is24_email)
        page = session.page
        session.goto(self.settings.base_url + LOGIN_PATH)
        human_delay(2000, 4000)
        if self.monitor is not None:
            self.monitor.gate(page, context="login page")
        if self.is_logged_in(session):
            logger.info("Already logged in")
            return True
        session.accept_cookie_consent()

        email_field, _ = _wait_for_first(page, EMAIL_SELECTORS)
        if email_field is None and _click_first(page, OPEN_FORM_SELECTORS):
            human_delay(2000, 3000)
            email_field, _ = _wait_for_first(page, EMAIL_SELECTORS)
        if email_field is None:
            logger.error("Login failed: e-mail field not found")
            self._screenshot(session, "login_no_email_field")
            return False
        scroll_into_view(page, email_field)
        human_type(page, email_field, self.settings.is24_email)
        human_delay(500, 1500)

        password_field, _ = find_first(page, PASSWORD_SELECTORS)
        if password_field is None:
            # two-step form: e-mail first, then the password page
            logger.debug("Submitting e-mail first")
            _click_first(page, SUBMIT_SELECTORS)
            human_delay(2000, 4000)
            password_field, _ = _wait_for_first(page, PASSWORD_SELECTORS)
        if password_field is None:
            logger.error("Login failed: password field not found")
            self._screenshot(session, "login_no_password_field")
            return False
        scroll_into_view(page, password_field)
        human_type(page, password_field, self.settings.is24_password)
        human_delay(500, 1500)

        if _click_first(page, SUBMIT_SELECTORS) is None:
            logger.error("Login failed: submit control not found")
            self._screenshot(session, "login_no_submit")
            return False
        human_delay(3000, 5000)
        if self.monitor is not None:
            self.monitor.gate(page, context="after login")

        if self.is_logged_in(session):
            logger.info("Successfully logged in")
            session.save_cookies()
            return True
        logger.error("Login failed: still logged out after submitting")
        self._screenshot(session, "login_failed")
        return False

    def ensure_logged_in(self, session) -> bool:
        if self.is_logged_in(session):
            logger.debug("Session valid, already logged in")
            return True
        logger.info("Session expired or not logged in, logging in")
        return self.login(session)
