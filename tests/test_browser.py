# tests/test_browser.py
import json
from unittest import mock
import pytest
from playwright.sync_api import Error as PlaywrightError
from immobot import browser
from immobot.browser import BrowserSession
from immobot.utils import NavigationError


@pytest.fixture
def playwright(monkeypatch):
    pw = mock.MagicMock()
    context = pw.chromium.launch_persistent_context.return_value
    context.pages = [mock.MagicMock()]
    context.cookies.return_value = [{"name": "sid", "value": "1", "domain": ".immobilienscout24.de", "path": "/"}]
    monkeypatch.setattr(browser, "sync_playwright", lambda: mock.Mock(start=mock.Mock(return_value=pw)))
    return pw


@pytest.fixture
def quiet(settings):
    return settings.with_overrides(skip_warmup=True)


def test_session_launches_persistent_profile(quiet, playwright):
    with BrowserSession(quiet) as session:
        assert session.page is playwright.chromium.launch_persistent_context.return_value.pages[0]
    args, kwargs = playwright.chromium.launch_persistent_context.call_args
    assert args[0] == quiet.profile_dir
    assert kwargs["locale"] == "de-DE"
    assert kwargs["timezone_id"] == "Europe/Berlin"
    assert kwargs["ignore_default_args"] == ["--enable-automation"]
    playwright.stop.assert_called_once()


def test_cookies_saved_on_close_even_after_error(quiet, playwright):
    with pytest.raises(RuntimeError):
        with BrowserSession(quiet):
            raise RuntimeError("boom")
    with open(quiet.cookies_path, encoding="utf-8") as fh:
        assert json.load(fh)[0]["name"] == "sid"
    playwright.chromium.launch_persistent_context.return_value.close.assert_called_once()


def test_cookies_restored_on_open(quiet, playwright):
    with BrowserSession(quiet):
        pass
    with BrowserSession(quiet):
        pass
    context = playwright.chromium.launch_persistent_context.return_value
    context.add_cookies.assert_called_once()


def test_goto_raises_navigation_error_after_retries(quiet, playwright, no_sleep):
    with BrowserSession(quiet) as session:
        session.page.goto.side_effect = PlaywrightError("net::ERR_CONNECTION_RESET")
        with pytest.raises(NavigationError):
            session.goto("https://www.immobilienscout24.de/Suche")
        assert session.page.goto.call_count == 3


def test_warmup_failure_is_not_fatal(settings, playwright):
    page = playwright.chromium.launch_persistent_context.return_value.pages[0]
    page.goto.side_effect = PlaywrightError("timeout")
    with BrowserSession(settings) as session:
        assert session.page is page


def test_cookie_consent_clicked_when_present(quiet, playwright):
    with BrowserSession(quiet) as session:
        button = mock.Mock()
        session.page.query_selector.side_effect = lambda sel: button if sel == "#onetrust-accept-btn-handler" else None
        assert session.accept_cookie_consent() is True
        button.click.assert_called_once()
