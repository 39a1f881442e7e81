# tests/conftest.py
import time
import pytest
from bs4 import BeautifulSoup
from immobot.config import Settings
from immobot.db import init_db, make_engine, make_session_factory
from immobot.services import ListingStore

BASE_URL = "https://www.immobilienscout24.de"
SEARCH_URL = BASE_URL + "/Suche/de/berlin/berlin/wohnung-mieten"


def expose_url(listing_id):
    return f"{BASE_URL}/expose/{listing_id}"


def result_entry(listing_id, title=None, address="Torstraße 1, 10119 Berlin", price="850 €",
                 size="65 m²", rooms="2 Zi."):
    title = title or f"Helle Wohnung Nummer {listing_id} in Mitte"
    return f"""
    <li class="result-list__listing">
      <article>
        <a href="/expose/{listing_id}">{title}</a>
        <div class="result-list-entry__address">{address}</div>
        <dl class="result-list-entry__price"><dd>{price}</dd></dl>
        <span class="area">{size}</span>
        <span class="rooms">{rooms}</span>
        <img src="https://pictures.example/{listing_id}.jpg">
      </article>
    </li>"""


def search_page(ids):
    entries = "".join(result_entry(i) for i in ids)
    return (f"<html><head><title>Wohnung mieten in Berlin</title></head>"
            f"<body><ul id=\"resultListItems\">{entries}</ul></body></html>")


DETAIL_HTML = """<html><head><title>Schöne Wohnung</title></head><body>
<h1>Schöne 2-Zimmer-Wohnung</h1>
<p>Ruhige Lage, Balkon.</p>
<button data-testid="contact-button">Nachricht schreiben</button>
</body></html>"""

FORM_HTML = """<html><head><title>Schöne Wohnung</title></head><body>
<h1>Schöne 2-Zimmer-Wohnung</h1>
<form class="contact-form">
  <textarea name="message"></textarea>
  <button type="submit">Abschicken</button>
</form>
</body></html>"""

SUCCESS_HTML = """<html><head><title>Schöne Wohnung</title></head><body>
<div class="success-message">Ihre Anfrage wurde erfolgreich übermittelt.</div>
</body></html>"""

CAPTCHA_HTML = """<html><head><title>Ich bin kein Roboter</title></head><body>
<div id="challenge-running">Bitte warten</div>
</body></html>"""

UNAVAILABLE_HTML = """<html><head><title>Wohnung</title></head><body>
<h1>Dieses Angebot ist nicht mehr verfügbar</h1>
</body></html>"""


def wire_contact_flow(page, form_html=FORM_HTML, after_submit=SUCCESS_HTML):
    """Contact button opens the form, submit swaps in ``after_submit``."""
    page.on_click.append(('[data-testid="contact-button"]', lambda p: p.set_html(form_html)))
    page.on_click.append(('button[type="submit"]', lambda p: p.set_html(after_submit)))


class FakeMouse:
    def __init__(self):
        self.moves = []
        self.clicks = []
        self.wheel_calls = []

    def move(self, x, y, steps=1):
        self.moves.append((x, y))

    def click(self, x, y):
        self.clicks.append((x, y))

    def wheel(self, dx, dy):
        self.wheel_calls.append((dx, dy))


class FakeKeyboard:
    def __init__(self):
        self.typed = ""

    def type(self, text):
        self.typed += text


class FakeElement:
    def __init__(self, page, tag):
        self._page = page
        self.tag = tag

    def inner_text(self):
        return self.tag.get_text(" ", strip=True)

    def get_attribute(self, name):
        value = self.tag.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def bounding_box(self):
        return None

    def scroll_into_view_if_needed(self):
        pass

    def fill(self, value):
        self.tag.string = value

    def click(self):
        self._page.clicked.append(self.tag)
        for selector, handler in list(self._page.on_click):
            if self.tag.css.match(selector):
                handler(self._page)
                break


class FakePage:
    """The slice of Playwright's sync ``Page`` the bot uses, over static HTML."""

    def __init__(self, routes=None, html="", url="about:blank", redirects=None):
        self.routes = dict(routes or {})
        self.redirects = dict(redirects or {})
        self.url = url
        self.goto_calls = []
        self.reloads = 0
        self.clicked = []
        # (css selector, callable(page)) run when a matching element is clicked
        self.on_click = []
        self.evaluated = []
        self.mouse = FakeMouse()
        self.keyboard = FakeKeyboard()
        self.viewport_size = {"width": 1280, "height": 720}
        self.fail_pdf = False
        self.fail_screenshot = False
        self.set_html(html)

    def set_html(self, html):
        self.html = html
        self.soup = BeautifulSoup(html, "html.parser")

    def _render(self, url):
        html = self.routes.get(url, "")
        self.set_html(html() if callable(html) else html)

    def goto(self, url, **kwargs):
        self.goto_calls.append(url)
        self.url = self.redirects.get(url, url)
        self._render(self.url)

    def reload(self, **kwargs):
        self.reloads += 1
        self._render(self.url)

    def wait_for_load_state(self, state=None, **kwargs):
        pass

    def content(self):
        return self.html

    def title(self):
        return self.soup.title.get_text(strip=True) if self.soup.title else ""

    def inner_text(self, selector):
        node = self.soup.select_one(selector) or self.soup
        return node.get_text(" ", strip=True)

    def query_selector(self, selector):
        tag = self.soup.select_one(selector)
        return FakeElement(self, tag) if tag is not None else None

    def query_selector_all(self, selector):
        return [FakeElement(self, tag) for tag in self.soup.select(selector)]

    def evaluate(self, script, arg=None):
        self.evaluated.append(script)

    def pdf(self, path, **kwargs):
        if self.fail_pdf:
            raise RuntimeError("pdf not supported")
        with open(path, "wb") as fh:
            fh.write(b"%PDF-1.4")

    def screenshot(self, path, **kwargs):
        if self.fail_screenshot:
            raise RuntimeError("screenshot failed")
        with open(path, "wb") as fh:
            fh.write(b"\x89PNG")


class FakeSession:
    def __init__(self, page):
        self.page = page
        self.cookies_saved = 0

    def goto(self, url):
        self.page.goto(url)

    def reload(self):
        self.page.reload()

    def accept_cookie_consent(self):
        return False

    def save_cookies(self):
        self.cookies_saved += 1


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    slept = []
    monkeypatch.setattr(time, "sleep", lambda seconds: slept.append(seconds))
    return slept


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return ListingStore(session_factory)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        search_url=SEARCH_URL,
        is24_email="mieter@example.org",
        is24_password="geheim123",
        base_url=BASE_URL,
        database_url="sqlite://",
        data_dir=str(tmp_path / "data"),
        logs_dir=str(tmp_path / "logs"),
        email_user="",
        email_to="",
        idle_simulation=False,
    )


@pytest.fixture
def page():
    return FakePage()
