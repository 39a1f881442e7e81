# immobot/scrape.py
"""Search-results extraction for ImmobilienScout24.

The site's markup is undocumented and changes often, so extraction is a chain
of guesses: each stage is an ordered list of small strategy functions and the
first one that produces something wins. New guesses are appended to the lists;
the control flow stays the same.
"""
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence
from urllib.parse import urljoin
from bs4 import BeautifulSoup
from .schemas import ListingCandidate
from .utils import logger

# try to detect available parser; prefer lxml if installed
try:
    import lxml  # type: ignore  # noqa: F401
    _bs_parser = "lxml"
except ImportError:
    _bs_parser = "html.parser"

EXPOSE_LINK_SELECTOR = 'a[href*="/expose/"]'
EXPOSE_ID_PATTERN = re.compile(r"/expose/(\d+)")

CONTAINER_SELECTORS = [
    "article",
    '[data-testid*="result"]',
    '[class*="result"]',
    '[class*="listing"]',
    '[class*="ResultList"]',
    "li",
    "div[data-id]",
]
CONTAINER_CLASS_HINTS = ("result", "listing", "item")
CONTAINER_PARENT_LEVELS = 5

RESULT_ENTRY_SELECTORS = [
    '[data-testid="result-list-entry"]',
    ".result-list__listing",
    "article[data-item]",
    "[data-go-to-expose-id]",
    ".result-list-entry",
    '[class*="ResultListEntry"]',
]
ENTRY_ID_ATTRIBUTES = ("data-go-to-expose-id", "data-id", "data-obid")

TITLE_PLACEHOLDER = "Objekt {id}"
ADDRESS_PLACEHOLDER = "Adresse nicht verfügbar"
PRICE_PLACEHOLDER = "Preis auf Anfrage"

_DIGIT = re.compile(r"\d")


def clean_text(node) -> str:
    if node is None:
        return ""
    return " ".join(node.get_text(" ", strip=True).split())


def _any_text(text):
    return bool(text)


def _looks_like_price(text):
    return "€" in text or "EUR" in text or bool(_DIGIT.search(text))


def _looks_like_size(text):
    return "m²" in text or "qm" in text or bool(_DIGIT.search(text))


def _has_digit(text):
    return bool(_DIGIT.search(text))


@dataclass(frozen=True)
class FieldRule:
    """Ordered selector guesses for one field plus a content sniff for candidates."""
    selectors: Sequence[str]
    accept: Callable[[str], bool] = _any_text

    def resolve(self, container) -> str:
        for selector in self.selectors:
            try:
                text = clean_text(container.select_one(selector))
            except Exception:
                continue
            if text and self.accept(text):
                return text
        return ""


TITLE_RULE = FieldRule(['h2', 'h3', '[class*="title"]', '[class*="Title"]', '[data-testid*="title"]'])
ADDRESS_RULE = FieldRule([
    '[data-testid*="address"]', '[class*="address"]', '[class*="Address"]',
    '[class*="location"]', '[class*="Location"]',
    '[data-testid*="location"]', '[class*="ort"]', '[class*="Ort"]',
])
PRICE_RULE = FieldRule([
    '[data-testid*="price"]', '[class*="price"]', '[class*="Price"]',
    '[class*="preis"]', '[class*="Preis"]', '[class*="kosten"]', '[class*="Kosten"]',
], accept=_looks_like_price)
SIZE_RULE = FieldRule([
    '[data-testid*="area"]', '[data-testid*="size"]',
    '[class*="livingspace"]', '[class*="LivingSpace"]', '[class*="area"]', '[class*="Area"]',
    '[class*="flaeche"]', '[class*="Flaeche"]', '[class*="Fläche"]',
    '[class*="size"]', '[class*="Size"]', '[class*="qm"]',
], accept=_looks_like_size)
ROOMS_RULE = FieldRule([
    '[data-testid*="room"]', '[class*="room"]', '[class*="Room"]',
    '[class*="zimmer"]', '[class*="Zimmer"]',
], accept=_has_digit)


# --- container strategies: link -> container or None ---

def _closest_known_container(link):
    # the link itself may carry a "result" class
    parent = link.parent
    if parent is None or parent.name == "[document]":
        return None
    return parent.css.closest(", ".join(CONTAINER_SELECTORS))


def _class_hint_container(link):
    current = link.parent
    for _ in range(CONTAINER_PARENT_LEVELS):
        if current is None or current.name == "[document]":
            return None
        classes = " ".join(current.get("class") or [])
        if any(hint in classes for hint in CONTAINER_CLASS_HINTS) or current.name in ("article", "li"):
            return current
        current = current.parent
    return None


def _grandparent_container(link):
    parent = link.parent
    if parent is None or parent.name == "[document]":
        return None
    grandparent = parent.parent
    if grandparent is not None and grandparent.name != "[document]":
        return grandparent
    return parent


def _document_body(link):
    root = link
    while root.parent is not None:
        root = root.parent
    return root.body or root


CONTAINER_STRATEGIES = [
    _closest_known_container,
    _class_hint_container,
    _grandparent_container,
    _document_body,
]


def resolve_container(link):
    for strategy in CONTAINER_STRATEGIES:
        container = strategy(link)
        if container is not None:
            return container
    return None


def canonical_url(base_url: str, listing_id: str) -> str:
    return urljoin(base_url.rstrip("/") + "/", f"expose/{listing_id}")


def _image_url(container) -> Optional[str]:
    for img in container.select("img"):
        src = img.get("src") or img.get("data-src") or ""
        if src.startswith("http"):
            return src
    return None


def _title_for(link, container, listing_id):
    link_text = clean_text(link)
    if len(link_text) > 10:
        return link_text
    return TITLE_RULE.resolve(container) or TITLE_PLACEHOLDER.format(id=listing_id)


def _candidate_from_container(listing_id, container, base_url, title):
    return ListingCandidate(
        id=listing_id,
        title=title,
        address=ADDRESS_RULE.resolve(container) or ADDRESS_PLACEHOLDER,
        price=PRICE_RULE.resolve(container) or PRICE_PLACEHOLDER,
        size=SIZE_RULE.resolve(container),
        rooms=ROOMS_RULE.resolve(container) or None,
        url=canonical_url(base_url, listing_id),
        image_url=_image_url(container),
    )


# --- page strategies: (soup, base_url, seen ids) -> candidates ---

def extract_from_expose_links(soup, base_url, seen) -> List[ListingCandidate]:
    results = []
    for link in soup.select(EXPOSE_LINK_SELECTOR):
        try:
            match = EXPOSE_ID_PATTERN.search(link.get("href") or "")
            if not match:
                continue
            listing_id = match.group(1)
            if listing_id in seen:
                continue
            seen.add(listing_id)
            container = resolve_container(link)
            results.append(_candidate_from_container(
                listing_id, container, base_url, _title_for(link, container, listing_id)))
        except Exception as e:
            logger.debug("Skipping malformed listing link: %s", e)
    return results


def _entry_id(entry) -> str:
    for attr in ENTRY_ID_ATTRIBUTES:
        value = entry.get(attr)
        if value:
            return value.strip()
    link = entry.select_one(EXPOSE_LINK_SELECTOR)
    if link is not None:
        match = EXPOSE_ID_PATTERN.search(link.get("href") or "")
        if match:
            return match.group(1)
    return ""


def extract_from_result_entries(soup, base_url, seen) -> List[ListingCandidate]:
    results = []
    for entry in soup.select(", ".join(RESULT_ENTRY_SELECTORS)):
        try:
            listing_id = _entry_id(entry)
            if not listing_id or listing_id in seen:
                continue
            seen.add(listing_id)
            title = TITLE_RULE.resolve(entry) or TITLE_PLACEHOLDER.format(id=listing_id)
            results.append(_candidate_from_container(listing_id, entry, base_url, title))
        except Exception as e:
            logger.debug("Skipping malformed result entry: %s", e)
    return results


PAGE_STRATEGIES = [
    extract_from_expose_links,
    extract_from_result_entries,
]


def extract_listings(html: str, base_url: str, strategies: Iterable = None) -> List[ListingCandidate]:
    """Parse a search-results document into candidates, deduplicated, in document order."""
    soup = BeautifulSoup(html or "", _bs_parser)
    seen = set()
    for strategy in strategies or PAGE_STRATEGIES:
        results = strategy(soup, base_url, seen)
        if results:
            logger.debug("%s extracted %d listings", strategy.__name__, len(results))
            return results
    return []


def extract_listings_from_page(page, base_url: str) -> List[ListingCandidate]:
    listings = extract_listings(page.content(), base_url)
    logger.info("Extracted %d listings from page", len(listings))
    return listings


UNAVAILABLE_SELECTORS = [
    '[data-testid="expose-not-found"]',
    ".expose-not-found",
    ".is24-notification--error",
]
UNAVAILABLE_PHRASES = ["nicht mehr verfügbar", "nicht gefunden", "deaktiviert"]
UNAVAILABLE_TITLE_KEYWORDS = ["nicht gefunden", "fehler"]


def is_listing_available(page) -> bool:
    """False when the detail page says the listing was removed."""
    for selector in UNAVAILABLE_SELECTORS:
        if page.query_selector(selector):
            return False
    for heading in page.query_selector_all("h1"):
        text = (heading.inner_text() or "").lower()
        if any(p in text for p in UNAVAILABLE_PHRASES):
            return False
    title = (page.title() or "").lower()
    return not any(k in title for k in UNAVAILABLE_TITLE_KEYWORDS)
