# tests/test_scrape.py
from conftest import BASE_URL, FakePage, UNAVAILABLE_HTML, DETAIL_HTML, result_entry, search_page
from immobot.scrape import (
    ADDRESS_PLACEHOLDER, PRICE_PLACEHOLDER, extract_listings, extract_listings_from_page,
    extract_from_expose_links, is_listing_available, canonical_url,
)


def test_extracts_fields_in_document_order():
    listings = extract_listings(search_page(["111", "222", "333"]), BASE_URL)
    assert [l.id for l in listings] == ["111", "222", "333"]
    first = listings[0]
    assert first.title == "Helle Wohnung Nummer 111 in Mitte"
    assert first.address == "Torstraße 1, 10119 Berlin"
    assert first.price == "850 €"
    assert first.size == "65 m²"
    assert first.rooms == "2 Zi."
    assert first.url == BASE_URL + "/expose/111"
    assert first.image_url == "https://pictures.example/111.jpg"


def test_duplicate_links_yield_one_listing():
    html = """<html><body><article>
      <a href="/expose/42">Großzügige Altbauwohnung</a>
      <a href="/expose/42#gallery"><img src="https://pictures.example/42.jpg"></a>
      <span class="price">1.200 €</span>
    </article></body></html>"""
    listings = extract_listings(html, BASE_URL)
    assert [l.id for l in listings] == ["42"]


def test_missing_fields_degrade_to_placeholders():
    html = '<html><body><div><div><a href="/expose/9">Top</a></div></div></body></html>'
    (listing,) = extract_listings(html, BASE_URL)
    assert listing.title == "Objekt 9"
    assert listing.address == ADDRESS_PLACEHOLDER
    assert listing.price == PRICE_PLACEHOLDER
    assert listing.size == ""
    assert listing.rooms is None


def test_short_link_text_falls_back_to_heading():
    html = """<html><body><article>
      <h2>Penthouse mit Dachterrasse</h2><a href="/expose/5">Mehr</a>
    </article></body></html>"""
    (listing,) = extract_listings(html, BASE_URL)
    assert listing.title == "Penthouse mit Dachterrasse"


def test_price_candidate_without_digit_or_currency_is_rejected():
    html = """<html><body><article>
      <a href="/expose/5">Wohnung am Park mit Blick</a>
      <span class="price">auf Anfrage</span>
      <span class="Preis">790 EUR</span>
    </article></body></html>"""
    (listing,) = extract_listings(html, BASE_URL)
    assert listing.price == "790 EUR"


def test_fallback_to_result_entries_without_expose_links():
    html = """<html><body>
      <div data-testid="result-list-entry" data-id="777">
        <h3>Maisonette mit Garten</h3>
        <span class="address">Kreuzberg</span>
        <span class="price">1.450 €</span>
      </div>
      <div data-testid="result-list-entry"><h3>ohne id</h3></div>
    </body></html>"""
    listings = extract_listings(html, BASE_URL)
    assert [l.id for l in listings] == ["777"]
    assert listings[0].title == "Maisonette mit Garten"
    assert listings[0].url == canonical_url(BASE_URL, "777")


def test_malformed_element_is_skipped():
    class Exploding:
        def get(self, name):
            raise ValueError("broken element")

    class Soup:
        def select(self, selector):
            return [Exploding()]

    assert extract_from_expose_links(Soup(), BASE_URL, set()) == []


def test_links_without_numeric_id_are_ignored():
    html = search_page(["1"]) + '<a href="/expose/abc">kaputt</a>'
    assert [l.id for l in extract_listings(html, BASE_URL)] == ["1"]


def test_empty_page():
    assert extract_listings("<html><body><p>Keine Treffer</p></body></html>", BASE_URL) == []
    assert extract_listings("", BASE_URL) == []


def test_extract_from_page_reads_content():
    page = FakePage(html=search_page(["10", "20"]))
    assert [l.id for l in extract_listings_from_page(page, BASE_URL)] == ["10", "20"]


def test_short_link_text_without_heading_uses_placeholder():
    html = "<html><body><ul>" + result_entry("1", title="kurz") + "</ul></body></html>"
    (listing,) = extract_listings(html, BASE_URL)
    assert listing.title == "Objekt 1"


def test_listing_availability():
    assert is_listing_available(FakePage(html=DETAIL_HTML))
    assert not is_listing_available(FakePage(html=UNAVAILABLE_HTML))
    assert not is_listing_available(FakePage(html='<html><body><div class="expose-not-found"></div></body></html>'))
