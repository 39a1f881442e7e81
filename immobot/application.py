# immobot/application.py
"""Contact-form submission for a single listing.

``ApplicationSubmitter.apply`` walks a fixed sequence of steps. Before every
step the page is checked for bot detection; a positive check blocks until a
human resolves it and the same step then runs again. Whatever happens, the
attempt ends in exactly one terminal state that is written back to the store.
"""
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence
from .humanizer import (
    human_click, human_delay, human_type, random_delay, scroll_into_view, simulate_reading,
)
from .schemas import ApplicationResult, ListingStatus
from .scrape import is_listing_available
from .utils import logger, is_resource_exhaustion, NavigationError, SubmissionError


class SubmissionState(Enum):
    NAVIGATING = "navigating"
    CHECKING_AVAILABILITY = "checking_availability"
    CAPTURING_ARTIFACT = "capturing_artifact"
    FINDING_CONTACT_CTA = "finding_contact_cta"
    FORM_OPEN = "form_open"
    FILLING_MESSAGE = "filling_message"
    SUBMITTING = "submitting"
    VERIFYING = "verifying"
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_terminal(self):
        return self in (SubmissionState.APPLIED, SubmissionState.SKIPPED, SubmissionState.FAILED)


TERMINAL_STATUS = {
    SubmissionState.APPLIED: ListingStatus.APPLIED,
    SubmissionState.SKIPPED: ListingStatus.SKIPPED,
    SubmissionState.FAILED: ListingStatus.ERROR,
}

CONTACT_SELECTORS = [
    '[data-testid="contactform-trigger"]',
    '[data-testid="contact-button"]',
    'button[data-qa="sendButton"]',
    'a[data-qa="sendButton"]',
    ".contact-button",
    'a[href*="kontaktformular"]',
    ".is24-button--primary",
    '[data-testid="expose-contact-box-toggle"]',
]
CONTACT_KEYWORDS = ["nachricht", "kontakt", "anfrage", "schreiben", "senden"]

TEXTAREA_SELECTORS = [
    '[data-testid="contact-form-message"]',
    'textarea[name="message"]',
    'textarea[id="message"]',
    'textarea[data-qa="message"]',
    ".contact-form textarea",
    "textarea",
]
FORM_WAIT_ROUNDS = 3

SUBMIT_SELECTORS = [
    '[data-testid="contact-form-submit"]',
    'button[data-qa="submit"]',
    '.contact-form button[type="submit"]',
    'button[type="submit"]',
    'input[type="submit"]',
]
SUBMIT_KEYWORDS = ["senden", "absenden", "abschicken", "submit"]

SUCCESS_SELECTORS = [
    '[data-testid="contact-form-success"]',
    ".contact-form-success",
    ".success-message",
    ".is24-notification--success",
]
SUCCESS_KEYWORDS = ["erfolgreich", "gesendet", "vielen dank", "anfrage wurde"]
ERROR_SELECTORS = [
    '[data-testid="contact-form-error"]',
    ".contact-form-error",
    ".error-message",
    ".is24-notification--error",
]
FORM_PRESENT_SELECTOR = 'textarea[name="message"]'

MESSAGE_TEMPLATE = (
    "{greeting},\n\n"
    "ich habe Ihre Anzeige für die Wohnung gesehen und bin sehr interessiert.\n\n"
    "{custom_message}\n\n"
    "Mit freundlichen Grüßen"
)

# inter-application pause, milliseconds
APPLY_GAP_MS = (15000, 45000)


def generate_message(listing, settings) -> str:
    values = {
        "greeting": settings.message_greeting,
        "custom_message": settings.message_custom,
        "address": listing.address or "",
        "price": listing.price or "",
        "size": listing.size or "",
        "title": listing.title or "",
    }
    message = MESSAGE_TEMPLATE
    for key, value in values.items():
        message = message.replace("{" + key + "}", value)
    return message


def _element_text(element) -> str:
    text = element.inner_text() or ""
    if not text.strip():
        text = element.get_attribute("value") or ""
    return text.strip().lower()


def find_first(page, selectors: Sequence[str]):
    """First element matching the ordered selector guesses, with the selector that hit."""
    for selector in selectors:
        try:
            element = page.query_selector(selector)
        except Exception as e:
            logger.debug("Selector %s failed: %s", selector, e)
            continue
        if element:
            return element, selector
    return None, None


def find_by_keyword(page, candidates: str, keywords: Sequence[str]):
    for element in page.query_selector_all(candidates):
        try:
            text = _element_text(element)
        except Exception:
            continue
        if text and any(k in text for k in keywords):
            return element
    return None


# outcomes of the verification step
VERIFIED_SUCCESS_MARKER = "success_marker"
VERIFIED_SUCCESS_TEXT = "success_text"
VERIFIED_ERROR_MARKER = "error_marker"
VERIFIED_FORM_GONE = "form_gone_assumed_success"
VERIFIED_FORM_STILL_PRESENT = "form_still_present"

SUCCESSFUL_VERIFICATIONS = (VERIFIED_SUCCESS_MARKER, VERIFIED_SUCCESS_TEXT, VERIFIED_FORM_GONE)


def verify_submission(page) -> str:
    """Classify the page after a submit click.

    Explicit success markers win, then success wording, then explicit error
    markers. With none of those, a vanished message field counts as success
    (``form_gone_assumed_success``); this is a guess, reported as such.
    """
    element, _ = find_first(page, SUCCESS_SELECTORS)
    if element:
        return VERIFIED_SUCCESS_MARKER
    text = (page.inner_text("body") or "").lower()
    if any(k in text for k in SUCCESS_KEYWORDS):
        return VERIFIED_SUCCESS_TEXT
    element, _ = find_first(page, ERROR_SELECTORS)
    if element:
        return VERIFIED_ERROR_MARKER
    if page.query_selector(FORM_PRESENT_SELECTOR):
        return VERIFIED_FORM_STILL_PRESENT
    return VERIFIED_FORM_GONE


class _Attempt:
    def __init__(self, listing):
        self.listing = listing
        self.pdf_path: Optional[str] = None
        self.error_message: Optional[str] = None
        self.textarea_selector: Optional[str] = None
        self.failed_in: Optional[SubmissionState] = None


class ApplicationSubmitter:
    def __init__(self, settings, store, monitor, artifacts, notifier, sleep_between: Callable = None):
        self.settings = settings
        self.store = store
        self.monitor = monitor
        self.artifacts = artifacts
        self.notifier = notifier
        self._sleep_between = sleep_between or (lambda: human_delay(*APPLY_GAP_MS))
        self._handlers: Dict[SubmissionState, Callable] = {
            SubmissionState.NAVIGATING: self._navigate,
            SubmissionState.CHECKING_AVAILABILITY: self._check_availability,
            SubmissionState.CAPTURING_ARTIFACT: self._capture_artifact,
            SubmissionState.FINDING_CONTACT_CTA: self._open_contact_form,
            SubmissionState.FORM_OPEN: self._locate_message_field,
            SubmissionState.FILLING_MESSAGE: self._fill_message,
            SubmissionState.SUBMITTING: self._submit,
            SubmissionState.VERIFYING: self._verify,
        }

    def apply(self, session, listing) -> ApplicationResult:
        logger.info("Applying to listing %s: %s", listing.id, listing.title)
        attempt = _Attempt(listing)
        state = SubmissionState.NAVIGATING
        while not state.is_terminal:
            try:
                self.monitor.gate(session.page, skip_on_detail=self.settings.skip_detection_on_detail,
                                  context=f"listing {listing.id}, {state.value}")
                logger.debug("Listing %s: %s", listing.id, state.value)
                state = self._handlers[state](session, attempt)
            except SubmissionError as e:
                logger.error("Listing %s failed at %s: %s", listing.id, state.value, e.reason)
                attempt.error_message, attempt.failed_in = e.reason, state
                state = SubmissionState.FAILED
            except Exception as e:
                if is_resource_exhaustion(e):
                    raise
                logger.exception("Listing %s: unexpected error at %s", listing.id, state.value)
                attempt.error_message, attempt.failed_in = f"{state.value}: {e}", state
                state = SubmissionState.FAILED
        return self._finish(session, attempt, state)

    def apply_all(self, session, listings, return_url: Optional[str] = None) -> List[ApplicationResult]:
        """One listing at a time, pausing and returning to ``return_url`` between attempts."""
        results = []
        for i, listing in enumerate(listings):
            if i > 0:
                if return_url:
                    try:
                        session.goto(return_url)
                    except NavigationError as e:
                        logger.warning("Could not return to search results: %s", e)
                self._sleep_between()
            results.append(self.apply(session, listing))
        return results

    # --- steps: each returns the next state or raises SubmissionError ---

    def _navigate(self, session, attempt):
        session.goto(attempt.listing.url)
        simulate_reading(session.page, random_delay(2000, 4000))
        return SubmissionState.CHECKING_AVAILABILITY

    def _check_availability(self, session, attempt):
        if not is_listing_available(session.page):
            logger.info("Listing %s is no longer available", attempt.listing.id)
            attempt.error_message = "listing no longer available"
            return SubmissionState.SKIPPED
        return SubmissionState.CAPTURING_ARTIFACT

    def _capture_artifact(self, session, attempt):
        try:
            attempt.pdf_path = self.artifacts.capture(session.page, attempt.listing)
        except Exception as e:
            if is_resource_exhaustion(e):
                raise
            logger.warning("Artifact for listing %s could not be captured: %s", attempt.listing.id, e)
        return SubmissionState.FINDING_CONTACT_CTA

    def _open_contact_form(self, session, attempt):
        page = session.page
        element, selector = find_first(page, CONTACT_SELECTORS)
        if element is None:
            element = find_by_keyword(page, "button, a", CONTACT_KEYWORDS)
            selector = "keyword scan"
        if element is None:
            raise SubmissionError("contact control not found", SubmissionState.FINDING_CONTACT_CTA)
        logger.debug("Contact control found via %s", selector)
        scroll_into_view(page, element)
        human_delay(500, 1000)
        human_click(page, element)
        human_delay(1500, 3000)
        return SubmissionState.FORM_OPEN

    def _locate_message_field(self, session, attempt):
        human_delay(1000, 2000)
        for _ in range(FORM_WAIT_ROUNDS):
            element, selector = find_first(session.page, TEXTAREA_SELECTORS)
            if element is not None:
                attempt.textarea_selector = selector
                return SubmissionState.FILLING_MESSAGE
            human_delay(1000, 2000)
        raise SubmissionError("message field not found", SubmissionState.FORM_OPEN)

    def _fill_message(self, session, attempt):
        page = session.page
        element = page.query_selector(attempt.textarea_selector)
        if element is None:
            raise SubmissionError("message field not found", SubmissionState.FILLING_MESSAGE)
        element.fill("")
        human_type(page, element, generate_message(attempt.listing, self.settings), 10, 40)
        human_delay(1000, 2000)
        return SubmissionState.SUBMITTING

    def _submit(self, session, attempt):
        page = session.page
        if self.settings.dry_run:
            logger.info("DRY RUN: not submitting the form for listing %s", attempt.listing.id)
            try:
                attempt.pdf_path = self.artifacts.capture(page, attempt.listing)
            except Exception as e:
                if is_resource_exhaustion(e):
                    raise
                logger.warning("Dry-run artifact for listing %s failed: %s", attempt.listing.id, e)
            return SubmissionState.APPLIED

        element, selector = find_first(page, SUBMIT_SELECTORS)
        if element is None:
            element = find_by_keyword(page, 'button, input[type="submit"]', SUBMIT_KEYWORDS)
            selector = "keyword scan"
        if element is None:
            raise SubmissionError("submit control not found", SubmissionState.SUBMITTING)
        logger.debug("Submit control found via %s", selector)
        scroll_into_view(page, element)
        human_delay(500, 1000)
        human_click(page, element)
        human_delay(2000, 4000)
        return SubmissionState.VERIFYING

    def _verify(self, session, attempt):
        human_delay(1000, 2000)
        outcome = verify_submission(session.page)
        if outcome == VERIFIED_FORM_GONE:
            logger.warning("Listing %s: no confirmation shown, form is gone, assuming success",
                           attempt.listing.id)
        if outcome in SUCCESSFUL_VERIFICATIONS:
            return SubmissionState.APPLIED
        raise SubmissionError(f"submission not confirmed ({outcome})", SubmissionState.VERIFYING)

    def _finish(self, session, attempt, state) -> ApplicationResult:
        listing = attempt.listing
        status = TERMINAL_STATUS[state]
        if state is SubmissionState.FAILED:
            name = f"failed_{listing.id}_{attempt.failed_in.value if attempt.failed_in else 'unknown'}"
            self.artifacts.try_screenshot(session.page, name)

        self.store.update_status(listing.id, status, pdf_path=attempt.pdf_path,
                                 error_message=attempt.error_message)
        result = ApplicationResult(
            success=state is SubmissionState.APPLIED,
            listing_id=listing.id,
            status=status,
            pdf_path=attempt.pdf_path,
            error_message=attempt.error_message,
            final_state=(attempt.failed_in or state).value,
        )

        if state is SubmissionState.APPLIED:
            logger.info("Successfully applied to listing %s%s", listing.id,
                        " (dry run)" if self.settings.dry_run else "")
            self.notifier.notify_applied(listing, result)
        elif state is SubmissionState.FAILED:
            self.notifier.notify_failed(listing, result)
        else:
            logger.info("Listing %s skipped: %s", listing.id, attempt.error_message)

        session.save_cookies()
        return result
