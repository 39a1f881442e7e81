# immobot/checker.py
"""One poll of the search results: extract, diff against the store, apply to what is new."""
import random
from dataclasses import dataclass, field
from typing import Callable, List
from .humanizer import human_delay, random_mouse_movement, scroll_to_bottom, simulate_idle_activity
from .schemas import ApplicationResult, ListingCandidate
from .scrape import extract_listings_from_page
from .utils import logger, is_resource_exhaustion, LoginError

HOME_DETOUR_PROBABILITY = 0.3


@dataclass
class CycleReport:
    found: int = 0
    new: List[ListingCandidate] = field(default_factory=list)
    baseline: bool = False
    results: List[ApplicationResult] = field(default_factory=list)


class CheckCycle:
    def __init__(self, settings, session, store, monitor, submitter, notifier,
                 extract: Callable = extract_listings_from_page,
                 detour_probability: float = HOME_DETOUR_PROBABILITY,
                 rand: Callable[[], float] = random.random,
                 auth=None):
        self.settings = settings
        self.session = session
        self.store = store
        self.monitor = monitor
        self.submitter = submitter
        self.notifier = notifier
        self.extract = extract
        self.detour_probability = detour_probability
        self._rand = rand
        # AccountLogin; None when the session needs no account
        self.auth = auth

    def run_cycle(self) -> CycleReport:
        """Run one check. Failures are recorded as a failed check and re-raised to the caller."""
        logger.info("Starting listing check...")
        report = CycleReport()
        logged = False
        try:
            page = self.session.page
            if self.settings.idle_simulation:
                simulate_idle_activity(page)

            if self.auth is not None and not self.auth.ensure_logged_in(self.session):
                raise LoginError("Failed to log in")
            self._open_search_view()
            while self.monitor.gate(page, context="search results"):
                logger.info("Reloading search results after security check")
                self.session.reload()

            candidates = self.extract(page, self.settings.base_url)
            report.found = len(candidates)

            if self.store.is_empty():
                inserted = self.store.insert_new_listings(candidates, baseline=True)
                self.store.log_check(len(candidates), len(inserted), True)
                logged = True
                report.baseline = True
                logger.info("First run: %d listings recorded as baseline, not applying", len(inserted))
                return report

            report.new = self.store.insert_new_listings(candidates)
            self.store.log_check(len(candidates), len(report.new), True)
            logged = True
            logger.info("Found %d listings, %d new", len(candidates), len(report.new))

            if report.new:
                report.results = self.submitter.apply_all(
                    self.session, report.new, return_url=self.settings.search_url)
                applied = sum(1 for r in report.results if r.success)
                logger.info("Applications finished: %d/%d successful", applied, len(report.results))
            return report
        except Exception as e:
            if is_resource_exhaustion(e):
                raise
            logger.error("Listing check failed: %s", e)
            if not logged:
                self.store.log_check(0, 0, False, str(e))
            self.notifier.notify_operator_error("Suche fehlgeschlagen", f"{type(e).__name__}: {e}")
            raise

    def _open_search_view(self):
        s = self.settings
        page = self.session.page
        if self._rand() < self.detour_probability:
            logger.debug("Visiting home page first")
            self.session.goto(s.base_url)
            human_delay(2000, 4000)
            self.session.accept_cookie_consent()
            random_mouse_movement(page)
            self.session.goto(s.search_url)
        elif page.url == s.search_url:
            self.session.reload()
        else:
            self.session.goto(s.search_url)
        self.session.accept_cookie_consent()
        scroll_to_bottom(page)
        human_delay(1000, 2000)
