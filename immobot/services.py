# immobot/services.py
"""Session-owning facades over ``crud`` used by the bot.

``ListingStore`` is the only component that writes listings and check logs;
``CaptchaRelay`` carries the "CAPTCHA pending / solved" signal between the
bot and the status API through the same database.
"""
import time
from typing import Iterable, List, Optional, Set
from . import crud, schemas
from .schemas import ListingCandidate, ListingStatus
from .utils import logger


class ListingStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _session(self):
        return self.session_factory()

    def get_known_ids(self) -> Set[str]:
        with self._session() as db:
            return crud.get_known_ids(db)

    def is_empty(self) -> bool:
        with self._session() as db:
            return crud.count_listings(db) == 0

    def insert_new_listings(self, candidates: Iterable[ListingCandidate], baseline: bool = False) -> List[ListingCandidate]:
        with self._session() as db:
            return crud.insert_new_listings(db, candidates, baseline=baseline)

    def update_status(self, listing_id: str, status: ListingStatus,
                      pdf_path: Optional[str] = None, error_message: Optional[str] = None):
        with self._session() as db:
            obj = crud.update_status(db, listing_id, status, pdf_path, error_message)
            return schemas.ListingOut.model_validate(obj) if obj else None

    def get_listing(self, listing_id: str) -> Optional[schemas.ListingOut]:
        with self._session() as db:
            obj = crud.get_listing(db, listing_id)
            return schemas.ListingOut.model_validate(obj) if obj else None

    def log_check(self, listings_found: int, new_listings: int, success: bool,
                  error_message: Optional[str] = None) -> schemas.CheckLogOut:
        with self._session() as db:
            entry = crud.log_check(db, listings_found, new_listings, success, error_message)
            return schemas.CheckLogOut.model_validate(entry)

    def get_recent(self, n: int = 10) -> List[schemas.CheckLogOut]:
        with self._session() as db:
            return [schemas.CheckLogOut.model_validate(c) for c in crud.get_recent_checks(db, n)]

    def get_recent_listings(self, n: int = 10) -> List[schemas.ListingOut]:
        with self._session() as db:
            items = crud.list_listings(db, limit=n)["items"]
            return [schemas.ListingOut.model_validate(o) for o in items]


class CaptchaRelay:
    """Publishes a pending CAPTCHA and waits for the status API to report it solved."""

    def __init__(self, session_factory, poll_seconds: float = 3, sleep=time.sleep, clock=time.monotonic):
        self.session_factory = session_factory
        self.poll_seconds = poll_seconds
        self._sleep = sleep
        self._clock = clock

    def publish(self, active: bool, image_path: Optional[str] = None, reason: Optional[str] = None):
        with self.session_factory() as db:
            crud.set_captcha_state(db, active, image_path, reason)
        if active:
            logger.info("CAPTCHA published to relay (screenshot: %s)", image_path)

    def poll_solution(self, timeout_seconds: float) -> Optional[str]:
        """Return the submitted solution, or ``None`` once ``timeout_seconds`` have elapsed."""
        deadline = self._clock() + timeout_seconds
        while self._clock() < deadline:
            self._sleep(self.poll_seconds)
            with self.session_factory() as db:
                state = crud.get_captcha_state(db)
                if state is not None and state.active and state.solution:
                    return state.solution
        return None
