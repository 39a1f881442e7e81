# immobot/crud.py
"""Persistence primitives for listings, check logs and the CAPTCHA mailbox.

Every function takes an open ``Session`` and commits its own work. Listing
inserts are idempotent on the site id.
"""
import math
from datetime import timedelta, timezone
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy import select, func
from sqlalchemy.orm import Session
from typing import Dict, Iterable, List, Optional, Set
from .models import Listing, CheckLog, CaptchaState, utcnow
from .schemas import ListingCandidate, ListingStatus
from .utils import logger

CAPTCHA_ROW_ID = 1


def _insert_ignoring_duplicates(db: Session, values: Dict):
    table = Listing.__table__
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=["id"])
    elif dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=["id"])
    else:
        if db.get(Listing, values["id"]) is not None:
            return 0
        stmt = table.insert().values(**values)
    return db.execute(stmt).rowcount


def get_known_ids(db: Session) -> Set[str]:
    return set(db.scalars(select(Listing.id)))


def count_listings(db: Session) -> int:
    return db.scalar(select(func.count()).select_from(Listing))


def insert_new_listings(db: Session, candidates: Iterable[ListingCandidate], baseline: bool = False) -> List[ListingCandidate]:
    """Insert unseen candidates with status ``new`` and return exactly those."""
    known = get_known_ids(db)
    inserted = []
    for candidate in candidates:
        if candidate.id in known:
            continue
        known.add(candidate.id)
        values = candidate.model_dump()
        values.update(status=ListingStatus.NEW.value, first_seen=utcnow(), baseline=baseline)
        if _insert_ignoring_duplicates(db, values) != 0:
            inserted.append(candidate)
    db.commit()
    if inserted:
        logger.info("Inserted %d new listings into database", len(inserted))
    return inserted


def update_status(db: Session, listing_id: str, status: ListingStatus,
                  pdf_path: Optional[str] = None, error_message: Optional[str] = None):
    obj = db.get(Listing, listing_id)
    if not obj:
        logger.warning("Cannot update status of unknown listing %s", listing_id)
        return None
    current = ListingStatus(obj.status)
    if current.is_terminal:
        logger.warning("Listing %s already %s, ignoring transition to %s", listing_id, current.value, status.value)
        return obj
    obj.status = status.value
    obj.applied_at = utcnow() if status is ListingStatus.APPLIED else None
    obj.pdf_path = pdf_path
    obj.error_message = error_message
    db.commit()
    db.refresh(obj)
    return obj


def get_listing(db: Session, listing_id: str):
    return db.get(Listing, listing_id)


def list_listings(db: Session, skip: int = 0, limit: int = 50, status: Optional[ListingStatus] = None):
    q = db.query(Listing)
    if status is not None:
        q = q.filter(Listing.status == status.value)
    total = q.count()
    items = q.order_by(Listing.first_seen.desc()).offset(skip).limit(limit).all()
    return {"total": total, "items": items}


def count_by_status(db: Session) -> Dict[str, int]:
    rows = db.execute(select(Listing.status, func.count()).group_by(Listing.status)).all()
    counts = {s.value: 0 for s in ListingStatus}
    counts.update({status: n for status, n in rows})
    return counts


def log_check(db: Session, listings_found: int, new_listings: int, success: bool,
              error_message: Optional[str] = None) -> CheckLog:
    entry = CheckLog(
        checked_at=utcnow(),
        listings_found=listings_found,
        new_listings=new_listings,
        success=success,
        error_message=error_message,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def get_recent_checks(db: Session, limit: int = 10) -> List[CheckLog]:
    return list(db.scalars(select(CheckLog).order_by(CheckLog.id.desc()).limit(limit)))


def get_captcha_state(db: Session) -> Optional[CaptchaState]:
    return db.get(CaptchaState, CAPTCHA_ROW_ID)


def set_captcha_state(db: Session, active: bool, image_path: Optional[str] = None,
                      reason: Optional[str] = None) -> CaptchaState:
    obj = db.get(CaptchaState, CAPTCHA_ROW_ID)
    if obj is None:
        obj = CaptchaState(id=CAPTCHA_ROW_ID)
        db.add(obj)
    obj.active = active
    obj.image_path = image_path if active else None
    obj.reason = reason if active else None
    obj.requested_at = utcnow() if active else None
    obj.solution = None
    obj.solved_at = None
    db.commit()
    db.refresh(obj)
    return obj


def submit_captcha_solution(db: Session, solution: str) -> Optional[CaptchaState]:
    obj = db.get(CaptchaState, CAPTCHA_ROW_ID)
    if obj is None or not obj.active:
        return None
    obj.solution = solution
    obj.solved_at = utcnow()
    db.commit()
    db.refresh(obj)
    return obj


def listing_stats(db: Session, now=None) -> Dict:
    now = now or utcnow()
    total = count_listings(db)
    last_24h = db.scalar(
        select(func.count()).select_from(Listing).where(Listing.first_seen >= now - timedelta(hours=24))
    )
    first_seen = db.scalar(select(func.min(Listing.first_seen)))
    days = 1
    if first_seen is not None:
        if first_seen.tzinfo is None:
            # SQLite hands back naive UTC
            first_seen = first_seen.replace(tzinfo=timezone.utc)
        days = max(1, math.ceil((now - first_seen).total_seconds() / 86400))
    counts = count_by_status(db)
    return {
        "total_found": total,
        "found_last_24h": last_24h,
        "applied": counts.get(ListingStatus.APPLIED.value, 0),
        "errors": counts.get(ListingStatus.ERROR.value, 0),
        "avg_per_day": round(total / days, 1),
    }
