# immobot/models.py
"""SQLAlchemy ORM models for persisted entities.

``listings`` holds one row per site listing id, ``checks`` one row per poll
cycle, and ``captcha_state`` a single row used as the CAPTCHA relay mailbox.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, Index
from .db import Base


def utcnow():
    return datetime.now(timezone.utc)


class Listing(Base):
    __tablename__ = "listings"
    id = Column(Text, primary_key=True)
    title = Column(Text)
    address = Column(Text)
    price = Column(Text)
    size = Column(Text)
    rooms = Column(Text)
    url = Column(Text)
    image_url = Column(Text)
    first_seen = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    applied_at = Column(DateTime(timezone=True))
    pdf_path = Column(Text)
    status = Column(Text, nullable=False, default="new")
    error_message = Column(Text)
    # recorded on the very first cycle; never applied to
    baseline = Column(Boolean, nullable=False, default=False)


class CheckLog(Base):
    __tablename__ = "checks"
    id = Column(Integer, primary_key=True, autoincrement=True)
    checked_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    listings_found = Column(Integer, nullable=False, default=0)
    new_listings = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text)


class CaptchaState(Base):
    __tablename__ = "captcha_state"
    id = Column(Integer, primary_key=True)
    active = Column(Boolean, nullable=False, default=False)
    image_path = Column(Text)
    reason = Column(Text)
    requested_at = Column(DateTime(timezone=True))
    solution = Column(Text)
    solved_at = Column(DateTime(timezone=True))

Index("idx_listings_status", Listing.status)
Index("idx_listings_first_seen", Listing.first_seen)
Index("idx_checks_checked_at", CheckLog.checked_at)
