# immobot/schemas.py
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime


class ListingStatus(str, Enum):
    NEW = "new"
    APPLIED = "applied"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def is_terminal(self):
        return self is not ListingStatus.NEW


class ListingCandidate(BaseModel):
    """A listing as read off the search results page."""
    id: str = Field(..., max_length=64)
    title: str
    address: str = ""
    price: str = ""
    size: str = ""
    rooms: Optional[str] = None
    url: str
    image_url: Optional[str] = None


class ListingOut(ListingCandidate):
    model_config = ConfigDict(from_attributes=True)

    first_seen: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    pdf_path: Optional[str] = None
    status: ListingStatus = ListingStatus.NEW
    error_message: Optional[str] = None
    baseline: bool = False


class CheckLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    checked_at: datetime
    listings_found: int
    new_listings: int
    success: bool
    error_message: Optional[str] = None


class ApplicationResult(BaseModel):
    success: bool
    listing_id: str
    status: ListingStatus
    pdf_path: Optional[str] = None
    error_message: Optional[str] = None
    # name of the submission step the attempt ended in
    final_state: Optional[str] = None


class NightModeOut(BaseModel):
    enabled: bool
    start_hour: int
    end_hour: int
    is_active: bool


class LastActivity(BaseModel):
    timestamp: datetime
    text: str


class StatusOut(BaseModel):
    status: str
    status_text: str
    last_activity: Optional[LastActivity] = None
    night_mode: NightModeOut
    check_interval: int
    captcha_pending: bool = False


class StatsOut(BaseModel):
    total_found: int
    found_last_24h: int
    applied: int
    errors: int
    avg_per_day: float


class ActivityOut(BaseModel):
    id: str
    timestamp: datetime
    type: str
    title: Optional[str] = None
    address: Optional[str] = None
    price: Optional[str] = None
    size: Optional[str] = None
    rooms: Optional[str] = None
    url: Optional[str] = None
    pdf_path: Optional[str] = None
    error_message: Optional[str] = None


class WarningOut(BaseModel):
    type: str
    message: str
    timestamp: datetime


class CaptchaSet(BaseModel):
    active: bool
    image_path: Optional[str] = None
    reason: Optional[str] = None


class CaptchaSolutionIn(BaseModel):
    solution: str = Field(..., min_length=1, max_length=500)


class CaptchaOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    active: bool = False
    image_path: Optional[str] = None
    reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    resolved: bool = False
    solution: Optional[str] = None


class CheckTriggerOut(BaseModel):
    status: str
    next_run: Optional[datetime] = None


class ListingPage(BaseModel):
    total: int
    items: List[ListingOut]
