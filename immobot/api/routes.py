# immobot/api/routes.py
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from typing import List, Optional
from .. import crud, schemas
from ..db import get_db
from ..models import utcnow
from ..scheduler import is_night_hour
from ..utils import logger

router = APIRouter()


def _night_active(settings) -> bool:
    return settings.night_mode_enabled and is_night_hour(
        datetime.now().hour, settings.night_start_hour, settings.night_end_hour)


def _captcha_out(obj) -> schemas.CaptchaOut:
    if obj is None:
        return schemas.CaptchaOut()
    return schemas.CaptchaOut(
        active=obj.active,
        image_path=obj.image_path,
        reason=obj.reason,
        requested_at=obj.requested_at,
        resolved=obj.solution is not None,
        solution=obj.solution,
    )


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/status", response_model=schemas.StatusOut)
def status(request: Request, db: Session = Depends(get_db)):
    settings = request.app.state.settings
    checks = crud.get_recent_checks(db, 1)
    last_check = checks[0] if checks else None
    captcha = crud.get_captcha_state(db)
    captcha_pending = bool(captcha and captcha.active)
    night = _night_active(settings)

    if captcha_pending:
        state, text = "captcha", "Wartet auf CAPTCHA-Lösung"
    elif night:
        state, text = "night", f"Nachtmodus (bis {settings.night_end_hour}:00 Uhr)"
    elif last_check is not None and not last_check.success:
        state, text = "error", "Fehler beim letzten Check"
    else:
        state, text = "active", "Bot läuft"

    last_activity = None
    if last_check is not None:
        last_activity = schemas.LastActivity(
            timestamp=last_check.checked_at,
            text=(f"{last_check.new_listings} neue(s) Angebot(e) gefunden" if last_check.new_listings > 0
                  else "Check abgeschlossen - keine neuen Angebote"),
        )

    return schemas.StatusOut(
        status=state,
        status_text=text,
        last_activity=last_activity,
        night_mode=schemas.NightModeOut(
            enabled=settings.night_mode_enabled,
            start_hour=settings.night_start_hour,
            end_hour=settings.night_end_hour,
            is_active=night,
        ),
        check_interval=settings.base_interval_minutes,
        captcha_pending=captcha_pending,
    )


@router.get("/stats", response_model=schemas.StatsOut)
def stats(db: Session = Depends(get_db)):
    return crud.listing_stats(db)


@router.get("/activities", response_model=List[schemas.ActivityOut])
def activities(limit: int = Query(10, ge=1, le=200), db: Session = Depends(get_db)):
    items = crud.list_listings(db, limit=limit)["items"]
    out = []
    for listing in items:
        kind = {"applied": "applied", "error": "error", "skipped": "skipped"}.get(listing.status, "found")
        out.append(schemas.ActivityOut(
            id=listing.id,
            timestamp=listing.applied_at or listing.first_seen,
            type=kind,
            title=listing.title,
            address=listing.address,
            price=listing.price,
            size=listing.size,
            rooms=listing.rooms,
            url=listing.url,
            pdf_path=listing.pdf_path,
            error_message=listing.error_message,
        ))
    return out


@router.get("/warnings", response_model=List[schemas.WarningOut])
def warnings(request: Request, db: Session = Depends(get_db)):
    settings = request.app.state.settings
    out = []
    failed = [c for c in crud.get_recent_checks(db, 10) if not c.success]
    if failed:
        out.append(schemas.WarningOut(
            type="error",
            message=failed[0].error_message or "Unbekannter Fehler beim letzten Check",
            timestamp=failed[0].checked_at,
        ))
    captcha = crud.get_captcha_state(db)
    if captcha is not None and captcha.active:
        out.append(schemas.WarningOut(
            type="captcha",
            message="CAPTCHA erkannt - Bot pausiert bis zur Lösung",
            timestamp=captcha.requested_at or utcnow(),
        ))
    if _night_active(settings):
        out.append(schemas.WarningOut(
            type="info",
            message=f"Nachtmodus aktiv - Bot pausiert bis {settings.night_end_hour}:00 Uhr",
            timestamp=utcnow(),
        ))
    return out


@router.get("/listings", response_model=schemas.ListingPage)
def listings(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=200),
    status: Optional[schemas.ListingStatus] = Query(None),
    db: Session = Depends(get_db)
):
    return crud.list_listings(db, skip=skip, limit=limit, status=status)


@router.get("/listings/{listing_id}", response_model=schemas.ListingOut)
def get_listing(listing_id: str, db: Session = Depends(get_db)):
    obj = crud.get_listing(db, listing_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Listing not found")
    return obj


@router.get("/checks", response_model=List[schemas.CheckLogOut])
def checks(limit: int = Query(10, ge=1, le=200), db: Session = Depends(get_db)):
    return crud.get_recent_checks(db, limit)


@router.post("/check", response_model=schemas.CheckTriggerOut)
def trigger_check(request: Request):
    scheduler = request.app.state.scheduler
    if scheduler is None:
        raise HTTPException(status_code=503, detail="No scheduler running in this process")
    next_run = scheduler.force_check()
    if next_run is None:
        raise HTTPException(status_code=409, detail="A check is already running")
    return schemas.CheckTriggerOut(status="scheduled", next_run=next_run)


@router.get("/captcha", response_model=schemas.CaptchaOut)
def captcha(db: Session = Depends(get_db)):
    return _captcha_out(crud.get_captcha_state(db))


@router.post("/captcha/set", response_model=schemas.CaptchaOut)
def set_captcha(payload: schemas.CaptchaSet, db: Session = Depends(get_db)):
    obj = crud.set_captcha_state(db, payload.active, payload.image_path, payload.reason)
    logger.info("CAPTCHA state set to %s via API", "active" if payload.active else "inactive")
    return _captcha_out(obj)


@router.post("/captcha/solution", response_model=schemas.CaptchaOut)
def submit_solution(payload: schemas.CaptchaSolutionIn, db: Session = Depends(get_db)):
    obj = crud.submit_captcha_solution(db, payload.solution)
    if obj is None:
        raise HTTPException(status_code=409, detail="No CAPTCHA pending")
    logger.info("CAPTCHA solution submitted via API")
    return _captcha_out(obj)
