import logging
import threading

from sqlalchemy import select
from sqlalchemy.orm import Session

from court_reservations.core.clock import venue_now
from court_reservations.core.errors import CourtNotFound, InvalidRequest
from court_reservations.db.session import with_store_retry
from court_reservations.models.booking import Booking, PENDING, CONFIRMED
from court_reservations.models.court import Court, COURT_ACTIVE, COURT_STATES
from court_reservations.schemas.court import CourtOut
from court_reservations.services.audit_service import log_audit

logger = logging.getLogger(__name__)

# Read-through cache of the public court catalogue; every write below drops it.
_cache_lock = threading.Lock()
_active_courts: list[CourtOut] | None = None


def invalidate_catalogue() -> None:
    global _active_courts
    with _cache_lock:
        _active_courts = None


@with_store_retry
def _load_active(db: Session) -> list[CourtOut]:
    rows = db.execute(select(Court).where(Court.state == COURT_ACTIVE).order_by(Court.name.asc())).scalars()
    return [CourtOut.from_model(c) for c in rows]


def list_active_courts(db: Session) -> list[CourtOut]:
    global _active_courts
    with _cache_lock:
        cached = _active_courts
    if cached is not None:
        return list(cached)
    loaded = _load_active(db)
    with _cache_lock:
        _active_courts = loaded
    return list(loaded)


@with_store_retry
def list_all_courts(db: Session) -> list[Court]:
    return list(db.execute(select(Court).order_by(Court.id.asc())).scalars())


def get_court(db: Session, court_id: int) -> Court:
    c = db.get(Court, court_id)
    if not c:
        raise CourtNotFound("Court not found", court_id=court_id)
    return c


def _check_state(state: str) -> None:
    if state not in COURT_STATES:
        raise InvalidRequest(f"Invalid court state: {state}", allowed=list(COURT_STATES))


def create_court(db: Session, *, name: str, court_type: str, location: str, hourly_price: int,
                 state: str = COURT_ACTIVE, actor_id: str = "") -> Court:
    _check_state(state)
    c = Court(name=name.strip(), court_type=court_type or "", location=location or "",
              hourly_price=int(hourly_price), state=state)
    db.add(c)
    db.flush()
    log_audit(db, actor_id, "court.create", "court", str(c.id), {"name": c.name, "state": state})
    db.commit()
    db.refresh(c)
    invalidate_catalogue()
    logger.info("court %s created (%s)", c.id, c.name)
    return c


def update_court(db: Session, court_id: int, changes: dict, actor_id: str = "") -> Court:
    c = get_court(db, court_id)
    if "state" in changes and changes["state"] is not None:
        _check_state(changes["state"])
    for field in ("name", "court_type", "location", "hourly_price", "state"):
        value = changes.get(field)
        if value is not None:
            setattr(c, field, value)
    log_audit(db, actor_id, "court.update", "court", str(c.id),
              {k: v for k, v in changes.items() if v is not None})
    db.commit()
    db.refresh(c)
    invalidate_catalogue()
    return c


def delete_court(db: Session, court_id: int, actor_id: str = "") -> None:
    """Remove a court. Historical bookings keep their court_id; upcoming live bookings block the delete."""
    c = get_court(db, court_id)
    today = venue_now().date().isoformat()
    upcoming = db.execute(
        select(Booking.id).where(
            Booking.court_id == c.id,
            Booking.date_str >= today,
            Booking.status.in_((PENDING, CONFIRMED)),
        ).limit(1)
    ).first()
    if upcoming:
        raise InvalidRequest("Court has upcoming bookings; void or move them first", court_id=c.id)
    log_audit(db, actor_id, "court.delete", "court", str(c.id), {"name": c.name})
    db.delete(c)
    db.commit()
    invalidate_catalogue()
