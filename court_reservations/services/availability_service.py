"""
Per-court, per-date slot availability.

Every call re-reads the blocking bookings from the store; nothing here is cached.
A failed lookup raises StoreUnavailable so callers never mistake "unknown" for
"all open".
"""
from datetime import date, datetime
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from court_reservations.core.clock import venue_now
from court_reservations.core.errors import InvalidRequest
from court_reservations.db.session import with_store_retry
from court_reservations.models.booking import Booking, BLOCKING_STATUSES
from court_reservations.schemas.availability import TimeSlot
from court_reservations.services.slot_calendar import generate_daily_slots, is_slot_past

logger = logging.getLogger(__name__)


@with_store_retry
def find_blocking_bookings(db: Session, court_id: int, date_str: str,
                           exclude_booking_id: str | None = None) -> list[tuple[str, str]]:
    """(start, end) of every booking occupying a slot on (court, date)."""
    q = select(Booking.id, Booking.start, Booking.end).where(
        Booking.court_id == court_id,
        Booking.date_str == date_str,
        Booking.status.in_(BLOCKING_STATUSES),
    )
    rows = db.execute(q).all()
    return [(r.start, r.end) for r in rows if r.id != exclude_booking_id]


def compute_availability(db: Session, court_id: int | None, date_str: str | None,
                         now: datetime | None = None,
                         exclude_booking_id: str | None = None, retry: bool = True) -> list[TimeSlot]:
    """Slots for (court, date). Pass retry=False while holding row locks."""
    if court_id is None or not date_str:
        return []
    now = now or venue_now()
    try:
        day = date.fromisoformat(date_str)
    except ValueError as e:
        raise InvalidRequest(f"Invalid date: {date_str}") from e

    slots = generate_daily_slots()
    if day == now.date():
        for s in slots:
            if is_slot_past(day, s.start, now):
                s.available = False

    lookup = find_blocking_bookings if retry else find_blocking_bookings.once
    taken = {start for start, _ in lookup(db, court_id, date_str, exclude_booking_id)}
    for s in slots:
        if s.start in taken:
            s.available = False
    return slots


def is_slot_open(db: Session, court_id: int, date_str: str, start: str,
                 now: datetime | None = None, exclude_booking_id: str | None = None,
                 retry: bool = True) -> bool:
    """Advisory pre-check used before writes; the unique index has the final word."""
    for s in compute_availability(db, court_id, date_str, now, exclude_booking_id, retry=retry):
        if s.start == start:
            return s.available
    return False
