"""
Daily slot catalogue.

The venue offers one-hour slots starting on the hour from OPENING_HOUR through
LAST_START_HOUR (16:00-17:00 ... 23:00-00:00). Pure functions, no I/O.
"""
from datetime import date, datetime

from court_reservations.schemas.availability import TimeSlot

OPENING_HOUR = 16
LAST_START_HOUR = 23
SLOT_MINUTES = 60


def end_time_for(start_hhmm: str, dur_min: int = SLOT_MINUTES) -> str:
    hh, mm = map(int, start_hhmm.split(":"))
    total = hh*60 + mm + dur_min
    total %= 1440
    eh, em = divmod(total, 60)
    return f"{eh:02d}:{em:02d}"


def generate_daily_slots() -> list[TimeSlot]:
    return [
        TimeSlot(start=f"{h:02d}:00", end=end_time_for(f"{h:02d}:00"), available=True)
        for h in range(OPENING_HOUR, LAST_START_HOUR + 1)
    ]


def catalogue_starts() -> list[str]:
    return [s.start for s in generate_daily_slots()]


def is_catalogue_start(start_hhmm: str) -> bool:
    return start_hhmm in catalogue_starts()


def is_slot_past(reference_date: date, slot_start: str, now: datetime) -> bool:
    """True if the slot has started (or is starting) relative to ``now``.

    ``now`` is venue-local wall clock. Dates after today are never past.
    """
    today = now.date()
    if reference_date < today:
        return True
    if reference_date > today:
        return False
    hh, mm = map(int, slot_start.split(":"))
    return (hh, mm) <= (now.hour, now.minute)
