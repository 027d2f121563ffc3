from datetime import datetime
from zoneinfo import ZoneInfo

from court_reservations.core.config import settings


def venue_now() -> datetime:
    """Current time on the venue's wall clock (tz-aware)."""
    return datetime.now(ZoneInfo(settings.VENUE_TIMEZONE))


def ledger_period(now: datetime | None = None) -> str:
    """Year-month bucket used by the revenue ledger."""
    return (now or venue_now()).strftime("%Y-%m")
