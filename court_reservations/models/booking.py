from sqlalchemy import String, Integer, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from court_reservations.db.session import Base

PENDING = "Pending"
CONFIRMED = "Confirmed"
CANCELLED = "Cancelled"
REALIZED = "Realized"
VOIDED = "Voided"

# Statuses that occupy their slot
BLOCKING_STATUSES = (PENDING, CONFIRMED, REALIZED)
TERMINAL_STATUSES = (REALIZED, VOIDED, CANCELLED)

LEGAL_TRANSITIONS = {
    PENDING: {CONFIRMED, CANCELLED, VOIDED},
    CONFIRMED: {REALIZED, VOIDED},
    REALIZED: set(),
    VOIDED: set(),
    CANCELLED: set(),
}

_blocking_sql = text("status IN ('Pending', 'Confirmed', 'Realized')")

class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # No double-booking: one blocking booking per court/date/start. Authoritative over any pre-check.
        Index(
            "ux_bookings_blocking_slot",
            "court_id", "date_str", "start",
            unique=True,
            postgresql_where=_blocking_sql,
            sqlite_where=_blocking_sql,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_code: Mapped[str] = mapped_column(String(6), unique=True, index=True)

    user_id: Mapped[str] = mapped_column(String(64), index=True)  # requester, as issued by the identity provider
    court_id: Mapped[int] = mapped_column(Integer, index=True)  # no FK cascade: history outlives courts

    date_str: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD
    start: Mapped[str] = mapped_column(String(5))  # HH:MM
    end: Mapped[str] = mapped_column(String(5))    # HH:MM, always start + 1h

    status: Mapped[str] = mapped_column(String(12), default=PENDING, index=True)
    created_by_role: Mapped[str] = mapped_column(String(12), default="CLIENT")  # CLIENT|STAFF

    hold_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    qr_object_key: Mapped[str] = mapped_column(String(512), nullable=True)
    qr_storage: Mapped[str] = mapped_column(String(16), default="local")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                                                 onupdate=lambda: datetime.now(timezone.utc))
