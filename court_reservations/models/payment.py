from sqlalchemy import String, Integer, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from court_reservations.db.session import Base

_active_sql = text("status IN ('pending', 'processed')")

class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        # At most one active payment per booking; failed and reversed rows stay for audit.
        Index("ux_payments_active_booking", "booking_id", unique=True,
              postgresql_where=_active_sql, sqlite_where=_active_sql),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    method: Mapped[str] = mapped_column(String(20), default="online")  # online|cash
    amount: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, processed, failed, reversed
    provider_ref: Mapped[str] = mapped_column(String(120), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
