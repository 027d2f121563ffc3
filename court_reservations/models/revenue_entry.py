from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from court_reservations.db.session import Base

class RevenueEntry(Base):
    """Append-only ledger row. Never updated; totals are folded at read time."""
    __tablename__ = "revenue_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    count_delta: Mapped[int] = mapped_column(Integer)
    amount_delta: Mapped[int] = mapped_column(Integer)
    period: Mapped[str] = mapped_column(String(7), index=True)  # YYYY-MM
    idempotency_key: Mapped[str] = mapped_column(String(60), unique=True)  # sale:<booking_id> | void:<booking_id>
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
