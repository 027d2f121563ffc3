from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from court_reservations.db.session import Base

COURT_ACTIVE = "Active"
COURT_INACTIVE = "Inactive"
COURT_MAINTENANCE = "UnderMaintenance"
COURT_STATES = (COURT_ACTIVE, COURT_INACTIVE, COURT_MAINTENANCE)

class Court(Base):
    __tablename__ = "courts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120))
    court_type: Mapped[str] = mapped_column(String(60), default="")  # e.g. 5-a-side, 7-a-side, paddle
    location: Mapped[str] = mapped_column(String(200), default="")
    hourly_price: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(20), default=COURT_ACTIVE, index=True)  # Active, Inactive, UnderMaintenance
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
