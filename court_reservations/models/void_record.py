from sqlalchemy import String, Integer, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from court_reservations.db.session import Base

class VoidRecord(Base):
    __tablename__ = "void_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)  # exactly one per voided booking

    reason: Mapped[str] = mapped_column(String(500))
    refund_required: Mapped[bool] = mapped_column(Boolean, default=False)
    refund_amount: Mapped[int] = mapped_column(Integer, nullable=True)  # captured from the payment at void time

    refund_status: Mapped[str] = mapped_column(String(20), default="not_required")  # not_required, pending, refunded, failed, manual
    refund_ref: Mapped[str] = mapped_column(String(120), default="")

    voided_by: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    settled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
