"""
Void bookkeeping and the append-only revenue ledger.

A void is one database transaction over the locked booking row: the status
change, its VoidRecord and, when a refund is owed, the compensating revenue
entry and the payment reversal commit together or not at all. The provider
refund for online payments happens after that commit; if it fails the void
stands and the refund is left for ``settle_refund``.
"""
import uuid
import logging
from datetime import datetime, timezone

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from court_reservations.core.clock import ledger_period
from court_reservations.core.errors import (
    BookingNotFound, InvalidRequest, InvalidTransition, PartialVoidFailure,
)
from court_reservations.db.session import with_store_retry
from court_reservations.models.booking import Booking, VOIDED, LEGAL_TRANSITIONS
from court_reservations.models.payment import Payment
from court_reservations.models.revenue_entry import RevenueEntry
from court_reservations.models.void_record import VoidRecord
from court_reservations.services.audit_service import log_audit
from court_reservations.services.change_feed import ChangeEvent, UPDATE, publish_changes
from court_reservations.services.payment_gateway import GatewayError, PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)

REFUND_NOT_REQUIRED = "not_required"
REFUND_PENDING = "pending"
REFUND_REFUNDED = "refunded"
REFUND_FAILED = "failed"
REFUND_MANUAL = "manual"  # cash: handed back at the desk


def _append_entry(db: Session, booking_id: str, count_delta: int, amount_delta: int, key: str) -> RevenueEntry:
    entry = RevenueEntry(
        id=str(uuid.uuid4()),
        booking_id=booking_id,
        count_delta=count_delta,
        amount_delta=amount_delta,
        period=ledger_period(),
        idempotency_key=key,
    )
    db.add(entry)
    return entry


def record_sale(db: Session, booking: Booking, amount: int) -> RevenueEntry:
    """Stage the +1/+amount entry for a paid booking. Caller commits."""
    return _append_entry(db, booking.id, 1, int(amount), f"sale:{booking.id}")


@with_store_retry
def period_total(db: Session, period: str) -> dict:
    row = db.execute(
        select(
            func.coalesce(func.sum(RevenueEntry.count_delta), 0),
            func.coalesce(func.sum(RevenueEntry.amount_delta), 0),
        ).where(RevenueEntry.period == period)
    ).one()
    return {"period": period, "bookings": int(row[0]), "amount": int(row[1])}


def void_booking(db: Session, booking_id: str, reason: str, refund_required: bool,
                 actor_id: str = "", gateway: PaymentGateway | None = None) -> VoidRecord:
    reason = (reason or "").strip()
    if not reason:
        raise InvalidRequest("A void reason is required")

    b = db.execute(select(Booking).where(Booking.id == booking_id).with_for_update()).scalar_one_or_none()
    if not b:
        raise BookingNotFound("Booking not found", booking_id=booking_id)
    if VOIDED not in LEGAL_TRANSITIONS.get(b.status, ()):
        raise InvalidTransition(f"Cannot void a booking in status {b.status}", status=b.status)

    refund_amount = None
    refund_status = REFUND_NOT_REQUIRED
    if refund_required:
        payment = db.execute(
            select(Payment).where(Payment.booking_id == b.id, Payment.status == "processed")
        ).scalars().first()
        if not payment:
            raise InvalidRequest("Nothing to refund: the booking has no processed payment")
        # amount comes from what was charged, never from the current court price
        refund_amount = int(payment.amount)
        payment.status = "reversed"
        _append_entry(db, b.id, -1, -refund_amount, f"void:{b.id}")
        refund_status = REFUND_PENDING if payment.method == "online" else REFUND_MANUAL

    previous = b.status
    b.status = VOIDED
    b.hold_expires_at = None
    record = VoidRecord(
        id=str(uuid.uuid4()),
        booking_id=b.id,
        reason=reason,
        refund_required=bool(refund_required),
        refund_amount=refund_amount,
        refund_status=refund_status,
        voided_by=actor_id,
    )
    db.add(record)
    log_audit(db, actor_id, "booking.void", "booking", b.id,
              {"from": previous, "reason": reason, "refundRequired": bool(refund_required),
               "refundAmount": refund_amount})
    try:
        db.commit()
    except IntegrityError as e:
        # a concurrent void won the unique booking_id / idempotency key
        db.rollback()
        raise InvalidTransition("Booking is already voided") from e

    logger.info("booking %s voided (from %s, refund=%s)", b.id, previous, refund_status)
    publish_changes([ChangeEvent(b.court_id, b.date_str, UPDATE, b.id)])

    if record.refund_status == REFUND_PENDING:
        _request_refund(db, b, record, gateway or get_payment_gateway())
    return record


def _request_refund(db: Session, b: Booking, record: VoidRecord, gateway: PaymentGateway) -> VoidRecord:
    payment = db.execute(
        select(Payment).where(Payment.booking_id == b.id, Payment.status == "reversed", Payment.method == "online")
        .order_by(Payment.created_at.desc())
    ).scalars().first()
    error = ""
    result = None
    if payment is None:
        error = "no reversed online payment found"
    else:
        try:
            # stable client ref: the gateway dedupes a retried refund for the same booking
            result = gateway.refund(transaction_ref=payment.provider_ref, amount=record.refund_amount,
                                    client_ref=f"refund-{b.booking_code}")
        except GatewayError as e:
            error = str(e)

    if result is not None and result.success:
        record.refund_status = REFUND_REFUNDED
        record.refund_ref = result.transaction_ref
        record.settled_at = datetime.now(timezone.utc)
        db.commit()
        logger.info("refund settled for booking %s (%s)", b.id, record.refund_ref)
        return record

    if result is not None:
        error = f"refund {result.status or 'rejected'}"
    record.refund_status = REFUND_FAILED
    log_audit(db, "payment-gateway", "refund.failed", "booking", b.id, {"error": error})
    db.commit()
    logger.error("booking %s voided but provider refund failed: %s", b.id, error)
    raise PartialVoidFailure("Booking voided; the refund could not be completed and will be retried",
                             booking_id=b.id)


def settle_refund(db: Session, booking_id: str, gateway: PaymentGateway | None = None) -> VoidRecord:
    """Retry the provider refund for a voided booking. Safe to call repeatedly; never touches the ledger."""
    record = db.execute(
        select(VoidRecord).where(VoidRecord.booking_id == booking_id).with_for_update()
    ).scalar_one_or_none()
    if not record:
        raise BookingNotFound("No void record for booking", booking_id=booking_id)
    if record.refund_status not in (REFUND_PENDING, REFUND_FAILED):
        return record
    b = db.get(Booking, booking_id)
    return _request_refund(db, b, record, gateway or get_payment_gateway())


@with_store_retry
def unsettled_refunds(db: Session) -> list[str]:
    return list(db.execute(
        select(VoidRecord.booking_id).where(VoidRecord.refund_status.in_((REFUND_PENDING, REFUND_FAILED)))
    ).scalars())


def get_void_record(db: Session, booking_id: str) -> VoidRecord | None:
    return db.execute(select(VoidRecord).where(VoidRecord.booking_id == booking_id)).scalar_one_or_none()
