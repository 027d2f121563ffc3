"""
Booking lifecycle: create, pay, cancel, edit, validate, void, expire.

Status machine (see LEGAL_TRANSITIONS):

    Pending   -> Confirmed | Cancelled | Voided
    Confirmed -> Realized | Voided
    Realized, Voided, Cancelled are terminal.

Every transition re-reads the booking under a row lock. Slot ownership is
decided by the ``ux_bookings_blocking_slot`` unique index; the availability
pre-check only gives the caller a friendlier early answer.
"""
import json
import logging
import random
import string
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from court_reservations.core.clock import venue_now
from court_reservations.core.config import settings
from court_reservations.core.errors import (
    AlreadyValidated, BookingNotFound, CourtNotFound, InvalidRequest, InvalidTransition,
    NotValidatable, PaymentDeclined, SlotUnavailable, StoreUnavailable,
)
from court_reservations.db.session import with_store_retry
from court_reservations.models.booking import (
    Booking, PENDING, CONFIRMED, CANCELLED, REALIZED, VOIDED, TERMINAL_STATUSES, LEGAL_TRANSITIONS,
)
from court_reservations.models.court import Court, COURT_ACTIVE
from court_reservations.models.payment import Payment
from court_reservations.models.void_record import VoidRecord
from court_reservations.services import ledger_service
from court_reservations.services.audit_service import log_audit
from court_reservations.services.availability_service import is_slot_open
from court_reservations.services.change_feed import ChangeEvent, INSERT, UPDATE, publish_changes
from court_reservations.services.notification_service import notify
from court_reservations.services.payment_gateway import GatewayError, PaymentGateway, get_payment_gateway
from court_reservations.services.qr_service import encode_qr, qr_payload
from court_reservations.services.slot_calendar import end_time_for, is_catalogue_start, is_slot_past

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
CODE_ATTEMPTS = 10

CREATED_BY_CLIENT = "CLIENT"
CREATED_BY_STAFF = "STAFF"


@dataclass
class BookingEdit:
    """Fields a staff edit may change. None means unchanged; ``end`` is always derived."""
    status: Optional[str] = None
    court_id: Optional[int] = None
    date_str: Optional[str] = None
    start: Optional[str] = None


def can_transition(current: str, target: str) -> bool:
    return target in LEGAL_TRANSITIONS.get(current, set())


def make_booking_code() -> str:
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=CODE_LENGTH))


def _aware(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _is_slot_conflict(msg: str) -> bool:
    return "ux_bookings_blocking_slot" in msg or "bookings.court_id, bookings.date_str, bookings.start" in msg


def _lock_booking(db: Session, booking_id: str) -> Booking:
    b = db.execute(select(Booking).where(Booking.id == booking_id).with_for_update()).scalar_one_or_none()
    if not b:
        raise BookingNotFound("Booking not found", booking_id=booking_id)
    return b


def _bookable_court(db: Session, court_id: int) -> Court:
    court = db.get(Court, court_id)
    if not court:
        raise CourtNotFound("Court not found", court_id=court_id)
    if court.state != COURT_ACTIVE:
        raise SlotUnavailable(f"Court is {court.state} and not accepting bookings", court_id=court_id)
    return court


def _check_slot(db: Session, court_id: int, date_str: str, start: str, now: datetime,
                exclude_booking_id: str | None = None, retry: bool = True) -> None:
    try:
        day = date.fromisoformat(date_str)
    except ValueError as e:
        raise InvalidRequest(f"Invalid date: {date_str}") from e
    if not is_catalogue_start(start):
        raise SlotUnavailable(f"{start} is not an offered slot", start=start)
    if is_slot_past(day, start, now):
        raise SlotUnavailable("Slot is in the past", date=date_str, start=start)
    if not is_slot_open(db, court_id, date_str, start, now=now, exclude_booking_id=exclude_booking_id,
                        retry=retry):
        raise SlotUnavailable("Slot is no longer available", court_id=court_id, date=date_str, start=start)


def _encode(b: Booking) -> None:
    payload = qr_payload(booking_code=b.booking_code, user_id=b.user_id, court_id=b.court_id,
                         date_str=b.date_str, start=b.start)
    b.qr_storage, b.qr_object_key = encode_qr(payload, b.booking_code)


@with_store_retry
def _code_taken(db: Session, code: str) -> bool:
    return db.execute(select(Booking.id).where(Booking.booking_code == code)).first() is not None


def _allocate_code(db: Session) -> str:
    for _ in range(CODE_ATTEMPTS):
        code = make_booking_code()
        if not _code_taken(db, code):
            return code
    raise StoreUnavailable("Could not allocate a free booking code", attempts=CODE_ATTEMPTS)


def create_booking(db: Session, court_id: int, date_str: str, start: str, requester_id: str, *,
                   status: str = PENDING, created_by_role: str = CREATED_BY_CLIENT, actor_id: str = "",
                   now: datetime | None = None, on_insert=None) -> Booking:
    """Insert a booking for (court, date, start).

    ``on_insert(db, booking, court)`` stages extra rows (payment, ledger) in the
    same transaction as the booking.
    """
    if status not in (PENDING, CONFIRMED):
        raise InvalidRequest(f"A booking cannot be created as {status}")
    now = now or venue_now()
    court = _bookable_court(db, court_id)
    _check_slot(db, court.id, date_str, start, now)

    hold = datetime.now(timezone.utc) + timedelta(minutes=settings.PENDING_HOLD_MINUTES) if status == PENDING else None

    for attempt in range(1, CODE_ATTEMPTS + 1):
        b = Booking(
            id=str(uuid.uuid4()),
            booking_code=_allocate_code(db),
            user_id=requester_id,
            court_id=court.id,
            date_str=date_str,
            start=start,
            end=end_time_for(start),
            status=status,
            created_by_role=created_by_role,
            hold_expires_at=hold,
        )
        db.add(b)
        if on_insert:
            on_insert(db, b, court)
        log_audit(db, actor_id or requester_id, "booking.create", "booking", b.id,
                  {"court": court.id, "date": date_str, "start": start, "status": status})
        try:
            # the insert must win the slot and the code before a QR image is written
            db.flush()
            _encode(b)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            msg = str(e.orig)
            if _is_slot_conflict(msg):
                raise SlotUnavailable("Slot was just taken", court_id=court.id, date=date_str, start=start) from e
            if "booking_code" in msg:
                logger.warning("booking code collision on insert (attempt %d), retrying", attempt)
                continue
            raise
        db.refresh(b)
        logger.info("booking %s created: court=%s %s %s status=%s", b.booking_code, b.court_id, b.date_str, b.start, b.status)
        publish_changes([ChangeEvent(b.court_id, b.date_str, INSERT, b.id)])
        return b
    raise StoreUnavailable("Booking codes kept colliding on insert", attempts=CODE_ATTEMPTS)


def create_cash_booking(db: Session, court_id: int, date_str: str, start: str, client_id: str,
                        staff_id: str, now: datetime | None = None) -> Booking:
    """Staff desk booking paid in cash: Confirmed from the start, sale on the ledger."""
    def stage_payment(db: Session, b: Booking, court: Court):
        db.add(Payment(id=str(uuid.uuid4()), booking_id=b.id, method="cash",
                       amount=int(court.hourly_price), status="processed", provider_ref=f"cash:{staff_id}"))
        ledger_service.record_sale(db, b, court.hourly_price)
        notify(db, client_id, "Booking confirmed",
               f"Your booking {b.booking_code} for {court.name} on {b.date_str} at {b.start} is confirmed.")

    return create_booking(db, court_id, date_str, start, client_id, status=CONFIRMED,
                          created_by_role=CREATED_BY_STAFF, actor_id=staff_id, now=now, on_insert=stage_payment)


def _hold_expired(b: Booking, now_utc: datetime) -> bool:
    exp = _aware(b.hold_expires_at)
    return exp is not None and exp < now_utc


def confirm_payment(db: Session, booking_id: str, payer: dict,
                    gateway: PaymentGateway | None = None) -> Booking:
    gateway = gateway or get_payment_gateway()
    b = _lock_booking(db, booking_id)
    if b.status != PENDING:
        raise InvalidTransition(f"Booking is {b.status}, not awaiting payment", status=b.status)
    if _hold_expired(b, datetime.now(timezone.utc)):
        b.status = CANCELLED
        b.hold_expires_at = None
        log_audit(db, b.user_id, "booking.hold_expired", "booking", b.id, {})
        db.commit()
        publish_changes([ChangeEvent(b.court_id, b.date_str, UPDATE, b.id)])
        raise InvalidTransition("Booking hold expired. Please book again.", status=CANCELLED)

    court = db.get(Court, b.court_id)
    if not court:
        raise CourtNotFound("Court not found", court_id=b.court_id)
    amount = int(court.hourly_price)

    try:
        result = gateway.charge(amount=amount, payer=payer, client_ref=f"booking-{b.booking_code}")
    except GatewayError as e:
        # nothing charged as far as we know; hold stays so the client can retry
        db.rollback()
        logger.warning("payment for booking %s not processed: %s", booking_id, e)
        raise PaymentDeclined("Payment provider unavailable, please retry", retryable=True) from e

    if not result.success:
        db.add(Payment(id=str(uuid.uuid4()), booking_id=b.id, method="online", amount=amount,
                       status="failed", provider_ref=result.transaction_ref))
        b.status = CANCELLED
        b.hold_expires_at = None
        log_audit(db, b.user_id, "payment.declined", "booking", b.id, {"status": result.status})
        db.commit()
        logger.info("booking %s cancelled: payment declined (%s)", b.booking_code, result.status)
        publish_changes([ChangeEvent(b.court_id, b.date_str, UPDATE, b.id)])
        raise PaymentDeclined("Payment was declined", status=result.status)

    db.add(Payment(id=str(uuid.uuid4()), booking_id=b.id, method="online", amount=amount,
                   status="processed", provider_ref=result.transaction_ref))
    b.status = CONFIRMED
    b.hold_expires_at = None
    ledger_service.record_sale(db, b, amount)
    notify(db, b.user_id, "Booking confirmed",
           f"Your booking {b.booking_code} for {court.name} on {b.date_str} at {b.start} is confirmed.")
    log_audit(db, b.user_id, "payment.processed", "booking", b.id, {"amount": amount, "ref": result.transaction_ref})
    db.commit()
    db.refresh(b)
    logger.info("booking %s confirmed (payment %s)", b.booking_code, result.transaction_ref)
    publish_changes([ChangeEvent(b.court_id, b.date_str, UPDATE, b.id)])
    return b


def cancel_booking(db: Session, booking_id: str, actor_id: str = "") -> Booking:
    b = _lock_booking(db, booking_id)
    if not can_transition(b.status, CANCELLED):
        raise InvalidTransition(f"Cannot cancel a booking in status {b.status}", status=b.status)
    b.status = CANCELLED
    b.hold_expires_at = None
    log_audit(db, actor_id, "booking.cancel", "booking", b.id, {})
    db.commit()
    db.refresh(b)
    publish_changes([ChangeEvent(b.court_id, b.date_str, UPDATE, b.id)])
    return b


def edit_booking(db: Session, booking_id: str, edit: BookingEdit, actor_id: str = "",
                 now: datetime | None = None) -> Booking:
    now = now or venue_now()
    b = _lock_booking(db, booking_id)
    if b.status in TERMINAL_STATUSES:
        raise InvalidTransition(f"Booking is {b.status} and can no longer be changed", status=b.status)

    changes = {}
    if edit.status is not None and edit.status != b.status:
        if edit.status == VOIDED:
            raise InvalidTransition("Voiding requires a reason; use the void operation")
        if not can_transition(b.status, edit.status):
            raise InvalidTransition(f"Cannot move a booking from {b.status} to {edit.status}",
                                    status=b.status, target=edit.status)
        changes["status"] = (b.status, edit.status)

    new_court = edit.court_id if edit.court_id is not None else b.court_id
    new_date = edit.date_str if edit.date_str is not None else b.date_str
    new_start = edit.start if edit.start is not None else b.start
    old_topic = (b.court_id, b.date_str)
    moved = (new_court, new_date, new_start) != (b.court_id, b.date_str, b.start)
    if moved:
        _bookable_court(db, new_court)
        _check_slot(db, new_court, new_date, new_start, now, exclude_booking_id=b.id, retry=False)
        changes["slot"] = ([b.court_id, b.date_str, b.start], [new_court, new_date, new_start])
        b.court_id, b.date_str, b.start = new_court, new_date, new_start
        b.end = end_time_for(new_start)

    if not changes:
        return b
    if "status" in changes:
        b.status = edit.status
        if b.status != PENDING:
            b.hold_expires_at = None

    log_audit(db, actor_id, "booking.edit", "booking", b.id, changes)
    try:
        db.flush()
        if moved:
            _encode(b)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if _is_slot_conflict(str(e.orig)):
            raise SlotUnavailable("Slot was just taken", court_id=new_court, date=new_date, start=new_start) from e
        raise
    db.refresh(b)
    logger.info("booking %s edited: %s", b.booking_code, changes)

    events = [ChangeEvent(b.court_id, b.date_str, UPDATE, b.id)]
    if moved and old_topic != (b.court_id, b.date_str):
        events.append(ChangeEvent(old_topic[0], old_topic[1], UPDATE, b.id))
    publish_changes(events)
    return b


def _resolve(db: Session, ref: str, lock: bool = False) -> Booking:
    q = select(Booking).where(or_(Booking.id == ref, Booking.booking_code == ref.upper()))
    if lock:
        q = q.with_for_update()
    b = db.execute(q).scalar_one_or_none()
    if not b:
        raise BookingNotFound("Booking not found", ref=ref)
    return b


def validation_message(status: str) -> str | None:
    """Why a booking in ``status`` cannot be validated, or None if it can."""
    if status == REALIZED:
        return "This booking was already validated"
    if status != CONFIRMED:
        return f"A booking in status {status} cannot be validated"
    return None


def validate_booking(db: Session, ref: str, staff_id: str = "") -> Booking:
    """Mark a Confirmed booking Realized (QR scanned at the venue). ``ref`` is an id or a booking code."""
    b = _resolve(db, ref.strip(), lock=True)
    if b.status == REALIZED:
        raise AlreadyValidated(validation_message(b.status), booking_id=b.id)
    if b.status != CONFIRMED:
        raise NotValidatable(validation_message(b.status), booking_id=b.id, status=b.status)
    b.status = REALIZED
    notify(db, b.user_id, "Booking validated", f"Your booking {b.booking_code} was validated. Enjoy the game!")
    log_audit(db, staff_id, "booking.validate", "booking", b.id, {})
    db.commit()
    db.refresh(b)
    logger.info("booking %s realized by %s", b.booking_code, staff_id or "-")
    publish_changes([ChangeEvent(b.court_id, b.date_str, UPDATE, b.id)])
    return b


def parse_scanned(scanned: str) -> str:
    """Booking code from a scanned QR payload (JSON) or a code typed by hand."""
    raw = (scanned or "").strip()
    if raw.startswith("{"):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidRequest("Unreadable QR payload") from e
        raw = str(data.get("code") or "").strip()
    if not raw:
        raise InvalidRequest("No booking code in scan")
    return raw.upper()


def lookup_by_code(db: Session, scanned: str) -> tuple[Booking, str | None]:
    b = _resolve(db, parse_scanned(scanned))
    return b, validation_message(b.status)


def void_booking(db: Session, booking_id: str, reason: str, refund_required: bool = False,
                 actor_id: str = "", gateway: PaymentGateway | None = None) -> VoidRecord:
    return ledger_service.void_booking(db, booking_id, reason, refund_required, actor_id=actor_id, gateway=gateway)


def get_booking(db: Session, booking_id: str) -> Booking:
    b = db.get(Booking, booking_id)
    if not b:
        raise BookingNotFound("Booking not found", booking_id=booking_id)
    return b


@with_store_retry
def list_for_user(db: Session, user_id: str, limit: int = 100) -> list[Booking]:
    q = select(Booking).where(Booking.user_id == user_id) \
        .order_by(Booking.date_str.desc(), Booking.start.desc()).limit(min(max(limit, 1), 500))
    return list(db.execute(q).scalars())


@with_store_retry
def list_bookings(db: Session, date_str: str | None = None, court_id: int | None = None,
                  status: str | None = None, limit: int = 200) -> list[Booking]:
    q = select(Booking)
    if date_str:
        q = q.where(Booking.date_str == date_str)
    if court_id is not None:
        q = q.where(Booking.court_id == court_id)
    if status:
        q = q.where(Booking.status == status)
    q = q.order_by(Booking.date_str.asc(), Booking.court_id.asc(), Booking.start.asc()).limit(min(max(limit, 1), 1000))
    return list(db.execute(q).scalars())


def expire_pending_holds(db: Session, now_utc: datetime | None = None) -> int:
    """Cancel Pending bookings whose payment hold ran out. Rows being paid right now are skipped."""
    now_utc = now_utc or datetime.now(timezone.utc)
    rows = db.execute(
        select(Booking)
        .where(Booking.status == PENDING, Booking.hold_expires_at.is_not(None), Booking.hold_expires_at < now_utc)
        .with_for_update(skip_locked=True)
    ).scalars().all()
    events = []
    for b in rows:
        b.status = CANCELLED
        b.hold_expires_at = None
        log_audit(db, "system", "booking.hold_expired", "booking", b.id, {})
        events.append(ChangeEvent(b.court_id, b.date_str, UPDATE, b.id))
    db.commit()
    if events:
        logger.info("expired %d pending holds", len(events))
        publish_changes(events)
    return len(events)
