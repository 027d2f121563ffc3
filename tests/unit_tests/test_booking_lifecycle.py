"""Tests for the booking lifecycle: create, pay, cancel, edit, validate, expire."""

import json
import string
import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from court_reservations.core.errors import (
    AlreadyValidated, CourtNotFound, InvalidRequest, InvalidTransition, NotValidatable,
    PaymentDeclined, SlotUnavailable, StoreUnavailable,
)
from court_reservations.db.session import SessionLocal, with_store_retry
from court_reservations.models.booking import Booking, LEGAL_TRANSITIONS
from court_reservations.models.notification import Notification
from court_reservations.models.payment import Payment
from court_reservations.models.revenue_entry import RevenueEntry
from court_reservations.services import availability_service, booking_service
from court_reservations.services.availability_service import compute_availability
from court_reservations.services.booking_service import BookingEdit
from court_reservations.services.payment_gateway import GatewayError

DAY = "2024-06-10"


def _confirmed(db, court, start="18:00", user="client-a", gateway=None):
    b = booking_service.create_booking(db, court.id, DAY, start, user)
    return booking_service.confirm_payment(db, b.id, {"name": "Ana"}, gateway=gateway)


class TestCreate:
    def test_pending_hold_with_code_and_qr(self, db, court, frozen_now):
        b = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        assert b.status == "Pending"
        assert b.end == "19:00"
        assert len(b.booking_code) == 6
        assert all(ch in string.ascii_uppercase + string.digits for ch in b.booking_code)
        assert b.hold_expires_at is not None
        assert b.qr_storage == "local"
        with open(b.qr_object_key, "rb") as f:
            assert b"<svg" in f.read()

    def test_late_slot_ends_at_midnight(self, db, court, frozen_now):
        assert booking_service.create_booking(db, court.id, DAY, "23:00", "client-a").end == "00:00"

    def test_taken_slot_rejected(self, db, court, frozen_now):
        booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        with pytest.raises(SlotUnavailable):
            booking_service.create_booking(db, court.id, DAY, "18:00", "client-b")

    def test_unique_index_decides_when_precheck_is_stale(self, db, court, frozen_now, monkeypatch):
        # both callers saw the slot open; only one insert can win
        monkeypatch.setattr(booking_service, "is_slot_open", lambda *a, **k: True)
        booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        with pytest.raises(SlotUnavailable):
            booking_service.create_booking(db, court.id, DAY, "18:00", "client-b")
        rows = db.execute(select(Booking).where(Booking.start == "18:00")).scalars().all()
        assert len(rows) == 1

    def test_code_collision_on_insert_is_retried(self, db, court, frozen_now, monkeypatch):
        first = booking_service.create_booking(db, court.id, DAY, "17:00", "client-a")
        codes = iter([first.booking_code, "ZZZ999"])
        monkeypatch.setattr(booking_service, "_code_taken", lambda db, code: False)
        monkeypatch.setattr(booking_service, "make_booking_code", lambda: next(codes))
        second = booking_service.create_booking(db, court.id, DAY, "18:00", "client-b")
        assert second.booking_code == "ZZZ999"

    def test_past_slot_rejected(self, db, court, monkeypatch):
        monkeypatch.setattr("court_reservations.services.availability_service.venue_now",
                            lambda: datetime(2024, 6, 10, 19, 0))
        monkeypatch.setattr(booking_service, "venue_now", lambda: datetime(2024, 6, 10, 19, 0))
        with pytest.raises(SlotUnavailable):
            booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")

    def test_concurrent_creates_for_one_slot(self, court, frozen_now):
        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(user):
            session = SessionLocal()
            try:
                barrier.wait()
                booking_service.create_booking(session, court.id, DAY, "18:00", user)
                outcomes.append("booked")
            except SlotUnavailable:
                outcomes.append("taken")
            finally:
                session.close()

        threads = [threading.Thread(target=attempt, args=(user,)) for user in ("client-a", "client-b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["booked", "taken"]
        with SessionLocal() as session:
            rows = session.execute(select(Booking).where(Booking.start == "18:00")).scalars().all()
        assert len(rows) == 1

    def test_losing_insert_writes_no_qr(self, db, court, frozen_now, monkeypatch):
        monkeypatch.setattr(booking_service, "is_slot_open", lambda *a, **k: True)
        booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        written = []
        monkeypatch.setattr(booking_service, "encode_qr",
                            lambda payload, code: written.append(code) or ("local", f"qr_{code}.svg"))
        with pytest.raises(SlotUnavailable):
            booking_service.create_booking(db, court.id, DAY, "18:00", "client-b")
        assert written == []

    def test_code_allocation_exhausted(self, db, court, frozen_now, monkeypatch):
        monkeypatch.setattr(booking_service, "_code_taken", lambda db, code: True)
        with pytest.raises(StoreUnavailable):
            booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")

    def test_insert_collisions_exhausted(self, db, court, frozen_now, monkeypatch):
        first = booking_service.create_booking(db, court.id, DAY, "17:00", "client-a")
        taken = first.booking_code
        monkeypatch.setattr(booking_service, "_code_taken", lambda db, code: False)
        monkeypatch.setattr(booking_service, "make_booking_code", lambda: taken)
        with pytest.raises(StoreUnavailable):
            booking_service.create_booking(db, court.id, DAY, "18:00", "client-b")

    def test_earlier_date_rejected(self, db, court, frozen_now):
        with pytest.raises(SlotUnavailable):
            booking_service.create_booking(db, court.id, "2024-06-09", "18:00", "client-a")
        with pytest.raises(SlotUnavailable):
            booking_service.create_cash_booking(db, court.id, "2024-06-09", "18:00", "client-a", "staff-1")
        assert db.execute(select(Booking)).first() is None

    def test_slot_outside_catalogue_rejected(self, db, court, frozen_now):
        with pytest.raises(SlotUnavailable):
            booking_service.create_booking(db, court.id, DAY, "10:00", "client-a")

    def test_inactive_court_rejected(self, db, court, frozen_now):
        court.state = "UnderMaintenance"
        db.commit()
        with pytest.raises(SlotUnavailable):
            booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")

    def test_unknown_court(self, db, frozen_now):
        with pytest.raises(CourtNotFound):
            booking_service.create_booking(db, 999, DAY, "18:00", "client-a")

    def test_cannot_create_terminal(self, db, court, frozen_now):
        with pytest.raises(InvalidRequest):
            booking_service.create_booking(db, court.id, DAY, "18:00", "client-a", status="Realized")

    def test_cash_booking_is_confirmed_and_booked_as_revenue(self, db, court, frozen_now):
        b = booking_service.create_cash_booking(db, court.id, DAY, "20:00", "client-a", "staff-1")
        assert b.status == "Confirmed"
        assert b.created_by_role == "STAFF"
        assert b.hold_expires_at is None
        payment = db.execute(select(Payment).where(Payment.booking_id == b.id)).scalar_one()
        assert (payment.method, payment.status, payment.amount) == ("cash", "processed", 30000)
        entry = db.execute(select(RevenueEntry).where(RevenueEntry.booking_id == b.id)).scalar_one()
        assert (entry.count_delta, entry.amount_delta, entry.idempotency_key) == (1, 30000, f"sale:{b.id}")


class TestPayment:
    def test_approved_payment_confirms(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        assert b.status == "Confirmed"
        assert b.hold_expires_at is None
        assert gateway.charges[0]["amount"] == 30000
        assert gateway.charges[0]["client_ref"] == f"booking-{b.booking_code}"
        entry = db.execute(select(RevenueEntry).where(RevenueEntry.booking_id == b.id)).scalar_one()
        assert entry.amount_delta == 30000
        notes = db.execute(select(Notification).where(Notification.user_id == "client-a")).scalars().all()
        assert [n.title for n in notes] == ["Booking confirmed"]

    def test_declined_payment_cancels_and_frees_slot(self, db, court, frozen_now, gateway):
        gateway.approve_charges = False
        b = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        with pytest.raises(PaymentDeclined):
            booking_service.confirm_payment(db, b.id, {}, gateway=gateway)
        db.refresh(b)
        assert b.status == "Cancelled"
        assert db.execute(select(Payment).where(Payment.booking_id == b.id)).scalar_one().status == "failed"
        assert db.execute(select(RevenueEntry)).scalars().all() == []
        assert "18:00" not in [s.start for s in compute_availability(db, court.id, DAY) if not s.available]

    def test_unreachable_gateway_keeps_hold(self, db, court, frozen_now, gateway):
        gateway.charge_error = GatewayError("connection refused")
        b = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        with pytest.raises(PaymentDeclined):
            booking_service.confirm_payment(db, b.id, {}, gateway=gateway)
        db.refresh(b)
        assert b.status == "Pending"

    def test_expired_hold_cannot_be_paid(self, db, court, frozen_now, gateway):
        b = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        b.hold_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.commit()
        with pytest.raises(InvalidTransition):
            booking_service.confirm_payment(db, b.id, {}, gateway=gateway)
        db.refresh(b)
        assert b.status == "Cancelled"
        assert gateway.charges == []

    def test_paying_twice_fails(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        with pytest.raises(InvalidTransition):
            booking_service.confirm_payment(db, b.id, {}, gateway=gateway)


class TestCancelAndExpire:
    def test_client_cancels_pending(self, db, court, frozen_now):
        b = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        assert booking_service.cancel_booking(db, b.id, "client-a").status == "Cancelled"

    def test_confirmed_cannot_be_cancelled(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        with pytest.raises(InvalidTransition):
            booking_service.cancel_booking(db, b.id, "client-a")

    def test_expired_holds_are_cancelled(self, db, court, frozen_now):
        stale = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        fresh = booking_service.create_booking(db, court.id, DAY, "19:00", "client-b")
        stale.hold_expires_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        db.commit()
        assert booking_service.expire_pending_holds(db) == 1
        db.refresh(stale)
        db.refresh(fresh)
        assert stale.status == "Cancelled"
        assert fresh.status == "Pending"
        taken = [s.start for s in compute_availability(db, court.id, DAY) if not s.available]
        assert taken == ["19:00"]


class TestEdit:
    def test_move_recomputes_end(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        moved = booking_service.edit_booking(db, b.id, BookingEdit(start="23:00"), "staff-1")
        assert (moved.start, moved.end) == ("23:00", "00:00")
        with open(moved.qr_object_key, "rb") as f:
            assert b"<svg" in f.read()

    def test_move_onto_own_slot_is_a_noop(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        same = booking_service.edit_booking(db, b.id, BookingEdit(start="18:00"), "staff-1")
        assert same.start == "18:00"

    def test_move_onto_taken_slot(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        _confirmed(db, court, start="20:00", user="client-b", gateway=gateway)
        with pytest.raises(SlotUnavailable):
            booking_service.edit_booking(db, b.id, BookingEdit(start="20:00"), "staff-1")

    def test_move_into_the_past_rejected(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        with pytest.raises(SlotUnavailable):
            booking_service.edit_booking(db, b.id, BookingEdit(date_str="2024-06-01"), "staff-1")
        db.rollback()
        db.refresh(b)
        assert (b.date_str, b.start) == (DAY, "18:00")

    def test_store_failure_under_lock_is_not_retried(self, db, court, frozen_now, gateway, monkeypatch):
        b = _confirmed(db, court, gateway=gateway)
        calls = []

        @with_store_retry
        def broken(db, *args, **kwargs):
            calls.append(1)
            raise OperationalError("SELECT", {}, Exception("connection reset"))

        monkeypatch.setattr(availability_service, "find_blocking_bookings", broken)
        rollbacks = []
        monkeypatch.setattr(db, "rollback", lambda: rollbacks.append(1))
        with pytest.raises(StoreUnavailable):
            booking_service.edit_booking(db, b.id, BookingEdit(start="20:00"), "staff-1")
        # one attempt and no rollback: the row lock is still held when the error surfaces
        assert calls == [1]
        assert rollbacks == []

    def test_illegal_status_edge(self, db, court, frozen_now):
        b = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        with pytest.raises(InvalidTransition):
            booking_service.edit_booking(db, b.id, BookingEdit(status="Realized"), "staff-1")

    def test_void_needs_the_void_operation(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        with pytest.raises(InvalidTransition):
            booking_service.edit_booking(db, b.id, BookingEdit(status="Voided"), "staff-1")

    @pytest.mark.parametrize("terminal", ["Realized", "Voided", "Cancelled"])
    def test_terminal_bookings_are_frozen(self, db, court, frozen_now, terminal):
        b = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        b.status = terminal
        db.commit()
        with pytest.raises(InvalidTransition):
            booking_service.edit_booking(db, b.id, BookingEdit(start="19:00"), "staff-1")
        db.refresh(b)
        assert (b.status, b.start) == (terminal, "18:00")

    def test_transition_table(self):
        assert LEGAL_TRANSITIONS["Pending"] == {"Confirmed", "Cancelled", "Voided"}
        assert LEGAL_TRANSITIONS["Confirmed"] == {"Realized", "Voided"}
        for terminal in ("Realized", "Voided", "Cancelled"):
            assert LEGAL_TRANSITIONS[terminal] == set()


class TestValidate:
    def test_confirmed_becomes_realized(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        done = booking_service.validate_booking(db, b.booking_code.lower(), "staff-1")
        assert done.status == "Realized"
        titles = [n.title for n in db.execute(select(Notification)).scalars()]
        assert "Booking validated" in titles

    def test_second_validation_fails(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        booking_service.validate_booking(db, b.id, "staff-1")
        with pytest.raises(AlreadyValidated):
            booking_service.validate_booking(db, b.id, "staff-1")

    @pytest.mark.parametrize("status", ["Pending", "Cancelled", "Voided"])
    def test_not_validatable(self, db, court, frozen_now, status):
        b = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
        b.status = status
        db.commit()
        with pytest.raises(NotValidatable):
            booking_service.validate_booking(db, b.id, "staff-1")

    def test_lookup_from_qr_payload(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        scanned = json.dumps({"code": b.booking_code, "userId": "client-a", "courtId": court.id,
                              "date": DAY, "time": "18:00"})
        found, message = booking_service.lookup_by_code(db, scanned)
        assert found.id == b.id
        assert message is None

    def test_lookup_reports_why_not(self, db, court, frozen_now, gateway):
        b = _confirmed(db, court, gateway=gateway)
        booking_service.validate_booking(db, b.id, "staff-1")
        _, message = booking_service.lookup_by_code(db, b.booking_code)
        assert message == "This booking was already validated"

    def test_garbage_scan(self, db):
        with pytest.raises(InvalidRequest):
            booking_service.lookup_by_code(db, "{not json")
