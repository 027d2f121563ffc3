"""Tests for voids, refunds and the revenue ledger."""

import pytest
from sqlalchemy import select

from court_reservations.core.clock import ledger_period
from court_reservations.core.errors import InvalidRequest, InvalidTransition, PartialVoidFailure
from court_reservations.models.booking import Booking
from court_reservations.models.payment import Payment
from court_reservations.models.revenue_entry import RevenueEntry
from court_reservations.models.void_record import VoidRecord
from court_reservations.services import booking_service, ledger_service
from court_reservations.services.availability_service import compute_availability
from court_reservations.services.payment_gateway import GatewayError

DAY = "2024-06-10"


@pytest.fixture()
def paid(db, court, frozen_now, gateway) -> Booking:
    b = booking_service.create_booking(db, court.id, DAY, "18:00", "client-a")
    return booking_service.confirm_payment(db, b.id, {"name": "Ana"}, gateway=gateway)


def _entries(db, booking_id):
    return db.execute(
        select(RevenueEntry).where(RevenueEntry.booking_id == booking_id).order_by(RevenueEntry.count_delta.desc())
    ).scalars().all()


class TestVoid:
    def test_void_with_refund(self, db, court, paid, gateway):
        record = ledger_service.void_booking(db, paid.id, "client cancelled", True, actor_id="staff-1", gateway=gateway)
        db.refresh(paid)
        assert paid.status == "Voided"
        assert record.refund_amount == 30000
        assert record.refund_status == "refunded"
        assert record.refund_ref == "rfd-1"
        assert gateway.refunds == [{"transaction_ref": "txn-1", "amount": 30000,
                                    "client_ref": f"refund-{paid.booking_code}"}]
        sale, void = _entries(db, paid.id)
        assert (void.count_delta, void.amount_delta, void.idempotency_key) == (-1, -30000, f"void:{paid.id}")
        payment = db.execute(select(Payment).where(Payment.booking_id == paid.id)).scalar_one()
        assert payment.status == "reversed"
        assert "18:00" not in [s.start for s in compute_availability(db, court.id, DAY) if not s.available]

    def test_void_without_refund_leaves_ledger_alone(self, db, paid, gateway):
        record = ledger_service.void_booking(db, paid.id, "no show", False, gateway=gateway)
        assert record.refund_status == "not_required"
        assert record.refund_amount is None
        assert len(_entries(db, paid.id)) == 1
        assert gateway.refunds == []

    def test_refund_amount_is_what_was_charged(self, db, court, paid, gateway):
        court.hourly_price = 99999
        db.commit()
        record = ledger_service.void_booking(db, paid.id, "price changed", True, gateway=gateway)
        assert record.refund_amount == 30000

    def test_second_void_fails_and_changes_nothing(self, db, paid, gateway):
        ledger_service.void_booking(db, paid.id, "client cancelled", True, gateway=gateway)
        with pytest.raises(InvalidTransition):
            ledger_service.void_booking(db, paid.id, "again", True, gateway=gateway)
        assert len(db.execute(select(VoidRecord)).scalars().all()) == 1
        assert [e.amount_delta for e in _entries(db, paid.id)] == [30000, -30000]
        assert len(gateway.refunds) == 1

    def test_reason_required(self, db, paid, gateway):
        with pytest.raises(InvalidRequest):
            ledger_service.void_booking(db, paid.id, "   ", False, gateway=gateway)
        db.refresh(paid)
        assert paid.status == "Confirmed"

    def test_realized_cannot_be_voided(self, db, paid, gateway):
        booking_service.validate_booking(db, paid.id, "staff-1")
        with pytest.raises(InvalidTransition):
            ledger_service.void_booking(db, paid.id, "too late", False, gateway=gateway)

    def test_refund_needs_a_payment(self, db, court, frozen_now, gateway):
        b = booking_service.create_booking(db, court.id, DAY, "19:00", "client-a")
        with pytest.raises(InvalidRequest):
            ledger_service.void_booking(db, b.id, "mistake", True, gateway=gateway)
        db.refresh(b)
        assert b.status == "Pending"

    def test_pending_can_be_voided_without_refund(self, db, court, frozen_now, gateway):
        b = booking_service.create_booking(db, court.id, DAY, "19:00", "client-a")
        record = ledger_service.void_booking(db, b.id, "duplicate", False, gateway=gateway)
        assert record.refund_status == "not_required"

    def test_cash_refund_is_manual(self, db, court, frozen_now, gateway):
        b = booking_service.create_cash_booking(db, court.id, DAY, "20:00", "client-a", "staff-1")
        record = ledger_service.void_booking(db, b.id, "rain", True, gateway=gateway)
        assert record.refund_status == "manual"
        assert gateway.refunds == []
        assert [e.amount_delta for e in _entries(db, b.id)] == [30000, -30000]


class TestProviderRefundFailure:
    def test_void_stands_when_refund_fails(self, db, paid, gateway):
        gateway.refund_error = GatewayError("timeout")
        with pytest.raises(PartialVoidFailure) as exc:
            ledger_service.void_booking(db, paid.id, "client cancelled", True, gateway=gateway)
        assert exc.value.details["booking_id"] == paid.id
        db.refresh(paid)
        assert paid.status == "Voided"
        record = ledger_service.get_void_record(db, paid.id)
        assert record.refund_status == "failed"
        assert len(_entries(db, paid.id)) == 2

    def test_rejected_refund_is_a_partial_failure(self, db, paid, gateway):
        gateway.approve_refunds = False
        with pytest.raises(PartialVoidFailure):
            ledger_service.void_booking(db, paid.id, "client cancelled", True, gateway=gateway)

    def test_settle_refund_completes_once(self, db, paid, gateway):
        gateway.refund_error = GatewayError("timeout")
        with pytest.raises(PartialVoidFailure):
            ledger_service.void_booking(db, paid.id, "client cancelled", True, gateway=gateway)
        gateway.refund_error = None

        record = ledger_service.settle_refund(db, paid.id, gateway=gateway)
        assert record.refund_status == "refunded"
        again = ledger_service.settle_refund(db, paid.id, gateway=gateway)
        assert again.refund_status == "refunded"
        # one failed attempt, one success; the settled refund is not repeated
        assert len(gateway.refunds) == 2
        assert len({r["client_ref"] for r in gateway.refunds}) == 1
        assert len(_entries(db, paid.id)) == 2

    def test_unsettled_refunds_listed(self, db, paid, gateway):
        gateway.refund_error = GatewayError("timeout")
        with pytest.raises(PartialVoidFailure):
            ledger_service.void_booking(db, paid.id, "client cancelled", True, gateway=gateway)
        assert ledger_service.unsettled_refunds(db) == [paid.id]


class TestPeriodTotal:
    def test_fold_of_sales_and_voids(self, db, court, frozen_now, gateway):
        keep = booking_service.create_cash_booking(db, court.id, DAY, "16:00", "client-a", "staff-1")
        gone = booking_service.create_cash_booking(db, court.id, DAY, "17:00", "client-b", "staff-1")
        ledger_service.void_booking(db, gone.id, "rain", True, gateway=gateway)
        total = ledger_service.period_total(db, ledger_period())
        assert total["bookings"] == 1
        assert total["amount"] == 30000
        assert keep.status == "Confirmed"

    def test_empty_period(self, db):
        assert ledger_service.period_total(db, "1999-01") == {"period": "1999-01", "bookings": 0, "amount": 0}
