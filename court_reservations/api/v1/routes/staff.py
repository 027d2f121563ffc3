from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from court_reservations.api.deps import Principal, require_roles
from court_reservations.core.security import ROLE_STAFF, ROLE_ADMIN
from court_reservations.db.session import get_db
from court_reservations.schemas.booking import (
    BookingEditIn, BookingOut, CashBookingCreate, ScanIn, ScanOut, VoidIn,
)
from court_reservations.schemas.ledger import VoidOut
from court_reservations.services import booking_service, ledger_service
from court_reservations.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter(tags=["staff"])

staff_only = require_roles(ROLE_STAFF, ROLE_ADMIN)


def _void_out(booking_id: str, status: str, vr) -> VoidOut:
    return VoidOut(bookingId=booking_id, status=status, refundRequired=vr.refund_required,
                   refundAmount=vr.refund_amount, refundStatus=vr.refund_status)


@router.post("/staff/bookings/cash", response_model=BookingOut)
def create_cash_booking(body: CashBookingCreate, db: Session = Depends(get_db),
                        me: Principal = Depends(staff_only)):
    """Desk booking paid in cash; confirmed immediately."""
    b = booking_service.create_cash_booking(db, body.courtId, body.dateStr, body.start, body.clientId, me.id)
    return BookingOut.from_model(b)


@router.get("/staff/bookings", response_model=list[BookingOut])
def list_bookings(date: Optional[str] = None, court_id: Optional[int] = None, status: Optional[str] = None,
                  limit: int = 200, db: Session = Depends(get_db), me: Principal = Depends(staff_only)):
    items = booking_service.list_bookings(db, date_str=date, court_id=court_id, status=status, limit=limit)
    return [BookingOut.from_model(b) for b in items]


@router.patch("/staff/bookings/{booking_id}", response_model=BookingOut)
def edit_booking(booking_id: str, body: BookingEditIn, db: Session = Depends(get_db),
                 me: Principal = Depends(staff_only)):
    edit = booking_service.BookingEdit(status=body.status, court_id=body.courtId,
                                       date_str=body.dateStr, start=body.start)
    return BookingOut.from_model(booking_service.edit_booking(db, booking_id, edit, actor_id=me.id))


@router.post("/staff/bookings/{booking_id}/void", response_model=VoidOut)
def void_booking(booking_id: str, body: VoidIn, db: Session = Depends(get_db),
                 me: Principal = Depends(staff_only),
                 gateway: PaymentGateway = Depends(get_payment_gateway)):
    vr = booking_service.void_booking(db, booking_id, body.reason, body.refundRequired,
                                      actor_id=me.id, gateway=gateway)
    return _void_out(booking_id, "Voided", vr)


@router.post("/staff/bookings/{booking_id}/settle-refund", response_model=VoidOut)
def settle_refund(booking_id: str, db: Session = Depends(get_db),
                  me: Principal = Depends(staff_only),
                  gateway: PaymentGateway = Depends(get_payment_gateway)):
    vr = ledger_service.settle_refund(db, booking_id, gateway=gateway)
    return _void_out(booking_id, "Voided", vr)


@router.post("/staff/validations/lookup", response_model=ScanOut)
def lookup_scan(body: ScanIn, db: Session = Depends(get_db), me: Principal = Depends(staff_only)):
    """Resolve a scanned QR payload or typed code before validating."""
    b, message = booking_service.lookup_by_code(db, body.scanned)
    return ScanOut(booking=BookingOut.from_model(b), canValidate=message is None, validationMessage=message)


@router.post("/staff/validations/{booking_ref}", response_model=BookingOut)
def validate_booking(booking_ref: str, db: Session = Depends(get_db), me: Principal = Depends(staff_only)):
    return BookingOut.from_model(booking_service.validate_booking(db, booking_ref, staff_id=me.id))
