from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from court_reservations.api.deps import Principal, get_current_principal, require_roles
from court_reservations.core.errors import BookingNotFound
from court_reservations.core.security import ROLE_CLIENT, ROLE_STAFF, ROLE_ADMIN
from court_reservations.db.session import get_db
from court_reservations.schemas.booking import BookingCreate, BookingOut, PayerIn
from court_reservations.services import booking_service
from court_reservations.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter(tags=["bookings"])


def _owned(db: Session, booking_id: str, me: Principal):
    b = booking_service.get_booking(db, booking_id)
    if b.user_id != me.id and not me.is_staff:
        # don't reveal other people's bookings
        raise BookingNotFound("Booking not found", booking_id=booking_id)
    return b


@router.post("/bookings", response_model=BookingOut)
def create_booking(body: BookingCreate, db: Session = Depends(get_db),
                   me: Principal = Depends(require_roles(ROLE_CLIENT, ROLE_STAFF, ROLE_ADMIN))):
    """Reserve a slot. The booking is held as Pending until paid or the hold runs out."""
    b = booking_service.create_booking(db, body.courtId, body.dateStr, body.start, me.id)
    return BookingOut.from_model(b)


@router.post("/bookings/{booking_id}/pay", response_model=BookingOut)
def pay_booking(booking_id: str, body: PayerIn, db: Session = Depends(get_db),
                me: Principal = Depends(get_current_principal),
                gateway: PaymentGateway = Depends(get_payment_gateway)):
    _owned(db, booking_id, me)
    b = booking_service.confirm_payment(db, booking_id, body.model_dump(), gateway=gateway)
    return BookingOut.from_model(b)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(booking_id: str, db: Session = Depends(get_db),
                   me: Principal = Depends(get_current_principal)):
    _owned(db, booking_id, me)
    return BookingOut.from_model(booking_service.cancel_booking(db, booking_id, actor_id=me.id))


@router.get("/bookings/mine", response_model=list[BookingOut])
def my_bookings(limit: int = 100, db: Session = Depends(get_db),
                me: Principal = Depends(get_current_principal)):
    return [BookingOut.from_model(b) for b in booking_service.list_for_user(db, me.id, limit=limit)]


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: str, db: Session = Depends(get_db),
                me: Principal = Depends(get_current_principal)):
    return BookingOut.from_model(_owned(db, booking_id, me))
