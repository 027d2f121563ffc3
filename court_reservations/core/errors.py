"""
Booking error taxonomy.

Services raise these; the API layer maps them to HTTP responses in one place
(see ``booking_error_handler``) so routes stay thin and every failure reaching a
caller is one of the named kinds below.
"""
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class BookingError(Exception):
    """Base class for every error a booking operation can report."""

    code = "booking_error"
    status_code = 400

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        out = {"error": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class SlotUnavailable(BookingError):
    """Slot already blocked, in the past, not offered, or the court is not bookable.

    Recoverable: re-fetch availability and prompt again.
    """

    code = "slot_unavailable"
    status_code = 409


class InvalidTransition(BookingError):
    code = "invalid_transition"
    status_code = 409


class AlreadyValidated(BookingError):
    code = "already_validated"
    status_code = 409


class NotValidatable(BookingError):
    code = "not_validatable"
    status_code = 409


class PartialVoidFailure(BookingError):
    """The void is committed (status, void record, ledger) but the provider refund failed.

    Must be reconciled with ``settle_refund``, which is idempotent per booking.
    """

    code = "partial_void_failure"
    status_code = 502


class StoreUnavailable(BookingError):
    """Transport failure reaching the store or the change feed; data is unknown."""

    code = "store_unavailable"
    status_code = 503


class PaymentDeclined(BookingError):
    code = "payment_declined"
    status_code = 402


class BookingNotFound(BookingError):
    code = "booking_not_found"
    status_code = 404


class CourtNotFound(BookingError):
    code = "court_not_found"
    status_code = 404


class InvalidRequest(BookingError):
    code = "invalid_request"
    status_code = 400


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
