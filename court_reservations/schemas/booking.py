from pydantic import BaseModel, Field
from typing import Optional

class BookingCreate(BaseModel):
    courtId: int
    dateStr: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    start: str = Field(pattern=r"^\d{2}:\d{2}$")

class CashBookingCreate(BookingCreate):
    clientId: str  # requester the booking is made on behalf of

class PayerIn(BaseModel):
    name: str = ""
    email: str = ""  # plain str to allow .local and other dev domains
    documentNumber: str = ""
    paymentToken: str = ""  # tokenized card from the gateway's browser SDK

class BookingEditIn(BaseModel):
    status: Optional[str] = None
    courtId: Optional[int] = None
    dateStr: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    start: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")

class VoidIn(BaseModel):
    reason: str
    refundRequired: bool = False

class ScanIn(BaseModel):
    scanned: str  # raw QR payload (JSON) or a typed booking code

class BookingOut(BaseModel):
    id: str
    bookingCode: str
    userId: str
    courtId: int
    dateStr: str
    start: str
    end: str
    status: str
    createdByRole: str
    holdExpiresAt: Optional[str] = None
    qrObjectKey: Optional[str] = None

    @classmethod
    def from_model(cls, b) -> "BookingOut":
        return cls(
            id=b.id,
            bookingCode=b.booking_code,
            userId=b.user_id,
            courtId=b.court_id,
            dateStr=b.date_str,
            start=b.start,
            end=b.end,
            status=b.status,
            createdByRole=b.created_by_role,
            holdExpiresAt=b.hold_expires_at.isoformat() if b.hold_expires_at else None,
            qrObjectKey=b.qr_object_key,
        )

class ScanOut(BaseModel):
    booking: BookingOut
    canValidate: bool
    validationMessage: Optional[str] = None
