from pydantic import BaseModel
from typing import Optional

class RevenueTotalOut(BaseModel):
    period: str
    bookings: int
    amount: int

class VoidOut(BaseModel):
    bookingId: str
    status: str
    refundRequired: bool
    refundAmount: Optional[int] = None
    refundStatus: str

class NotificationOut(BaseModel):
    id: str
    title: str
    message: str
    read: bool
    createdAt: str
