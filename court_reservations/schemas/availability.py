from pydantic import BaseModel

class TimeSlot(BaseModel):
    start: str  # HH:MM
    end: str    # HH:MM
    available: bool = True

class AvailabilityOut(BaseModel):
    courtId: int
    dateStr: str
    slots: list[TimeSlot]
