from pydantic import BaseModel, Field
from typing import Optional

class CourtIn(BaseModel):
    name: str = Field(min_length=1)
    courtType: str = ""
    location: str = ""
    hourlyPrice: int = Field(gt=0)
    state: str = "Active"

class CourtPatch(BaseModel):
    name: Optional[str] = None
    courtType: Optional[str] = None
    location: Optional[str] = None
    hourlyPrice: Optional[int] = Field(default=None, gt=0)
    state: Optional[str] = None

class CourtOut(BaseModel):
    id: int
    name: str
    courtType: str
    location: str
    hourlyPrice: int
    state: str

    @classmethod
    def from_model(cls, c) -> "CourtOut":
        return cls(id=c.id, name=c.name, courtType=c.court_type or "", location=c.location or "",
                   hourlyPrice=c.hourly_price, state=c.state)
