from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from court_reservations.api.deps import Principal, require_roles
from court_reservations.core.security import ROLE_STAFF, ROLE_ADMIN
from court_reservations.db.session import get_db
from court_reservations.schemas.court import CourtIn, CourtOut, CourtPatch
from court_reservations.services import court_service

router = APIRouter(tags=["courts"])

staff_only = require_roles(ROLE_STAFF, ROLE_ADMIN)


@router.get("/staff/courts", response_model=list[CourtOut])
def list_courts(db: Session = Depends(get_db), me: Principal = Depends(staff_only)):
    return [CourtOut.from_model(c) for c in court_service.list_all_courts(db)]


@router.post("/staff/courts", response_model=CourtOut)
def create_court(body: CourtIn, db: Session = Depends(get_db), me: Principal = Depends(staff_only)):
    c = court_service.create_court(db, name=body.name, court_type=body.courtType, location=body.location,
                                   hourly_price=body.hourlyPrice, state=body.state, actor_id=me.id)
    return CourtOut.from_model(c)


@router.get("/staff/courts/{court_id}", response_model=CourtOut)
def get_court(court_id: int, db: Session = Depends(get_db), me: Principal = Depends(staff_only)):
    return CourtOut.from_model(court_service.get_court(db, court_id))


@router.patch("/staff/courts/{court_id}", response_model=CourtOut)
def update_court(court_id: int, body: CourtPatch, db: Session = Depends(get_db),
                 me: Principal = Depends(staff_only)):
    changes = {
        "name": body.name,
        "court_type": body.courtType,
        "location": body.location,
        "hourly_price": body.hourlyPrice,
        "state": body.state,
    }
    return CourtOut.from_model(court_service.update_court(db, court_id, changes, actor_id=me.id))


@router.delete("/staff/courts/{court_id}")
def delete_court(court_id: int, db: Session = Depends(get_db), me: Principal = Depends(staff_only)):
    court_service.delete_court(db, court_id, actor_id=me.id)
    return {"ok": True}
