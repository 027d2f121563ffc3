import json

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from court_reservations.core.errors import StoreUnavailable
from court_reservations.db.session import SessionLocal, get_db
from court_reservations.schemas.availability import AvailabilityOut
from court_reservations.schemas.court import CourtOut
from court_reservations.services.availability_service import compute_availability
from court_reservations.services.availability_watch import AvailabilityWatcher
from court_reservations.services.change_feed import get_change_feed
from court_reservations.services.court_service import get_court, list_active_courts

router = APIRouter(tags=["public"])

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def get_availability_watcher() -> AvailabilityWatcher:
    return AvailabilityWatcher(get_change_feed())


@router.get("/public/courts", response_model=list[CourtOut])
def list_courts(db: Session = Depends(get_db)):
    """Courts currently open for booking."""
    return list_active_courts(db)


@router.get("/public/courts/{court_id}/availability", response_model=AvailabilityOut)
def get_availability(court_id: int, date: str = Query(pattern=DATE_PATTERN), db: Session = Depends(get_db)):
    get_court(db, court_id)
    return AvailabilityOut(courtId=court_id, dateStr=date, slots=compute_availability(db, court_id, date))


async def _sse(watcher: AvailabilityWatcher, court_id: int, date_str: str):
    stream = watcher.stream(court_id, date_str)
    try:
        async for slots in stream:
            body = AvailabilityOut(courtId=court_id, dateStr=date_str, slots=slots)
            yield f"data: {body.model_dump_json()}\n\n"
    except StoreUnavailable as e:
        yield f"event: error\ndata: {json.dumps(e.to_dict())}\n\n"
    finally:
        await stream.aclose()


@router.get("/public/courts/{court_id}/availability/stream")
def stream_availability(court_id: int, date: str = Query(pattern=DATE_PATTERN),
                        watcher: AvailabilityWatcher = Depends(get_availability_watcher)):
    """Live slot list for one court and day as server-sent events: a snapshot now, another after every change."""
    # short-lived session: a request-scoped one would stay checked out for the life of the stream
    with SessionLocal() as db:
        get_court(db, court_id)
    return StreamingResponse(
        _sse(watcher, court_id, date),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
