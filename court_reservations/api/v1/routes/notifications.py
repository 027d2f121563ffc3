from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from court_reservations.api.deps import Principal, get_current_principal
from court_reservations.db.session import get_db
from court_reservations.schemas.ledger import NotificationOut
from court_reservations.services.notification_service import list_for_user, mark_read

router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=list[NotificationOut])
def my_notifications(unread_only: bool = False, limit: int = 50, db: Session = Depends(get_db),
                     me: Principal = Depends(get_current_principal)):
    return [
        NotificationOut(id=n.id, title=n.title, message=n.message, read=n.read, createdAt=n.created_at.isoformat())
        for n in list_for_user(db, me.id, unread_only=unread_only, limit=limit)
    ]


@router.post("/notifications/{notification_id}/read")
def read_notification(notification_id: str, db: Session = Depends(get_db),
                      me: Principal = Depends(get_current_principal)):
    if not mark_read(db, me.id, notification_id):
        raise HTTPException(status_code=404, detail="Not found")
    return {"ok": True}
