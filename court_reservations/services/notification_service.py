import uuid
from sqlalchemy import select
from sqlalchemy.orm import Session
from court_reservations.models.notification import Notification

def notify(db: Session, user_id: str, title: str, message: str) -> None:
    db.add(Notification(id=str(uuid.uuid4()), user_id=user_id, title=title, message=message, read=False))

def list_for_user(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        q = q.where(Notification.read == False)  # noqa: E712
    q = q.order_by(Notification.created_at.desc()).limit(min(max(limit, 1), 200))
    return list(db.execute(q).scalars())

def mark_read(db: Session, user_id: str, notification_id: str) -> bool:
    n = db.get(Notification, notification_id)
    if not n or n.user_id != user_id:
        return False
    n.read = True
    db.commit()
    return True
