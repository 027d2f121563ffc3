import logging

from sqlalchemy.orm import Session
from sqlalchemy import text, select
from sqlalchemy.exc import ProgrammingError, OperationalError

from court_reservations.db.session import SessionLocal
from court_reservations.models.court import Court, COURT_ACTIVE

logger = logging.getLogger(__name__)

DEMO_COURTS = [
    {"name": "5-a-side #1", "court_type": "5-a-side", "location": "North field", "hourly_price": 30000},
    {"name": "5-a-side #2", "court_type": "5-a-side", "location": "North field", "hourly_price": 30000},
    {"name": "7-a-side", "court_type": "7-a-side", "location": "South field", "hourly_price": 45000},
    {"name": "Paddle A", "court_type": "paddle", "location": "Covered area", "hourly_price": 18000},
]


def ensure_court(db: Session, name: str, court_type: str, location: str, hourly_price: int) -> None:
    exists = db.execute(select(Court.id).where(Court.name == name)).first()
    if exists:
        return
    db.add(Court(name=name, court_type=court_type, location=location,
                 hourly_price=hourly_price, state=COURT_ACTIVE))


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM courts LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("[seed] courts table not found yet. Skipping seeding (run alembic upgrade head).")
            return
        for c in DEMO_COURTS:
            ensure_court(db, **c)
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
