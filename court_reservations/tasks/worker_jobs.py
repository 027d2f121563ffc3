import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError

from court_reservations.core.errors import PartialVoidFailure
from court_reservations.db.session import SessionLocal
from court_reservations.services import booking_service, ledger_service

logger = logging.getLogger(__name__)


def expire_pending_holds() -> dict:
    db: Session = SessionLocal()
    try:
        try:
            expired = booking_service.expire_pending_holds(db)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        return {"expired": expired}
    finally:
        db.close()


def reconcile_refunds(limit: int = 50, gateway=None) -> dict:
    """Retry provider refunds of voided bookings that are still pending or failed."""
    db: Session = SessionLocal()
    try:
        try:
            booking_ids = ledger_service.unsettled_refunds(db)[:limit]
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        settled, failed = 0, 0
        for booking_id in booking_ids:
            try:
                ledger_service.settle_refund(db, booking_id, gateway=gateway)
                settled += 1
            except PartialVoidFailure:
                failed += 1
        if failed:
            logger.warning("refund reconciliation: %d settled, %d still failing", settled, failed)
        return {"settled": settled, "failed": failed}
    finally:
        db.close()
