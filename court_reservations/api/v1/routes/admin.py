from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from court_reservations.api.deps import Principal, require_roles
from court_reservations.core.clock import ledger_period
from court_reservations.core.security import ROLE_ADMIN
from court_reservations.db.session import get_db
from court_reservations.schemas.ledger import RevenueTotalOut
from court_reservations.services.ledger_service import period_total

router = APIRouter(tags=["admin"])


@router.get("/admin/revenue", response_model=RevenueTotalOut)
def revenue(period: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}$"),
            db: Session = Depends(get_db), me: Principal = Depends(require_roles(ROLE_ADMIN))):
    """Bookings and amount for a YYYY-MM period (defaults to the current one), net of refunded voids."""
    return RevenueTotalOut(**period_total(db, period or ledger_period()))
