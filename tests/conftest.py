"""
Shared test fixtures.

Settings are read at import time, so the environment is prepared before any
``court_reservations`` module is imported:

  • a throwaway SQLite file database (schema recreated per test)
  • QR images written to a temp directory
  • no retry backoff, in-memory change feed

The payment gateway is replaced by ``FakeGateway`` through FastAPI's
dependency overrides and passed explicitly to service calls.
"""

from __future__ import annotations

import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="court-reservations-tests-")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["QR_LOCAL_DIR"] = os.path.join(_TMP, "qr")
os.environ["STORE_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["CHANGE_FEED_BACKEND"] = "memory"
os.environ["PAYMENT_SANDBOX"] = "false"
os.environ["GCS_BUCKET_NAME"] = ""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from court_reservations.core.security import create_access_token
from court_reservations.db.session import Base, SessionLocal, engine
from court_reservations.main import app
from court_reservations.models.court import Court
from court_reservations.services import change_feed, court_service
from court_reservations.services.payment_gateway import PaymentResult, get_payment_gateway

# Import every model so metadata knows all tables
import court_reservations.models.audit_log  # noqa: F401
import court_reservations.models.booking  # noqa: F401
import court_reservations.models.notification  # noqa: F401
import court_reservations.models.payment  # noqa: F401
import court_reservations.models.revenue_entry  # noqa: F401
import court_reservations.models.void_record  # noqa: F401


# Morning of the scenario day on the venue clock: every evening slot is still ahead
SCENARIO_NOW = datetime(2024, 6, 10, 9, 0, tzinfo=ZoneInfo("America/Santiago"))


# ── Helpers ────────────────────────────────────────────────────────────────


class FakeGateway:
    """Stand-in for PaymentGateway that records calls and answers from flags."""

    def __init__(self):
        self.approve_charges = True
        self.charge_error: Exception | None = None
        self.approve_refunds = True
        self.refund_error: Exception | None = None
        self.charges: list[dict] = []
        self.refunds: list[dict] = []

    def charge(self, *, amount, payer, client_ref):
        self.charges.append({"amount": amount, "payer": payer, "client_ref": client_ref})
        if self.charge_error:
            raise self.charge_error
        if self.approve_charges:
            return PaymentResult(success=True, transaction_ref=f"txn-{len(self.charges)}", status="PROCESSED")
        return PaymentResult(success=False, transaction_ref="", status="DECLINED")

    def refund(self, *, transaction_ref, amount, client_ref):
        self.refunds.append({"transaction_ref": transaction_ref, "amount": amount, "client_ref": client_ref})
        if self.refund_error:
            raise self.refund_error
        if self.approve_refunds:
            return PaymentResult(success=True, transaction_ref=f"rfd-{len(self.refunds)}", status="REFUNDED")
        return PaymentResult(success=False, transaction_ref="", status="REJECTED")


def bearer(sub: str, role: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(sub, role)}"}


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _fresh_state():
    """Empty schema, empty court cache and a new in-memory feed for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    court_service.invalidate_catalogue()
    change_feed._feed = change_feed.InMemoryChangeFeed()
    yield
    court_service.invalidate_catalogue()


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def feed() -> change_feed.InMemoryChangeFeed:
    return change_feed.get_change_feed()


@pytest.fixture()
def court(db) -> Court:
    c = Court(name="5-a-side #1", court_type="5-a-side", location="North field", hourly_price=30000, state="Active")
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def frozen_now(monkeypatch) -> datetime:
    """Pin the venue clock used for availability and booking checks to the scenario morning."""
    monkeypatch.setattr("court_reservations.services.availability_service.venue_now", lambda: SCENARIO_NOW)
    monkeypatch.setattr("court_reservations.services.booking_service.venue_now", lambda: SCENARIO_NOW)
    return SCENARIO_NOW


@pytest.fixture()
def client(gateway) -> TestClient:
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
    app.dependency_overrides.clear()


@pytest.fixture()
def client_a() -> dict:
    return bearer("client-a", "client")


@pytest.fixture()
def client_b() -> dict:
    return bearer("client-b", "client")


@pytest.fixture()
def staff() -> dict:
    return bearer("staff-1", "staff")


@pytest.fixture()
def admin() -> dict:
    return bearer("admin-1", "admin")


@pytest.fixture()
def auth():
    """Factory for Authorization headers: ``auth("someone", "client")``."""
    return bearer
