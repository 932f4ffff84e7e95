"""
Shared fixtures for the booking/escrow engine tests.

Everything runs against one in-memory SQLite database (StaticPool keeps the
single connection alive across sessions). The payment gateway is a recording
fake; every command is given an explicit ``now`` so deadlines are deterministic.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from proescrow.db.session import Base
from proescrow.models.booking import Booking, BookingEvent  # noqa: F401
from proescrow.models.escrow import EscrowLedger  # noqa: F401
from proescrow.models.payment import PaymentTransaction  # noqa: F401
from proescrow.models.otp import OTPRecord  # noqa: F401
from proescrow.models.rectification import RectificationCase  # noqa: F401
from proescrow.models.scope_change import ScopeChangeInvoice  # noqa: F401
from proescrow.models.safety_incident import SafetyIncident  # noqa: F401
from proescrow.models.scheduled_job import ScheduledJob  # noqa: F401
from proescrow.models.idempotency_key import IdempotencyKey  # noqa: F401
from proescrow.models.notification_log import NotificationLog  # noqa: F401
from proescrow.models.audit_log import AuditLog  # noqa: F401
from proescrow.services import booking_service
from proescrow.services.payment_gateway import CaptureError, CaptureResult, GatewayRefundError, RefundResult

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeGateway:
    """Records captures and refunds; flip ``fail_capture``/``fail_refund`` to simulate rail outages."""

    def __init__(self):
        self.fail_capture = False
        self.fail_refund = False
        self.captures = []
        self.refunds = []

    def capture(self, amount, payment_method_ref, reference=""):
        if self.fail_capture:
            raise CaptureError("card declined")
        tx = f"tx-{len(self.captures) + 1}"
        self.captures.append((tx, amount))
        return CaptureResult(success=True, transaction_id=tx)

    def refund(self, transaction_id, amount):
        if self.fail_refund:
            raise GatewayRefundError("refund rails unavailable")
        self.refunds.append((transaction_id, amount))
        return RefundResult(success=True)


class BookingFlow:
    """Walks a booking forward through the happy path up to a target status."""

    STEPS = ["requested", "confirmed", "provider_confirmed", "en_route", "checked_in", "observation"]

    created_at = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    scheduled_at = created_at + timedelta(days=1)
    en_route_at = scheduled_at - timedelta(minutes=10)
    checked_in_at = scheduled_at
    completed_at = scheduled_at + timedelta(hours=3)

    def __init__(self, db, gateway):
        self.db = db
        self.gateway = gateway
        self.code = None

    def create(self, tier: int = 1, price: int = 10000) -> str:
        b = booking_service.create_booking(
            self.db,
            client_id="client-1",
            provider_id="provider-1",
            tier=tier,
            scheduled_at=self.scheduled_at,
            price=price,
            scope="Fix leaking kitchen tap",
            address="12 Harbour Road",
            payment_method_ref="pm_test",
            now=self.created_at,
        )
        return b.id

    def to(self, target: str, tier: int = 1, price: int = 10000) -> str:
        booking_id = self.create(tier=tier, price=price)
        for step in self.STEPS[1:self.STEPS.index(target) + 1]:
            if step == "confirmed":
                booking_service.confirm(self.db, booking_id, actor_id="client-1", gateway=self.gateway, now=self.created_at)
            elif step == "provider_confirmed":
                booking_service.provider_accept(self.db, booking_id, actor_id="provider-1", now=self.created_at)
            elif step == "en_route":
                _, self.code = booking_service.mark_en_route(self.db, booking_id, actor_id="provider-1", now=self.en_route_at)
            elif step == "checked_in":
                booking_service.check_in(self.db, booking_id, self.code, actor_id="provider-1", now=self.checked_in_at)
            elif step == "observation":
                booking_service.complete(self.db, booking_id, notes="tap replaced", actor_id="provider-1", now=self.completed_at)
        return booking_id


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def flow(db, gateway):
    return BookingFlow(db, gateway)


@pytest.fixture
def client(db, gateway):
    from fastapi.testclient import TestClient

    from proescrow.api.deps import get_gateway
    from proescrow.db.session import get_db
    from proescrow.main import app

    def _get_db():
        s = TestingSessionLocal()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
