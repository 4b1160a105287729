import os

# Settings are read at import time, so configure the test environment first
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_turf_booking.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["OUTBOX_POLLER_ENABLED"] = "false"

# Imports for testing tools
import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from unittest.mock import AsyncMock

# Import your application code
from turf_booking.main import app
from turf_booking.config import settings
from turf_booking.database import Base, get_db
from turf_booking.dependencies import get_payment_gateway
from turf_booking.errors import PaymentGatewayError
from turf_booking.orchestrator import BookingOrchestrator
from turf_booking.payment_gateway import GatewayOrder, compute_signature
from turf_booking.policy import SettlementPolicy
from turf_booking import models

# --- Test Database Setup ---
SQLALCHEMY_DATABASE_URL = os.environ["DATABASE_URL"]

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# pysqlite defers BEGIN, which breaks SAVEPOINT. Take over transaction control.
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")

GATEWAY_SECRET = "test-gateway-secret"
OWNER_ID = "owner-1"
PLAYER_ID = "player-1"


class FakeGateway:
    """In-memory stand-in for Razorpay that signs like the real gateway."""

    def __init__(self, secret: str = GATEWAY_SECRET):
        self.secret = secret
        self.orders = []
        self.refunds = []
        self.fail_orders = False
        self.fail_refunds = False

    def create_order(self, amount, currency, receipt_ref):
        if self.fail_orders:
            raise PaymentGatewayError("gateway down")
        order = GatewayOrder(
            order_id=f"order_{len(self.orders) + 1}", amount=amount, currency=currency, key_id="rzp_test"
        )
        self.orders.append((order, receipt_ref))
        return order

    def verify_signature(self, order_id, payment_id, signature):
        return compute_signature(self.secret, order_id, payment_id) == signature

    def refund(self, external_payment_id, amount):
        if self.fail_refunds:
            raise PaymentGatewayError("refund rejected")
        self.refunds.append((external_payment_id, amount))
        return f"rfnd_{len(self.refunds)}"

    def sign(self, order_id, payment_id):
        return compute_signature(self.secret, order_id, payment_id)


# --- Database Management Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def setup_db():
    """Creates and drops the test database tables."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Provides a clean database session for each test.

    The orchestrator commits, so commits are turned into savepoints and the
    outer transaction is rolled back at the end.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection, join_transaction_mode="create_savepoint")
    yield session
    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def policy():
    return SettlementPolicy()


@pytest.fixture
def orchestrator(db_session, gateway, policy):
    return BookingOrchestrator(
        db=db_session,
        gateway=gateway,
        policy=policy,
        platform_payee_id=settings.PLATFORM_PAYEE_ID,
    )


@pytest.fixture
def make_slot(db_session):
    """Factory for slots as the catalogue service would create them."""
    def _make_slot(price="1000.00", owner_id=OWNER_ID, available=True):
        start = datetime.datetime(2030, 1, 1, 18, 0, tzinfo=datetime.timezone.utc)
        slot = models.Slot(
            facility_id=1,
            owner_id=owner_id,
            start_time=start,
            end_time=start + datetime.timedelta(hours=1),
            price=Decimal(price),
            is_available=available,
        )
        db_session.add(slot)
        db_session.commit()
        return slot
    return _make_slot


# --- Mocking External Services ---
@pytest.fixture(scope="function", autouse=True)
def mock_background_tasks(mocker):
    """
    Mocks the outbox poller in case a test turns it on.
    """
    mocker.patch("turf_booking.main.run_outbox_poller", new_callable=AsyncMock)


def create_test_token(user_id: str = PLAYER_ID, role: str = "player") -> str:
    """Creates a simple JWT for testing."""
    payload = {"sub": user_id, "role": role}
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return f"Bearer {token}"


@pytest.fixture
def player_headers():
    return {"Authorization": create_test_token(PLAYER_ID, "player")}


@pytest.fixture
def owner_headers():
    return {"Authorization": create_test_token(OWNER_ID, "owner")}


# --- API Test Client Fixture ---
@pytest.fixture(scope="function")
def client(db_session, gateway):
    """Provides a TestClient wired to the test session and the fake gateway."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
