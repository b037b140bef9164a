import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "dev")

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from payshield.database import Base, get_db
from payshield.models.fraud_alert import FraudAlert  # noqa: F401
from payshield.models.profile import Profile
from payshield.models.scan import Scan  # noqa: F401
from payshield.services.alert_service import AlertService
from payshield.tests.fakes import EXPO_TOKEN


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user_id():
    return "user-1"


@pytest.fixture
def profile(db, user_id):
    row = Profile(id=user_id, full_name="Asha", device_token=EXPO_TOKEN, scan_stats={})
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def scheduled():
    """Collects notification intents handed to the scheduler callback."""
    intents = []

    def schedule(payload, request_id):
        intents.append(SimpleNamespace(payload=payload, request_id=request_id))

    schedule.intents = intents
    return schedule


@pytest.fixture
def alert_service():
    return AlertService(threshold=70)


@pytest.fixture
def client(engine):
    """FastAPI test client with an in-memory database and a fixed user."""
    from payshield.api.security import AuthenticatedUser, get_current_user
    from payshield.api.server import app

    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: AuthenticatedUser(id="user-1")
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sample_receipt_text():
    """Clean payment confirmation as OCR returns it."""
    return (
        "Payment Confirmation\n"
        "UPI ID: john.doe@upi\n"
        "Payee: ABC Super Store\n"
        "Amount: ₹12,345.50\n"
        "Reference No: TXN-12345678"
    )


@pytest.fixture
def sample_scam_text():
    """Screenshot text with obvious pressure cues."""
    return (
        "URGENT ACTION REQUIRED! Your account is blocked. Pay ₹55,000 now via "
        "upi Fraudster@okaxis. Share OTP to unlock."
    )
