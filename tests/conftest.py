"""Pytest fixtures for testing"""

import random
from types import SimpleNamespace
from typing import Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from flow_gateway.api.dependencies import get_connector_client, get_session_factory
from flow_gateway.api.main import create_app
from flow_gateway.infrastructure.clients.connectors import SimulatedConnectorClient
from flow_gateway.infrastructure.database.models import (
    Base,
    BillerAccount,
    Connector,
    Consent,
    Contact,
    FundingSource,
    QRPayload,
    TrustedDevice,
    User,
    UserSettings,
)
from flow_gateway.infrastructure.database.session import get_db

# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

USER_ID = "user_aina"
DEVICE_ID = "device_pixel"


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


def simulated_connector(failure_rate: float) -> SimulatedConnectorClient:
    return SimulatedConnectorClient(failure_rate=failure_rate, rng=random.Random(0), sleep=AsyncMock())


@pytest.fixture
def reliable_connector() -> SimulatedConnectorClient:
    """Simulated rail that always succeeds without sleeping"""
    return simulated_connector(0.0)


@pytest.fixture
def failing_connector() -> SimulatedConnectorClient:
    return simulated_connector(1.0)


@pytest.fixture
def headers() -> dict:
    """Identity headers set by the upstream identity provider"""
    return {"X-User-ID": USER_ID, "X-Device-ID": DEVICE_ID}


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database and an always-succeeding rail"""
    app = create_app()

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_connector_client] = lambda: simulated_connector(0.0)
    return TestClient(app)


@pytest.fixture
def world(db: Session) -> SimpleNamespace:
    """
    One active user on a trusted device with:
    - TNG wallet RM80 (priority 1), Maybank RM500 (priority 2), Visa credit card (priority 3)
    - a connector and active consent per rail
    - a static QR accepting TNG and Maybank, and one that also takes Visa
    - a contact on TNG and a linked electricity biller
    """
    db.add(User(id=USER_ID, identity_status="active"))
    db.add(TrustedDevice(user_id=USER_ID, device_id=DEVICE_ID, trusted=True))
    db.add(UserSettings(user_id=USER_ID, flow_paused=False, fallback_preference="use_card"))

    tng = FundingSource(user_id=USER_ID, name="TNG", type="wallet", balance_cents=8_000, priority=1)
    maybank = FundingSource(user_id=USER_ID, name="Maybank", type="bank", balance_cents=50_000, priority=2)
    visa = FundingSource(user_id=USER_ID, name="Visa", type="credit_card", balance_cents=0, priority=3)
    db.add_all([tng, maybank, visa])

    connectors = {
        "TNG": Connector(
            user_id=USER_ID,
            name="TNG",
            type="wallet",
            status="available",
            capabilities={"can_pay_qr": True, "can_p2p": True, "can_receive": True, "can_pay": True},
        ),
        "Maybank": Connector(
            user_id=USER_ID,
            name="Maybank",
            type="bank",
            status="available",
            capabilities={"can_pay_qr": True, "can_p2p": True, "can_receive": True, "can_pay": True},
        ),
        "Visa": Connector(
            user_id=USER_ID,
            name="Visa",
            type="card",
            status="available",
            capabilities={"can_pay_qr": True, "can_pay": True},
        ),
    }
    db.add_all(connectors.values())
    db.flush()
    db.add_all([Consent(user_id=USER_ID, connector_id=c.id, status="active") for c in connectors.values()])

    qr = QRPayload(
        user_id=USER_ID,
        merchant_name="Kopi Corner",
        reference_id="KC-001",
        amount_cents=None,
        currency="MYR",
        rails_available=["TNG", "Maybank"],
        raw_payload="00020101021126...",
    )
    card_qr = QRPayload(
        user_id=USER_ID,
        merchant_name="Mamak Express",
        reference_id="ME-001",
        amount_cents=None,
        currency="MYR",
        rails_available=["TNG", "Maybank", "Visa"],
        raw_payload="00020101021126...",
    )
    contact = Contact(
        user_id=USER_ID, name="Farid", phone="+60123456789", supported_wallets=["TNG"], default_wallet="TNG"
    )
    biller = BillerAccount(user_id=USER_ID, biller_name="TNB", account_reference="220011223344", status="linked")
    db.add_all([qr, card_qr, contact, biller])
    db.commit()

    return SimpleNamespace(
        user_id=USER_ID,
        device_id=DEVICE_ID,
        tng=tng,
        maybank=maybank,
        visa=visa,
        connectors=connectors,
        qr=qr,
        card_qr=card_qr,
        contact=contact,
        biller=biller,
    )


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Factory for extra sessions on the test database (background drains, concurrent callers)"""
    return TestingSessionLocal
