"""Shared fixtures: in-memory database, fake Converge endpoint, API client."""
import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["FEATURE_BILLING_ENABLED"] = "true"
os.environ["ELAVON_MERCHANT_ID"] = "0021000"
os.environ["ELAVON_USER_ID"] = "apiuser"
os.environ["ELAVON_PIN"] = "TESTPIN"

from urllib.parse import parse_qsl
import uuid

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.api.deps import get_gateway
from app.core.security import create_access_token
from app.db.session import Base, get_db
from app.main import app
from app.models.organization import Organization
from app.models.payment import Payment, PaymentStatus
from app.services.billing.customers import get_or_create_billing_customer
from app.services.billing.elavon import ElavonGateway
from app.services.billing.gateway import GatewayCredentials
from app.services.billing.plans import seed_plans
from app.services.billing.subscriptions import provision_organization

CREDENTIALS = GatewayCredentials(
    merchant_id="0021000",
    user_id="apiuser",
    pin="TESTPIN",
    api_url="https://api.demo.convergepay.com/VirtualMerchantDemo",
    hosted_url="https://demo.convergepay.com/hosted-payments/",
)

APPROVAL = "ssl_result=0\nssl_result_message=APPROVAL\nssl_txn_id=TXN-0001\nssl_approval_code=CMC142"


class FakeConverge:
    """Stands in for processxml.do. Queue replies (text, httpx.Response or an exception to raise)."""

    def __init__(self):
        self.requests = []
        self.replies = []

    def reply(self, *replies):
        self.replies.extend(replies)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(dict(parse_qsl(request.content.decode())))
        reply = self.replies.pop(0) if self.replies else APPROVAL
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, text=reply)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def plans(db):
    """Seeded catalog keyed by plan type."""
    return {plan.type: plan for plan in seed_plans(db)}


@pytest.fixture()
def org(db, plans):
    """An organization on the free plan."""
    return provision_organization(db, "Acme Accounting")


@pytest.fixture()
def bare_org(db):
    """An organization with no subscription yet."""
    organization = Organization(name="Bare Books")
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization


@pytest.fixture()
def customer(db, org):
    customer = get_or_create_billing_customer(db, org.id, "billing@acme.test", "Ada Lovelace")
    db.commit()
    return customer


@pytest.fixture()
def make_payment(db):
    """Insert a payment row directly, e.g. a settled charge to refund."""
    def _make_payment(org_id, amount=2900, status=PaymentStatus.COMPLETED.value, **fields):
        fields.setdefault("gateway_transaction_id", f"TXN-{uuid.uuid4().hex[:8]}")
        payment = Payment(org_id=org_id, amount=amount, currency="USD", status=status, **fields)
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment
    return _make_payment


@pytest.fixture()
def converge():
    return FakeConverge()


@pytest.fixture()
def http_client(converge):
    client = httpx.Client(transport=httpx.MockTransport(converge.handler))
    yield client
    client.close()


@pytest.fixture()
def gateway(http_client):
    return ElavonGateway(CREDENTIALS, http_client=http_client)


@pytest.fixture()
def client(db, gateway):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    def _auth_headers(org, role="admin", email="ada@acme.test", name="Ada Lovelace"):
        token = create_access_token(
            user_id=str(uuid.uuid4()),
            org_id=str(org.id),
            email=email,
            role=role,
            name=name,
        )
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers
