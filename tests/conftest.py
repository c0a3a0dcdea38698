"""
Shared fixtures: an in-memory database per test, seeded users / campaign /
proposal, a fake payment gateway and an API client wired to all of them.
"""

import hashlib
import hmac
import json
import os
from decimal import Decimal

# Must be set before the app modules read their configuration
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth.dependencies import create_access_token
from core.razorpay_service import RazorpayService
from database.config import get_db
from database.models import Base, User, UserType, Campaign, CampaignStatusDB
from database.workflow_models import Proposal, ApprovalStatusDB, PaymentWorkflowStatusDB
from routers.deps import (
    get_payment_gateway, get_retry_sleep, get_webhook_secret, get_rate_limiter
)
from server import app
from services.audit_service import AuditLog
from services.errors import IntegrationFailure
from services.invoice_service import InvoiceGenerator
from services.payment_orchestrator import PaymentOrchestrator
from services.proposal_state_machine import ProposalStateMachine
from services.rate_limiter import ActionRateLimiter

KEY_SECRET = "rzp_test_secret"
WEBHOOK_SECRET = "whsec_test"


def no_sleep(seconds):
    pass


class FakeGateway(RazorpayService):
    """RazorpayService with the HTTP layer replaced by an in-memory recorder."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret=KEY_SECRET, base_url="https://gateway.test")
        self.requests = []
        self.fail_times = 0
        self._orders = 0

    def _make_request(self, method, endpoint, data=None):
        self.requests.append((method, endpoint, data))
        if self.fail_times:
            self.fail_times -= 1
            raise IntegrationFailure("Payment gateway error: timed out")
        self._orders += 1
        return {"id": f"order_test_{self._orders}", "amount": data["amount"], "status": "created"}


def payment_signature(order_id: str, gateway_payment_id: str, secret: str = KEY_SECRET) -> str:
    return hmac.new(secret.encode(), f"{order_id}|{gateway_payment_id}".encode(), hashlib.sha256).hexdigest()


def webhook_body(event: str, gateway_payment_id: str, order_id: str, amount_paise: int, **extra) -> bytes:
    entity = {
        "id": gateway_payment_id,
        "order_id": order_id,
        "amount": amount_paise,
        "currency": "INR",
        "method": "upi",
        **extra,
    }
    return json.dumps({"event": event, "payload": {"payment": {"entity": entity}}}).encode()


def webhook_signature(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


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
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def brand(db):
    user = User(email="brand@example.com", name="Acme Brand", user_type=UserType.BRAND)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def influencer(db):
    user = User(email="creator@example.com", name="Creator", user_type=UserType.INFLUENCER)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db):
    user = User(email="admin@example.com", name="Admin", user_type=UserType.ADMIN)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def campaign(db, brand):
    campaign = Campaign(
        brand_id=brand.id,
        title="Monsoon Launch",
        description="Launch reels for the monsoon collection",
        budget=2000000,
        currency="INR",
        payment_structure={"upfront": 50, "completion": 50, "bonus": 10},
        status=CampaignStatusDB.ACTIVE,
    )
    db.add(campaign)
    db.commit()
    return campaign


@pytest.fixture
def proposal(db, campaign, influencer):
    proposal = Proposal(
        campaign_id=campaign.id,
        influencer_id=influencer.id,
        proposal_text="Three reels and a story across two weeks",
        proposed_compensation=Decimal("10000"),
        status=ApprovalStatusDB.PENDING,
        payment_status=PaymentWorkflowStatusDB.NONE,
    )
    db.add(proposal)
    db.commit()
    return proposal


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def audit(db):
    return AuditLog(db)


@pytest.fixture
def payments(db, gateway, audit):
    return PaymentOrchestrator(db, gateway=gateway, audit=audit, invoices=InvoiceGenerator(db), sleep=no_sleep)


@pytest.fixture
def machine(db, audit, payments):
    return ProposalStateMachine(db, audit=audit, invoice_generator=InvoiceGenerator(db), payments=payments)


@pytest.fixture
def approved_proposal(db, proposal, machine, brand):
    machine.approve(proposal.id, brand.id)
    db.refresh(proposal)
    return proposal


@pytest.fixture
def work_in_progress(db, approved_proposal, payments, gateway, brand):
    """Approved proposal with the upfront payment completed."""
    outcome = payments.create_upfront_payment(approved_proposal.id, brand.id)
    payments.process_payment_order(outcome.payment.id, brand.id)
    order_id = outcome.payment.gateway_order_id
    payments.confirm_payment(outcome.payment.id, "pay_upfront", payment_signature(order_id, "pay_upfront"), brand.id)
    db.refresh(approved_proposal)
    return approved_proposal


@pytest.fixture
def rate_limiter():
    return ActionRateLimiter(max_actions=100, window_seconds=60)


@pytest.fixture
def client(session_factory, gateway, rate_limiter):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_retry_sleep] = lambda: no_sleep
    app.dependency_overrides[get_webhook_secret] = lambda: WEBHOOK_SECRET
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.email)}"}
