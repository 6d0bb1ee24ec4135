"""
Shared fixtures: in-memory SQLite database, users, seeded plans and a fake
payment provider.
"""
import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from eventhub.core.errors import InvalidWebhookSignatureError
from eventhub.db.base import Base
import eventhub.db.models  # noqa: F401
from eventhub.db.models.user import User
from eventhub.db.repositories.plan_catalog import seed_default_plans
from eventhub.services.payment_provider import CheckoutSession


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

VALID_SIGNATURE = "t=1,v1=valid"


class FakePaymentProvider:
    """Records checkout sessions instead of calling Stripe."""

    def __init__(self):
        self.sessions = []
        self.cancelled = []

    def create_checkout_session(self, plan, customer_email, customer_name, user_id, mode):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "session_id": session_id,
            "plan_id": plan.id,
            "customer_email": customer_email,
            "customer_name": customer_name,
            "user_id": user_id,
            "mode": mode,
        })
        return CheckoutSession(session_id=session_id, url=f"https://checkout.test/{session_id}", mode=mode)

    def verify_webhook(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise InvalidWebhookSignatureError("Invalid signature")
        return json.loads(payload)

    def cancel_subscription(self, provider_subscription_id):
        self.cancelled.append(provider_subscription_id)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def test_user(db):
    """Create a test creator."""
    user = User(full_name="Test Creator", email="creator@example.com")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_user(db):
    user = User(full_name="Other Creator", email="other@example.com")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def plans(db):
    """Seed the default catalog; plans keyed by name."""
    seed_default_plans(db)
    from eventhub.db.models.plan import SubscriptionPlan
    return {plan.name: plan for plan in db.query(SubscriptionPlan).all()}


@pytest.fixture
def provider():
    return FakePaymentProvider()
