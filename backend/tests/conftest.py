"""
Pytest configuration and shared fixtures for the AI Image Studio backend.
"""
import base64
import json
import os
import sys
import tempfile
from pathlib import Path

# Ensure backend package is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

# Settings are read once at import time
PAYMENT_SECRET = "whsec_" + base64.b64encode(b"payment-webhook-test-secret").decode()
TRAINING_SECRET = "whsec_" + base64.b64encode(b"training-webhook-test-secret").decode()
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", PAYMENT_SECRET)
os.environ.setdefault("TRAINING_WEBHOOK_SECRET", TRAINING_SECRET)
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("BLOB_STORAGE_PATH", tempfile.mkdtemp(prefix="image-studio-blobs-"))

# Patch PostgreSQL UUID type BEFORE any imports
from sqlalchemy.dialects import postgresql
from sqlalchemy import JSON, TypeDecorator, CHAR
import uuid as uuid_module

class GUID(TypeDecorator):
    """Platform-independent GUID type. Uses PostgreSQL's UUID type, otherwise uses CHAR(36)."""
    impl = CHAR
    cache_ok = True

    def __init__(self, as_uuid=True):
        """Accept as_uuid parameter for compatibility with PostgreSQL UUID."""
        self.as_uuid = as_uuid
        super().__init__()

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(_original_uuid(as_uuid=self.as_uuid))
        else:
            return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        elif isinstance(value, uuid_module.UUID):
            return value
        else:
            return uuid_module.UUID(value)

# Monkey patch BEFORE models are imported
_original_uuid = postgresql.UUID
postgresql.UUID = GUID
_original_jsonb = postgresql.JSONB


def _to_jsonable(value):  # noqa: ANN001
    if value is None:
        return None
    if isinstance(value, uuid_module.UUID):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    return value


class JSONB(TypeDecorator):
    """SQLite-friendly stand-in for PostgreSQL JSONB."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(_original_jsonb())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        return _to_jsonable(value)


postgresql.JSONB = JSONB

import time
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


@pytest.fixture(scope="function")
def db():
    """
    Create a fresh database for each test.

    Uses an in-memory SQLite database for fast, isolated testing.
    UUID type has been patched at module level to work with SQLite.
    """
    from app.db.base import Base
    import app.models  # noqa: F401

    # Create in-memory SQLite database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create session
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def disable_rate_limits():
    """Rate limits are process-global; keep them out of the way of tests."""
    from app.core.rate_limit import limiter

    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def plans(db):
    """Seed the free, pro and enterprise plans."""
    from app.models import SubscriptionPlan

    free = SubscriptionPlan(
        name="free",
        display_name="Free",
        price=Decimal("0"),
        image_generation_limit=100,
        model_training_limit=1,
        features={},
    )
    pro = SubscriptionPlan(
        name="pro",
        display_name="Pro",
        price=Decimal("20.00"),
        image_generation_limit=300,
        model_training_limit=3,
        features={"priority_support": True},
        external_plan_id="prod_pro",
    )
    enterprise = SubscriptionPlan(
        name="enterprise",
        display_name="Enterprise",
        price=Decimal("50.00"),
        image_generation_limit=None,
        model_training_limit=5,
        features={"priority_support": True, "api_access": True},
        external_plan_id="prod_enterprise",
    )
    db.add_all([free, pro, enterprise])
    db.commit()
    return {"free": free, "pro": pro, "enterprise": enterprise}


@pytest.fixture
def user(db):
    """A signed-up user without any subscription."""
    from app.models import User

    user = User(
        external_auth_id="auth_artist_1",
        email="artist@test.com",
        full_name="Test Artist",
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def pro_subscription(db, user, plans):
    """An active provider-backed pro subscription for ``user``."""
    from app.models import Subscription

    now = datetime.utcnow()
    subscription = Subscription(
        user_id=user.id,
        plan_id=plans["pro"].id,
        status="active",
        current_period_start=now - timedelta(days=5),
        current_period_end=now + timedelta(days=25),
        external_subscription_id="sub_pro_1",
        external_customer_id="cus_1",
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    return subscription


def signed_request(payload, secret, webhook_id, timestamp=None):
    """Serialize a payload and build valid webhook signing headers for it."""
    from app.core.webhook_signature import sign_webhook_payload

    body = json.dumps(payload).encode()
    headers = sign_webhook_payload(body, secret, webhook_id, timestamp=timestamp or int(time.time()))
    return body, headers


@pytest.fixture
def sign_payment():
    def _sign(payload, webhook_id="msg_1", timestamp=None):
        return signed_request(payload, PAYMENT_SECRET, webhook_id, timestamp)
    return _sign


@pytest.fixture
def sign_training():
    def _sign(payload, webhook_id="msg_t1", timestamp=None):
        return signed_request(payload, TRAINING_SECRET, webhook_id, timestamp)
    return _sign


class RecordingNotifier:
    """Notifier double that keeps what it was asked to send."""

    def __init__(self):
        self.sent = []

    async def notify(self, user, subject, message):
        self.sent.append((user.email, subject, message))


@pytest.fixture
def notifier():
    return RecordingNotifier()
