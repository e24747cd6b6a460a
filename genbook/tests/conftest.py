"""
Shared pytest fixtures.

Tests run against in-memory SQLite (StaticPool so every session sees the same
database) with the real FastAPI app. Sessions are authenticated with real
HS256 tokens signed by the test JWT secret.
"""

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import genbook.models  # noqa: F401  registers tables on Base.metadata
from genbook.api.app import create_app
from genbook.config.settings import DEFAULT_PLANS_PATH, Settings
from genbook.database.base import Base
from genbook.database.session import get_db_session
from genbook.entitlements.loader import PlanCatalog
from genbook.models.subscription import SubscriptionStatus, UserSubscription
from genbook.models.tenant import Tenant
from genbook.models.user import User

JWT_SECRET = "test-jwt-secret-that-is-long-enough"
WEBHOOK_SECRET = "whsec_test_secret"
KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_key_secret"


@pytest.fixture
def settings(monkeypatch):
    """Test settings installed as the process settings."""
    test_settings = Settings(
        app_env="test",
        log_level="DEBUG",
        database_url="sqlite://",
        supabase_jwt_secret=JWT_SECRET,
        razorpay_key_id=KEY_ID,
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        grace_days=3,
    )
    monkeypatch.setattr("genbook.config.settings._settings", test_settings)
    return test_settings


@pytest.fixture
def catalog(monkeypatch):
    plan_catalog = PlanCatalog(DEFAULT_PLANS_PATH)
    monkeypatch.setattr("genbook.entitlements.loader._catalog", plan_catalog)
    return plan_catalog


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def app(settings, catalog, db_session):
    application = create_app(settings)

    def _override_db():
        yield db_session

    application.dependency_overrides[get_db_session] = _override_db
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


def make_token(user_id: str, secret: str = JWT_SECRET, expires_in: int = 3600, **claims) -> str:
    payload = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": int(time.time()) + expires_in,
        **claims,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def create_tenant(db, role: str = "owner", extra_users: int = 0) -> tuple:
    """Insert a tenant with one user; returns (tenant_id, user_id)."""
    tenant = Tenant(id=str(uuid.uuid4()), name="Clinic")
    user = User(id=f"user-{uuid.uuid4()}", tenant_id=tenant.id, email="owner@example.com", role=role)
    db.add_all([tenant, user])
    for i in range(extra_users):
        db.add(User(id=f"user-{uuid.uuid4()}", tenant_id=tenant.id, role="staff"))
    db.commit()
    return tenant.id, user.id


def add_subscription(
    db,
    tenant_id: str,
    plan_id: str = "professional",
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    period_end: Optional[datetime] = None,
    provider_subscription_id: Optional[str] = None,
) -> UserSubscription:
    now = datetime.now(timezone.utc)
    row = UserSubscription(
        tenant_id=tenant_id,
        plan_id=plan_id,
        status=status.value,
        provider_subscription_id=provider_subscription_id or f"sub_{uuid.uuid4().hex[:14]}",
        current_period_start=now - timedelta(days=1),
        current_period_end=period_end if period_end is not None else now + timedelta(days=29),
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def free_tenant(db_session):
    return create_tenant(db_session)


@pytest.fixture
def pro_tenant(db_session):
    tenant_id, user_id = create_tenant(db_session)
    add_subscription(db_session, tenant_id, plan_id="professional")
    return tenant_id, user_id


@pytest.fixture
def enterprise_tenant(db_session):
    tenant_id, user_id = create_tenant(db_session)
    add_subscription(db_session, tenant_id, plan_id="enterprise")
    return tenant_id, user_id
