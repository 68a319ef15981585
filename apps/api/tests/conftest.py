"""
Test configuration and fixtures.

Provides:
- Fresh schema per test on DATABASE_URL (in-memory SQLite by default)
- Bearer token minting for authenticated tests
- Recording notification dispatcher
- HTTPX AsyncClient wired to the app with dependency overrides
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, AsyncGenerator, Generator

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("INTERNAL_SECRET", "test-internal-secret")
os.environ.setdefault("CALL_PROVIDER_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ALLOWED_ORIGINS", "https://app.example.com")
os.environ.setdefault("PUSH_GATEWAY_URL", "")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from carecore.core.deps import get_db
from carecore.core.errors import NotificationDispatchFailure
from carecore.core.rate_limit import reset_rate_limits
from carecore.core.security import create_bearer_token
from carecore.db.base import Base
from carecore.db.enums import CallOutcome, CallStatus, HouseholdRole
from carecore.db.models import (
    CallLog,
    CallSession,
    DevicePair,
    Household,
    HouseholdMember,
    Relative,
    User,
)
from carecore.db.session import SessionLocal, engine
from carecore.db.types import utcnow
from carecore.main import app
from carecore.services.notification_dispatcher import get_dispatcher


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates a database session on a fresh schema.

    App code commits freely; the schema is dropped after each test.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture(scope="function")
def test_household(db: Session) -> Household:
    household = Household(id=uuid.uuid4(), name="Test Household")
    db.add(household)
    db.commit()
    return household


def _add_user(db: Session, household: Household, role: HouseholdRole) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"{role.value}-{uuid.uuid4().hex[:8]}@test.com",
        display_name=f"Test {role.value}",
    )
    db.add(user)
    db.flush()
    db.add(HouseholdMember(household_id=household.id, user_id=user.id, role=role.value))
    db.commit()
    return user


@pytest.fixture(scope="function")
def admin_user(db: Session, test_household: Household) -> User:
    """Household admin."""
    return _add_user(db, test_household, HouseholdRole.ADMIN)


@pytest.fixture(scope="function")
def member_user(db: Session, test_household: Household) -> User:
    """Plain household member."""
    return _add_user(db, test_household, HouseholdRole.MEMBER)


@pytest.fixture(scope="function")
def outsider_user(db: Session) -> User:
    """User with no household membership."""
    user = User(id=uuid.uuid4(), email="outsider@test.com", display_name="Outsider")
    db.add(user)
    db.commit()
    return user


@pytest.fixture(scope="function")
def test_relative(db: Session, test_household: Household) -> Relative:
    relative = Relative(household_id=test_household.id, first_name="Rose", last_name="Tester")
    db.add(relative)
    db.commit()
    return relative


@pytest.fixture(scope="function")
def make_pair(db: Session, test_household: Household, test_relative: Relative, admin_user: User):
    """Factory for pairing rows with explicit state."""

    def _make(
        *,
        code: str = "123456",
        token: str | None = None,
        expires_in: timedelta = timedelta(minutes=10),
        claimed_by: uuid.UUID | None = None,
        device_info: dict | None = None,
    ) -> DevicePair:
        now = utcnow()
        pair = DevicePair(
            household_id=test_household.id,
            relative_id=test_relative.id,
            code_6=code,
            pair_token=token or f"token-{uuid.uuid4().hex}",
            created_by=admin_user.id,
            created_at=now - timedelta(minutes=1),
            expires_at=now + expires_in,
            claimed_by=claimed_by,
            claimed_at=now if claimed_by else None,
            device_info=device_info or {},
        )
        db.add(pair)
        db.commit()
        return pair

    return _make


@pytest.fixture(scope="function")
def make_call_session(db: Session, test_household: Household, test_relative: Relative):
    """Factory for call sessions (with their call log row)."""

    def _make(status: str = CallStatus.INITIATED.value, with_log: bool = True) -> CallSession:
        session = CallSession(
            household_id=test_household.id,
            relative_id=test_relative.id,
            status=status,
        )
        db.add(session)
        db.flush()
        if with_log:
            db.add(
                CallLog(
                    session_id=session.id,
                    household_id=test_household.id,
                    relative_id=test_relative.id,
                    call_outcome=CallOutcome.INITIATED.value,
                )
            )
        db.commit()
        return session

    return _make


# =============================================================================
# Auth Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def bearer_for():
    """Build an Authorization header for a user."""

    def _bearer(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_bearer_token(user.id)}"}

    return _bearer


@pytest.fixture(scope="function")
def internal_headers() -> dict[str, str]:
    return {"X-Internal-Secret": os.environ["INTERNAL_SECRET"]}


# =============================================================================
# Dispatcher Fixtures
# =============================================================================

@dataclass
class FakeDispatcher:
    """Records every send; optionally fails like an unreachable gateway."""

    fail: bool = False
    sent: list[dict[str, Any]] = field(default_factory=list)

    async def send(self, user_ids, title, body, data=None) -> None:
        if self.fail:
            raise NotificationDispatchFailure("Push gateway returned 503")
        self.sent.append(
            {"user_ids": list(user_ids), "title": title, "body": body, "data": data or {}}
        )


@pytest.fixture(scope="function")
def fake_dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, fake_dispatcher: FakeDispatcher) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient against the app with the test session and dispatcher.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: fake_dispatcher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
