"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, rebuilt for every test
- Session token minting for authenticated tests
- HTTPX AsyncClient against the ASGI app
- Factories for contacts and verification requests
"""
import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncGenerator, Generator

# Must be set before any willtank import reads settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "dev"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["RESEND_API_KEY"] = ""
os.environ["STORAGE_BACKEND"] = "local"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from willtank.core.config import settings
from willtank.core.deps import get_db
from willtank.core.security import create_session_token
from willtank.db.base import Base
from willtank.db.enums import ContactType, TriggerReason
from willtank.db.models import User, VerificationRequest
from willtank.db.session import SessionLocal, engine
from willtank.main import app
from willtank.services import contact_service, email_service, verification_service
from willtank.services.email_service import EmailResult

# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test; app code commits freely."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def local_storage(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "LOCAL_STORAGE_PATH", str(tmp_path / "documents"))
    return tmp_path / "documents"


@pytest.fixture(scope="function")
def test_user(db: Session) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"owner-{uuid.uuid4().hex[:8]}@test.com",
        full_name="Alex Owner",
    )
    db.add(user)
    db.commit()
    return user


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user: User
    token: str


@pytest.fixture(scope="function")
def test_auth(test_user: User) -> TestAuth:
    token = create_session_token(
        user_id=test_user.id,
        email=test_user.email,
        full_name=test_user.full_name,
    )
    return TestAuth(user=test_user, token=token)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client for public, executor and internal endpoints."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    test_auth: TestAuth,
) -> AsyncGenerator[AsyncClient, None]:
    """Client carrying the owner's platform session token."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {test_auth.token}"},
    ) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# E-mail
# =============================================================================

@pytest.fixture
def sent_emails(monkeypatch) -> list[dict]:
    """Capture outgoing e-mail instead of calling the provider."""
    outbox: list[dict] = []

    async def fake_send_email(**kwargs):
        outbox.append(kwargs)
        return EmailResult(success=True, message_id=f"msg-{len(outbox)}")

    monkeypatch.setattr(email_service, "send_email", fake_send_email)
    return outbox


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_contacts(db: Session, test_user: User):
    """Create one contact per type given, named by type and position."""
    def _make(*types: ContactType, user: User | None = None):
        owner = user or test_user
        contacts = []
        for i, contact_type in enumerate(types):
            contacts.append(
                contact_service.create_contact(
                    db,
                    user_id=owner.id,
                    contact_type=contact_type,
                    name=f"{contact_type.value.title()} {i}",
                    email=f"{contact_type.value}-{i}@example.com",
                    is_primary=contact_type == ContactType.EXECUTOR,
                )
            )
        return contacts
    return _make


@pytest.fixture
def open_request(db: Session, test_user: User):
    """Open a pending request for test_user."""
    def _open(now: datetime | None = None) -> VerificationRequest:
        request, _ = verification_service.open_request(
            db,
            user_id=test_user.id,
            trigger_reason=TriggerReason.MANUAL,
            initiated_by="test",
            now=now,
        )
        return request
    return _open


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"X-Internal-Secret": "test-internal-secret"}
