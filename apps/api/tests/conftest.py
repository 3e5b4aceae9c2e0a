"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite schema per test
- Identity token minting for authenticated requests
- HTTPX AsyncClient wired to the app with dependency overrides
- A recording email sender and a mock outbound HTTP transport
"""
import os
import uuid
from dataclasses import dataclass, field
from typing import AsyncGenerator, Callable, Generator

# Must be set before any projecthub import reads settings.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["TESTING"] = "1"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["EMAIL_PROVIDER"] = "log"
os.environ["SENTRY_DSN"] = ""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from projecthub.core.deps import get_db, get_email_sender
from projecthub.core.errors import TransportError
from projecthub.core.security import create_identity_token
from projecthub.db import models  # noqa: F401  registers tables
from projecthub.db.base import Base
from projecthub.db.enums import Role
from projecthub.db.models import Organization, OrganizationMember
from projecthub.db.session import SessionLocal, engine
from projecthub.main import app
from projecthub.routers import internal
from projecthub.services import org_service
from projecthub.services.email_service import EmailMessage

INTERNAL_HEADERS = {"X-Internal-Secret": "test-internal-secret"}


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Session on a freshly created schema.

    App code commits freely; the whole schema is dropped afterwards.
    """
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


# =============================================================================
# Identity Fixtures
# =============================================================================

@dataclass
class Actor:
    """A signed-in caller."""
    user_id: uuid.UUID
    email: str

    @property
    def token(self) -> str:
        return create_identity_token(self.user_id, self.email)

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


def new_actor(prefix: str = "user") -> Actor:
    return Actor(user_id=uuid.uuid4(), email=f"{prefix}-{uuid.uuid4().hex[:8]}@example.com")


@pytest.fixture(scope="function")
def owner() -> Actor:
    return new_actor("owner")


@pytest.fixture(scope="function")
def make_actor() -> Callable[[str], Actor]:
    """Factory for callers with no profile or membership yet."""
    return new_actor


@pytest.fixture(scope="function")
def internal_headers() -> dict[str, str]:
    return dict(INTERNAL_HEADERS)


@pytest.fixture(scope="function")
def test_org(db: Session, owner: Actor) -> Organization:
    """FREE-plan organization (5 users, 3 projects) owned by ``owner``."""
    org, _ = org_service.create_org(
        db,
        owner_id=owner.user_id,
        owner_email=owner.email,
        name="Acme",
        slug=f"acme-{uuid.uuid4().hex[:8]}",
    )
    return org


@pytest.fixture(scope="function")
def add_member(db: Session) -> Callable[..., Actor]:
    """Factory that seats a new user in an organization with ``role``."""
    def factory(org: Organization, role: Role = Role.MEMBER, first_name: str | None = None) -> Actor:
        actor = new_actor(role.value.lower())
        org_service.ensure_user(db, actor.user_id, actor.email, first_name=first_name)
        db.add(OrganizationMember(
            organization_id=org.id,
            user_id=actor.user_id,
            role=role.value,
            permissions=[],
        ))
        db.query(Organization).filter(Organization.id == org.id).update(
            {Organization.current_users: Organization.current_users + 1},
            synchronize_session=False,
        )
        db.commit()
        return actor
    return factory


# =============================================================================
# Outbound Fakes
# =============================================================================

@dataclass
class RecordingSender:
    """Email sender that keeps messages in memory; ``fail`` simulates an outage."""
    sent: list[EmailMessage] = field(default_factory=list)
    fail: bool = False

    def send(self, message: EmailMessage) -> str | None:
        if self.fail:
            raise TransportError("Email provider returned 500")
        self.sent.append(message)
        return f"msg-{len(self.sent)}"


@pytest.fixture(scope="function")
def sender() -> RecordingSender:
    return RecordingSender()


@dataclass
class OutboundRecorder:
    """MockTransport handler that records requests and answers with ``status_code``."""
    requests: list[httpx.Request] = field(default_factory=list)
    status_code: int = 200
    error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"ok": self.status_code < 300})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture(scope="function")
def outbound() -> OutboundRecorder:
    return OutboundRecorder()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(
    db: Session,
    sender: RecordingSender,
    outbound: OutboundRecorder,
) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient against the app with database, email, and HTTP fakes."""
    def override_get_db():
        yield db

    async def override_outbound_client():
        async with outbound.client() as c:
            yield c

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_sender] = lambda: sender
    app.dependency_overrides[internal.get_outbound_client] = override_outbound_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
