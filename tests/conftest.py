"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, emptied after each test
- Factories for clients, people, and memberships
- HTTPX AsyncClients for anonymous, agency, and portal requests
"""
import os
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Generator

# Settings are read at import time, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "dev"
os.environ["CLIENT_SESSION_SECRET"] = "test-client-session-secret"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["APP_URL"] = "http://test"
for _provider_key in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "STRIPE_SECRET_KEY", "RESEND_API_KEY"):
    os.environ.pop(_provider_key, None)

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db
from leadrelay.core.security import encode_session_payload, sign_payload
from leadrelay.db.base import Base
from leadrelay.db.enums import ClientStatus
from leadrelay.db.models import Client, ClientMembership, Person, User
from leadrelay.db.session import SessionLocal, engine
from leadrelay.main import app
from leadrelay.services import auth_service, client_session_service
from leadrelay.services.permission_service import get_role_template_by_slug, seed_role_templates


# =============================================================================
# Database Fixtures
# =============================================================================

Base.metadata.create_all(bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Session on the shared in-memory database with built-in roles seeded.

    App code commits freely; every table is emptied afterwards.
    """
    session = SessionLocal()
    seed_role_templates(session)
    yield session
    session.rollback()
    session.close()
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_client(db: Session) -> Callable[..., Client]:
    def _make(**overrides) -> Client:
        suffix = uuid.uuid4().hex[:8]
        values = {
            "business_name": f"Acme Plumbing {suffix}",
            "owner_name": "Dana Owner",
            "email": f"owner-{suffix}@example.com",
            "phone": "+14035550100",
            "status": ClientStatus.ACTIVE.value,
            "twilio_number": "+14035559999",
        }
        values.update(overrides)
        client = Client(**values)
        db.add(client)
        db.commit()
        db.refresh(client)
        return client
    return _make


@pytest.fixture
def make_person(db: Session) -> Callable[..., Person]:
    def _make(name: str = "Sam Member", email: str | None = None, phone: str | None = None) -> Person:
        person = Person(
            name=name,
            email=email or f"person-{uuid.uuid4().hex[:8]}@example.com",
            phone=phone,
        )
        db.add(person)
        db.commit()
        db.refresh(person)
        return person
    return _make


@pytest.fixture
def make_membership(db: Session) -> Callable[..., ClientMembership]:
    def _make(
        person: Person,
        client: Client,
        role_slug: str = "team_member",
        is_owner: bool = False,
        **overrides,
    ) -> ClientMembership:
        template = get_role_template_by_slug(db, role_slug)
        membership = ClientMembership(
            person_id=person.id,
            client_id=client.id,
            role_template_id=template.id,
            is_owner=is_owner,
            **overrides,
        )
        db.add(membership)
        db.commit()
        db.refresh(membership)
        return membership
    return _make


@dataclass
class PortalAuth:
    """A business owner signed in to their client portal."""
    client: Client
    person: Person
    membership: ClientMembership
    cookie: str


@pytest.fixture
def portal_auth(make_client, make_person, make_membership) -> PortalAuth:
    client = make_client()
    person = make_person(name="Dana Owner", phone="+14035550100")
    membership = make_membership(person, client, role_slug="business_owner", is_owner=True)
    return PortalAuth(client, person, membership, portal_cookie(membership))


def portal_cookie(membership: ClientMembership) -> str:
    """Signed permission cookie for a membership, as the login flow would issue it."""
    payload = encode_session_payload(
        {
            "personId": str(membership.person_id),
            "clientId": str(membership.client_id),
            "permissions": [],
            "sessionVersion": membership.session_version,
        }
    )
    return sign_payload(payload)


@pytest.fixture
def agency_user(db: Session) -> User:
    """Legacy agency admin: every agency permission, every client."""
    user = User(email=f"admin-{uuid.uuid4().hex[:8]}@agency.test", name="Agency Admin", is_admin=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


# =============================================================================
# Client Fixtures
# =============================================================================

def _override_db(db: Session) -> None:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient for public endpoints."""
    _override_db(db)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def agency_client(db: Session, agency_user: User) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient carrying an agency login session cookie."""
    token = auth_service.create_login_session(db, agency_user.id)
    _override_db(db)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={auth_service.AGENCY_COOKIE_NAME: token},
    ) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def portal_client(db: Session, portal_auth: PortalAuth) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient signed in to the portal as the business owner."""
    _override_db(db)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={client_session_service.COOKIE_NAME: portal_auth.cookie},
    ) as c:
        yield c
    app.dependency_overrides.clear()


# =============================================================================
# Provider fakes
# =============================================================================

@dataclass
class SentSms:
    to: str
    body: str
    from_: str


@pytest.fixture
def sent_sms(monkeypatch) -> list[SentSms]:
    """Capture outgoing SMS instead of calling Twilio."""
    from leadrelay.services import sms_service

    outbox: list[SentSms] = []

    def fake_send_sms(to: str, body: str, from_: str) -> str:
        outbox.append(SentSms(to, body, from_))
        return f"SM{uuid.uuid4().hex}"

    monkeypatch.setattr(sms_service, "send_sms", fake_send_sms)
    return outbox


@pytest.fixture
def sent_emails(monkeypatch) -> list[dict]:
    """Capture outgoing email instead of calling Resend."""
    from leadrelay.services import email_service

    outbox: list[dict] = []

    async def fake_send_email(*, to, subject, html, text=None, idempotency_key=None):
        outbox.append({"to": to, "subject": subject, "html": html})
        return {"success": True, "id": f"email-{len(outbox)}"}

    monkeypatch.setattr(email_service, "send_email", fake_send_email)
    return outbox


@pytest.fixture
def cookie_for() -> Callable[[ClientMembership], str]:
    """Portal cookie factory for extra memberships."""
    return portal_cookie
