"""Agency authentication: email sign-in tokens, login sessions, and RBAC context."""

import logging
from datetime import timedelta
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from leadrelay.core.config import settings
from leadrelay.core.permissions import AGENCY_PERMISSIONS
from leadrelay.core.security import generate_token, hash_token
from leadrelay.db.enums import ClientScope
from leadrelay.db.models import (
    AgencyClientAssignment,
    AgencyMembership,
    AuthSession,
    User,
    VerificationToken,
)
from leadrelay.schemas.auth import AgencySession
from leadrelay.utils.dates import utcnow

logger = logging.getLogger(__name__)

AGENCY_COOKIE_NAME = "agency_session"


class SignInTokenError(Exception):
    """Raised when an agency sign-in link cannot be redeemed."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


# =============================================================================
# Sign-in tokens
# =============================================================================

def create_signin_token(db: Session, email: str) -> str:
    """Replace any outstanding sign-in tokens for `email` with a fresh one."""
    db.query(VerificationToken).filter(VerificationToken.identifier == email).delete()
    token = generate_token(32)
    db.add(
        VerificationToken(
            identifier=email,
            token_hash=hash_token(token),
            expires_at=utcnow() + timedelta(hours=settings.AGENCY_MAGIC_LINK_HOURS),
        )
    )
    db.commit()
    return token


def build_signin_url(email: str, token: str) -> str:
    query = urlencode({"token": token, "email": email})
    return f"{settings.app_url}/api/auth/verify?{query}"


def redeem_signin_token(db: Session, email: str, token: str) -> User:
    """
    Consume a sign-in token and return the (possibly new) user.

    Raises:
        SignInTokenError: code is "invalid_token" or "token_expired"
    """
    record = (
        db.query(VerificationToken)
        .filter(
            VerificationToken.identifier == email,
            VerificationToken.token_hash == hash_token(token),
        )
        .first()
    )
    if not record:
        raise SignInTokenError("invalid_token")

    if record.expires_at < utcnow():
        db.delete(record)
        db.commit()
        raise SignInTokenError("token_expired")

    user = db.query(User).filter(User.email == email).first()
    if not user:
        user = User(email=email, name=email.split("@")[0])
        db.add(user)
        logger.info("Created agency user on first sign-in")

    db.delete(record)
    db.commit()
    db.refresh(user)
    return user


# =============================================================================
# Login sessions
# =============================================================================

def create_login_session(db: Session, user_id: UUID) -> str:
    """Create a DB-backed login session and return the raw cookie token."""
    token = generate_token(32)
    db.add(
        AuthSession(
            token_hash=hash_token(token),
            user_id=user_id,
            expires_at=utcnow() + timedelta(days=settings.AGENCY_SESSION_DAYS),
        )
    )
    db.commit()
    return token


def get_user_for_token(db: Session, token: str | None) -> User | None:
    if not token:
        return None
    session = (
        db.query(AuthSession)
        .filter(AuthSession.token_hash == hash_token(token))
        .first()
    )
    if not session or session.expires_at < utcnow():
        return None
    return db.query(User).filter(User.id == session.user_id).first()


def revoke_login_session(db: Session, token: str | None) -> None:
    if not token:
        return
    db.query(AuthSession).filter(AuthSession.token_hash == hash_token(token)).delete()
    db.commit()


# =============================================================================
# RBAC context
# =============================================================================

def build_agency_session(db: Session, user: User) -> AgencySession | None:
    """
    Resolve agency permissions for a logged-in user.

    - Person with active agency membership → role template permissions
    - Legacy is_admin user without a person → all agency permissions
    - Anything else → None
    """
    if user.person_id:
        membership = (
            db.query(AgencyMembership)
            .options(joinedload(AgencyMembership.role_template))
            .filter(
                AgencyMembership.person_id == user.person_id,
                AgencyMembership.is_active.is_(True),
            )
            .first()
        )
        if not membership:
            return None

        assigned: list[UUID] | None = None
        if membership.client_scope == ClientScope.ASSIGNED.value:
            assigned = [
                client_id
                for (client_id,) in db.query(AgencyClientAssignment.client_id)
                .filter(AgencyClientAssignment.agency_membership_id == membership.id)
                .all()
            ]

        return AgencySession(
            user_id=user.id,
            person_id=user.person_id,
            membership_id=membership.id,
            permissions=set(membership.role_template.permissions or []),
            client_scope=ClientScope(membership.client_scope),
            assigned_client_ids=assigned,
        )

    if user.is_admin:
        return AgencySession(
            user_id=user.id,
            permissions=set(AGENCY_PERMISSIONS),
            client_scope=ClientScope.ALL,
            is_legacy=True,
        )

    return None


def can_access_client(session: AgencySession, client_id: UUID) -> bool:
    """Scope check: 'all' sees everything, 'assigned' sees its assignment list."""
    if session.client_scope == ClientScope.ALL:
        return True
    return client_id in (session.assigned_client_ids or [])
