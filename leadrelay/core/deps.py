"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from leadrelay.core.config import settings
from leadrelay.core.security import constant_time_equals
from leadrelay.db.session import SessionLocal
from leadrelay.schemas.auth import AgencySession, PortalSession
from leadrelay.services import auth_service, client_session_service
from leadrelay.services.permission_service import has_all_permissions


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# Agency dashboard
# =============================================================================

def get_agency_session(request: Request, db: Session = Depends(get_db)) -> AgencySession | None:
    """Resolve the agency session from the login cookie, or None."""
    user = auth_service.get_user_for_token(db, request.cookies.get(auth_service.AGENCY_COOKIE_NAME))
    if not user:
        return None
    return auth_service.build_agency_session(db, user)


def require_agency_permission(*permissions: str):
    """
    Dependency factory for agency permission checks.

    Usage:
        @router.get("/clients")
        def list_clients(session: AgencySession = Depends(require_agency_permission("agency.clients.view"))):
            ...

    Raises:
        HTTPException 401: No agency session
        HTTPException 403: Missing any of the listed permissions
    """
    def dependency(session: AgencySession | None = Depends(get_agency_session)) -> AgencySession:
        if session is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        if not has_all_permissions(session.permissions, permissions):
            raise HTTPException(status_code=403, detail="Forbidden: insufficient permissions")
        return session
    return dependency


def require_agency_client_permission(*permissions: str):
    """
    Like require_agency_permission, plus a client scope check on the
    `client_id` path parameter.

    Raises:
        HTTPException 403: Client is outside the member's assigned scope
    """
    permission_dep = require_agency_permission(*permissions)

    def dependency(client_id: UUID, session: AgencySession = Depends(permission_dep)) -> AgencySession:
        if not auth_service.can_access_client(session, client_id):
            raise HTTPException(status_code=403, detail="Forbidden: client not in scope")
        return session
    return dependency


# =============================================================================
# Client portal
# =============================================================================

def get_portal_session(request: Request, db: Session = Depends(get_db)) -> PortalSession | None:
    return client_session_service.read_session(db, request)


def require_portal_session(
    request: Request,
    session: PortalSession | None = Depends(get_portal_session),
) -> PortalSession:
    """Any authenticated portal user. Rejected cookies are cleared."""
    if session is None:
        headers = None
        if request.cookies.get(client_session_service.COOKIE_NAME):
            headers = {"set-cookie": client_session_service.clear_cookie_header()}
        raise HTTPException(status_code=401, detail="Unauthorized", headers=headers)
    return session


def require_portal_permission(*permissions: str):
    """
    Dependency factory for portal permission checks.

    Raises:
        HTTPException 401: No valid portal session
        HTTPException 403: Missing any of the listed permissions
    """
    def dependency(session: PortalSession = Depends(require_portal_session)) -> PortalSession:
        if not has_all_permissions(session.permissions, permissions):
            raise HTTPException(status_code=403, detail="Forbidden: insufficient permissions")
        return session
    return dependency


# =============================================================================
# Scheduled jobs
# =============================================================================

def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>` on /api/cron/* endpoints."""
    expected = settings.CRON_SECRET
    if not expected or not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not constant_time_equals(authorization, f"Bearer {expected}"):
        raise HTTPException(status_code=401, detail="Unauthorized")
