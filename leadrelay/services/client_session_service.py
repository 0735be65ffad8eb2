"""Client portal session cookie: issue, validate, and invalidate.

Cookie value is `base64(json).hmac_sha256_hex`. The legacy format signs the
bare client id and resolves through the client's owner membership.
"""

import logging
from uuid import UUID

from fastapi import Request, Response
from sqlalchemy.orm import Session, joinedload

from leadrelay.core.config import settings
from leadrelay.core.exceptions import PermissionDeniedError
from leadrelay.core.permissions import PORTAL_PERMISSIONS
from leadrelay.core.security import (
    decode_session_payload,
    encode_session_payload,
    sign_payload,
    verify_payload,
)
from leadrelay.db.enums import ClientStatus
from leadrelay.db.models import Client, ClientMembership
from leadrelay.schemas.auth import PortalSession
from leadrelay.services.permission_service import get_membership_permissions

logger = logging.getLogger(__name__)

COOKIE_NAME = "clientSessionId"
PENDING_COOKIE_NAME = "clientPendingPerson"


def _max_age() -> int:
    return 60 * 60 * 24 * settings.CLIENT_SESSION_DAYS


def _set_cookie(response: Response, key: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=key,
        value=value,
        max_age=max_age,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


def get_active_membership(db: Session, person_id: UUID, client_id: UUID) -> ClientMembership | None:
    """Active membership on an active client, with its role template loaded."""
    return (
        db.query(ClientMembership)
        .options(joinedload(ClientMembership.role_template))
        .join(Client, Client.id == ClientMembership.client_id)
        .filter(
            ClientMembership.person_id == person_id,
            ClientMembership.client_id == client_id,
            ClientMembership.is_active.is_(True),
            Client.status == ClientStatus.ACTIVE.value,
        )
        .first()
    )


def set_permission_cookie(response: Response, db: Session, person_id: UUID, client_id: UUID) -> ClientMembership:
    """Issue the permission-carrying cookie for an active membership."""
    membership = get_active_membership(db, person_id, client_id)
    if not membership:
        raise PermissionDeniedError("No active membership found for this business.")

    payload = encode_session_payload(
        {
            "personId": str(person_id),
            "clientId": str(client_id),
            "permissions": sorted(get_membership_permissions(membership)),
            "sessionVersion": membership.session_version,
        }
    )
    _set_cookie(response, COOKIE_NAME, sign_payload(payload), _max_age())
    return membership


def set_legacy_cookie(response: Response, client_id: UUID) -> None:
    _set_cookie(response, COOKIE_NAME, sign_payload(str(client_id)), _max_age())


def clear_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME, path="/")


def set_pending_person_cookie(response: Response, token: str, max_age: int) -> None:
    _set_cookie(response, PENDING_COOKIE_NAME, token, max_age)


def clear_pending_person_cookie(response: Response) -> None:
    response.delete_cookie(PENDING_COOKIE_NAME, path="/")


def clear_cookie_header() -> str:
    """Set-Cookie header value that clears the portal cookie (for error responses)."""
    scratch = Response()
    clear_cookie(scratch)
    return scratch.headers["set-cookie"]


def read_session(db: Session, request: Request) -> PortalSession | None:
    """
    Resolve the portal session for a request.

    Returns None when the cookie is missing, tampered, stale (membership
    session_version bumped), or points at an inactive membership.
    """
    raw = request.cookies.get(COOKIE_NAME)
    if not raw:
        return None

    payload = verify_payload(raw)
    if payload is None:
        logger.info("Rejected client session cookie with bad signature")
        return None

    data = decode_session_payload(payload)
    if data is not None:
        return _read_permission_session(db, data)
    return _read_legacy_session(db, payload)


def _read_permission_session(db: Session, data: dict) -> PortalSession | None:
    try:
        person_id = UUID(str(data["personId"]))
        client_id = UUID(str(data["clientId"]))
        cookie_version = int(data["sessionVersion"])
    except (KeyError, ValueError, TypeError):
        return None

    membership = get_active_membership(db, person_id, client_id)
    if not membership:
        return None
    if membership.session_version > cookie_version:
        logger.info("Rejected stale client session for membership %s", membership.id)
        return None

    return PortalSession(
        client_id=client_id,
        person_id=person_id,
        membership_id=membership.id,
        permissions=get_membership_permissions(membership),
        is_owner=membership.is_owner,
    )


def _read_legacy_session(db: Session, payload: str) -> PortalSession | None:
    try:
        client_id = UUID(payload)
    except ValueError:
        return None

    client = db.query(Client).filter(Client.id == client_id).first()
    if not client or client.status != ClientStatus.ACTIVE.value:
        return None

    owner = (
        db.query(ClientMembership)
        .options(joinedload(ClientMembership.role_template))
        .filter(
            ClientMembership.client_id == client_id,
            ClientMembership.is_owner.is_(True),
            ClientMembership.is_active.is_(True),
        )
        .first()
    )
    if owner:
        return PortalSession(
            client_id=client_id,
            person_id=owner.person_id,
            membership_id=owner.id,
            permissions=get_membership_permissions(owner),
            is_owner=True,
            is_legacy=True,
        )

    # Pre-membership clients: the cookie holder is the owner
    return PortalSession(
        client_id=client_id,
        permissions=set(PORTAL_PERMISSIONS),
        is_owner=True,
        is_legacy=True,
    )


def invalidate_client_session(db: Session, membership_id: UUID) -> None:
    """Bump session_version so outstanding cookies for this membership stop working."""
    membership = db.query(ClientMembership).filter(ClientMembership.id == membership_id).first()
    if not membership:
        return
    membership.session_version = membership.session_version + 1
    db.flush()
