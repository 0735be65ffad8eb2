"""Client portal login: OTP by SMS/email, magic links, and business selection."""

import logging
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.async_utils import run_async
from leadrelay.core.config import settings
from leadrelay.core.deps import get_db, get_portal_session, require_portal_session
from leadrelay.core.exceptions import PermissionDeniedError
from leadrelay.core.rate_limit import AUTH_LIMIT, limiter
from leadrelay.core.security import (
    PENDING_PERSON_MINUTES,
    create_pending_person_token,
    decode_pending_person_token,
)
from leadrelay.db.enums import AuditAction
from leadrelay.db.models import ClientMembership, Person
from leadrelay.schemas.auth import PortalSession
from leadrelay.services import audit_service, client_session_service, magic_link_service, otp_service
from leadrelay.utils.dates import utcnow

router = APIRouter()
logger = logging.getLogger(__name__)


class SendOtpRequest(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=255)
    method: Literal["phone", "email"]


class VerifyOtpRequest(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., pattern=r"^\d{6}$")
    method: Literal["phone", "email"]


class BusinessRequest(BaseModel):
    clientId: UUID


def _normalize(identifier: str, method: str) -> str:
    try:
        normalized = otp_service.normalize_identifier(identifier, method)
    except ValueError:
        normalized = ""
    if not normalized:
        raise HTTPException(status_code=400, detail="Invalid identifier")
    return normalized


@router.post("/send-otp")
@limiter.limit(AUTH_LIMIT)
def send_otp(request: Request, body: SendOtpRequest, db: Session = Depends(get_db)):
    identifier = _normalize(body.identifier, body.method)
    result = run_async(otp_service.send_otp(db, identifier, body.method), timeout=30)
    if not result.success:
        return JSONResponse(
            status_code=429,
            content={"error": result.error, "retryAfterSeconds": result.retry_after_seconds},
        )
    return {"success": True}


@router.post("/verify-otp")
@limiter.limit(AUTH_LIMIT)
def verify_otp(request: Request, body: VerifyOtpRequest, response: Response, db: Session = Depends(get_db)):
    identifier = _normalize(body.identifier, body.method)
    result = otp_service.verify_otp(db, identifier, body.method, body.code)
    if not result.success:
        content: dict = {"error": result.error}
        if result.error == "wrong_code":
            content["attemptsRemaining"] = result.attempts_remaining
        return JSONResponse(status_code=401, content=content)

    businesses = otp_service.list_person_businesses(db, result.person_id)
    if not businesses:
        return JSONResponse(status_code=403, content={"error": "No active businesses found."})

    if len(businesses) == 1:
        client_id = UUID(businesses[0]["clientId"])
        _complete_login(db, response, request, result.person_id, client_id)
        return {"success": True, "clientId": str(client_id)}

    client_session_service.set_pending_person_cookie(
        response, create_pending_person_token(result.person_id), PENDING_PERSON_MINUTES * 60
    )
    return {"success": True, "requiresBusinessSelection": True, "businesses": businesses}


def _complete_login(db: Session, response: Response, request: Request, person_id: UUID, client_id: UUID) -> None:
    client_session_service.set_permission_cookie(response, db, person_id, client_id)
    person = db.get(Person, person_id)
    if person:
        person.last_login_at = utcnow()
    audit_service.log_event(
        db,
        AuditAction.AUTH_LOGIN,
        person_id=person_id,
        client_id=client_id,
        request=request,
    )
    db.commit()


@router.post("/select-business")
def select_business(
    request: Request,
    body: BusinessRequest,
    response: Response,
    db: Session = Depends(get_db),
    session: PortalSession | None = Depends(get_portal_session),
):
    person_id = decode_pending_person_token(request.cookies.get(client_session_service.PENDING_COOKIE_NAME))
    if person_id is None and session is not None:
        person_id = session.person_id
    if person_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    _complete_login(db, response, request, person_id, body.clientId)
    client_session_service.clear_pending_person_cookie(response)
    return {"success": True, "clientId": str(body.clientId)}


@router.post("/switch-business")
def switch_business(
    request: Request,
    body: BusinessRequest,
    response: Response,
    db: Session = Depends(get_db),
    session: PortalSession = Depends(require_portal_session),
):
    if session.is_legacy or session.person_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    client_session_service.set_permission_cookie(response, db, session.person_id, body.clientId)
    audit_service.log_event(
        db,
        AuditAction.AUTH_BUSINESS_SWITCHED,
        person_id=session.person_id,
        client_id=body.clientId,
        details={"previousClientId": str(session.client_id)},
        request=request,
    )
    db.commit()
    return {"success": True, "clientId": str(body.clientId)}


@router.post("/logout")
def logout(response: Response):
    client_session_service.clear_cookie(response)
    client_session_service.clear_pending_person_cookie(response)
    return {"success": True}


@router.get("/session")
def get_session(session: PortalSession = Depends(require_portal_session), db: Session = Depends(get_db)):
    businesses = otp_service.list_person_businesses(db, session.person_id) if session.person_id else []
    person = db.get(Person, session.person_id) if session.person_id else None
    return {
        "clientId": str(session.client_id),
        "personId": str(session.person_id) if session.person_id else None,
        "personName": person.name if person else None,
        "membershipId": str(session.membership_id) if session.membership_id else None,
        "permissions": sorted(session.permissions),
        "isOwner": session.is_owner,
        "isLegacy": session.is_legacy,
        "businesses": businesses,
    }


@router.get("/magic")
def magic_link_login(token: str | None = None, db: Session = Depends(get_db)):
    client_id = magic_link_service.validate_magic_link(db, token)
    if client_id is None:
        return RedirectResponse(url=f"{settings.app_url}/client/login?error=link_expired", status_code=302)

    response = RedirectResponse(url=f"{settings.app_url}/client", status_code=302)
    owner = (
        db.query(ClientMembership)
        .filter(
            ClientMembership.client_id == client_id,
            ClientMembership.is_owner.is_(True),
            ClientMembership.is_active.is_(True),
        )
        .first()
    )
    if owner:
        try:
            client_session_service.set_permission_cookie(response, db, owner.person_id, client_id)
        except PermissionDeniedError:
            db.commit()
            logger.info("Magic link for inactive client %s refused", client_id)
            return RedirectResponse(url=f"{settings.app_url}/client/login?error=link_expired", status_code=302)
    else:
        client_session_service.set_legacy_cookie(response, client_id)
    db.commit()
    return response
