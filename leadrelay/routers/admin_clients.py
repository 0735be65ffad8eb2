"""Agency dashboard: client accounts and their teams."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.async_utils import run_async
from leadrelay.core.deps import get_db, require_agency_client_permission, require_agency_permission
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import agency_communication_service, client_service, team_service
from leadrelay.services.feature_service import FEATURE_FLAGS

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# Schemas
# =============================================================================

class ClientCreate(BaseModel):
    businessName: str = Field(..., min_length=1, max_length=255)
    ownerName: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    phone: str = Field(..., min_length=7, max_length=20)
    timezone: str = "America/Edmonton"
    googleBusinessUrl: str | None = None


class ClientUpdate(BaseModel):
    businessName: str | None = None
    ownerName: str | None = None
    email: str | None = None
    phone: str | None = None
    timezone: str | None = None
    googleBusinessUrl: str | None = None
    twilioNumber: str | None = None
    status: str | None = None
    monthlyMessageLimit: int | None = Field(default=None, ge=0)
    notificationEmail: bool | None = None
    notificationSms: bool | None = None
    weeklySummaryEnabled: bool | None = None
    weeklySummaryDay: int | None = Field(default=None, ge=0, le=6)
    weeklySummaryTime: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    voiceId: str | None = None
    features: dict[str, bool] | None = None


_UPDATE_COLUMNS = {
    "businessName": "business_name",
    "ownerName": "owner_name",
    "email": "email",
    "phone": "phone",
    "timezone": "timezone",
    "googleBusinessUrl": "google_business_url",
    "twilioNumber": "twilio_number",
    "status": "status",
    "monthlyMessageLimit": "monthly_message_limit",
    "notificationEmail": "notification_email",
    "notificationSms": "notification_sms",
    "weeklySummaryEnabled": "weekly_summary_enabled",
    "weeklySummaryDay": "weekly_summary_day",
    "weeklySummaryTime": "weekly_summary_time",
    "voiceId": "voice_id",
}


class TransferOwnershipRequest(BaseModel):
    targetMembershipId: UUID
    confirmName: str = Field(..., min_length=1)


def _column_updates(body: ClientUpdate) -> dict:
    provided = body.model_dump(exclude_unset=True)
    updates = {_UPDATE_COLUMNS[key]: value for key, value in provided.items() if key in _UPDATE_COLUMNS}
    for flag, enabled in (provided.get("features") or {}).items():
        if flag not in FEATURE_FLAGS:
            raise HTTPException(status_code=400, detail=f"Unknown feature flag '{flag}'")
        updates[FEATURE_FLAGS[flag]] = enabled
    return updates


# =============================================================================
# Clients
# =============================================================================

@router.get("")
def list_clients(
    status: str | None = None,
    session: AgencySession = Depends(require_agency_permission("agency.clients.view")),
    db: Session = Depends(get_db),
):
    clients = client_service.list_clients(db, session, status)
    return {"clients": [client_service.serialize_client(c) for c in clients]}


@router.post("", status_code=201)
def create_client(
    body: ClientCreate,
    request: Request,
    session: AgencySession = Depends(require_agency_permission("agency.clients.create")),
    db: Session = Depends(get_db),
):
    client = client_service.create_client(
        db,
        business_name=body.businessName,
        owner_name=body.ownerName,
        email=body.email,
        phone=body.phone,
        timezone=body.timezone,
        google_business_url=body.googleBusinessUrl,
        actor_person_id=session.person_id,
        request=request,
    )
    return {"client": client_service.serialize_client(client)}


@router.get("/{client_id}")
def get_client(
    client_id: UUID,
    session: AgencySession = Depends(require_agency_client_permission("agency.clients.view")),
    db: Session = Depends(get_db),
):
    return {"client": client_service.serialize_client(client_service.get_client(db, client_id))}


@router.patch("/{client_id}")
def update_client(
    client_id: UUID,
    body: ClientUpdate,
    request: Request,
    session: AgencySession = Depends(require_agency_client_permission("agency.clients.edit")),
    db: Session = Depends(get_db),
):
    client, activated = client_service.update_client(
        db,
        client_id,
        _column_updates(body),
        actor_person_id=session.person_id,
        request=request,
    )
    if activated:
        run_async(agency_communication_service.send_onboarding_notification(db, client.id), timeout=30)
    return {"client": client_service.serialize_client(client)}


@router.delete("/{client_id}")
def cancel_client(
    client_id: UUID,
    request: Request,
    session: AgencySession = Depends(require_agency_client_permission("agency.clients.delete")),
    db: Session = Depends(get_db),
):
    client_service.cancel_client(db, client_id, actor_person_id=session.person_id, request=request)
    return {"success": True}


# =============================================================================
# Client team
# =============================================================================

@router.get("/{client_id}/team")
def list_client_team(
    client_id: UUID,
    session: AgencySession = Depends(require_agency_client_permission("agency.clients.view")),
    db: Session = Depends(get_db),
):
    client_service.get_client(db, client_id)
    members = team_service.list_client_team(db, client_id)
    return {"members": [team_service.serialize_client_member(m) for m in members]}


@router.post("/{client_id}/team/transfer-ownership")
def transfer_ownership(
    client_id: UUID,
    body: TransferOwnershipRequest,
    request: Request,
    session: AgencySession = Depends(require_agency_client_permission("agency.clients.edit")),
    db: Session = Depends(get_db),
):
    team_service.transfer_ownership(
        db,
        client_id,
        body.targetMembershipId,
        body.confirmName,
        actor_person_id=session.person_id,
        request=request,
    )
    return {"success": True}
