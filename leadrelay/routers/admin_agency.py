"""Agency-to-client messaging and agency-wide settings."""

from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_agency_permission
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import agency_communication_service
from leadrelay.services.agency_communication_service import DEFAULT_PROMPT_HOURS, PROMPT_ACTIONS
from leadrelay.services.auth_service import can_access_client
from leadrelay.utils.pagination import PaginatedResponse, PaginationParams, get_pagination

router = APIRouter()


class AgencyMessageCreate(BaseModel):
    clientId: UUID
    kind: Literal["prompt", "alert"]
    message: str = Field(..., min_length=1, max_length=1600)
    promptType: str | None = None
    actionPayload: dict[str, Any] = Field(default_factory=dict)
    expiresInHours: int = Field(default=DEFAULT_PROMPT_HOURS, ge=1, le=168)
    isUrgent: bool = False


class AgencySettingsUpdate(BaseModel):
    agencyTwilioNumber: str | None = None


@router.get("/messages")
def list_messages(
    clientId: UUID | None = None,
    category: str | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    session: AgencySession = Depends(require_agency_permission("agency.conversations.view")),
    db: Session = Depends(get_db),
):
    if clientId and not can_access_client(session, clientId):
        raise HTTPException(status_code=403, detail="Forbidden: client not in scope")
    items, total = agency_communication_service.list_messages(
        db,
        client_id=clientId,
        category=category,
        offset=pagination.offset,
        limit=pagination.per_page,
    )
    return PaginatedResponse.create(
        [agency_communication_service.serialize_message(m) for m in items], total, pagination
    )


@router.post("/messages", status_code=201)
def send_message(
    body: AgencyMessageCreate,
    session: AgencySession = Depends(require_agency_permission("agency.conversations.respond")),
    db: Session = Depends(get_db),
):
    if not can_access_client(session, body.clientId):
        raise HTTPException(status_code=403, detail="Forbidden: client not in scope")

    if body.kind == "prompt":
        if body.promptType not in PROMPT_ACTIONS:
            raise HTTPException(status_code=400, detail=f"promptType must be one of: {', '.join(PROMPT_ACTIONS)}")
        message_id = agency_communication_service.send_action_prompt(
            db,
            body.clientId,
            body.promptType,
            body.message,
            body.actionPayload,
            body.expiresInHours,
        )
    else:
        message_id = agency_communication_service.send_alert(db, body.clientId, body.message, body.isUrgent)

    if message_id is None:
        raise HTTPException(
            status_code=400,
            detail="Message not sent: client has no phone number or is in quiet hours",
        )
    return {"success": True, "messageId": str(message_id)}


@router.get("/settings")
def get_settings(
    session: AgencySession = Depends(require_agency_permission("agency.settings.manage")),
    db: Session = Depends(get_db),
):
    return {"agencyTwilioNumber": agency_communication_service.get_agency_number(db)}


@router.put("/settings")
def update_settings(
    body: AgencySettingsUpdate,
    session: AgencySession = Depends(require_agency_permission("agency.settings.manage")),
    db: Session = Depends(get_db),
):
    try:
        number = agency_communication_service.set_agency_number(db, body.agencyTwilioNumber)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"agencyTwilioNumber": number}
