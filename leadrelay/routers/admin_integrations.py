"""Agency dashboard: review replies, voice catalogue, and the audit log."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_agency_permission
from leadrelay.db.models import Person
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import audit_service, elevenlabs_service, google_business_service, review_service
from leadrelay.services.auth_service import can_access_client
from leadrelay.utils.pagination import PaginationParams, get_pagination

router = APIRouter()


# ============================================================================
# Reviews
# ============================================================================

class DraftResponseRequest(BaseModel):
    responseText: str = Field(..., min_length=1, max_length=4096)


@router.get("/reviews/{review_id}/responses")
def list_review_responses(
    review_id: UUID,
    session: AgencySession = Depends(require_agency_permission("agency.conversations.view")),
    db: Session = Depends(get_db),
):
    review = review_service.get_review(db, review_id)
    if not can_access_client(session, review.client_id):
        raise HTTPException(status_code=403, detail="Forbidden: client not in scope")
    responses = review_service.list_responses(db, review.id)
    return {"responses": [review_service.serialize_response(r) for r in responses]}


@router.post("/reviews/{review_id}/responses", status_code=201)
def draft_review_response(
    review_id: UUID,
    body: DraftResponseRequest,
    session: AgencySession = Depends(require_agency_permission("agency.conversations.respond")),
    db: Session = Depends(get_db),
):
    review = review_service.get_review(db, review_id)
    if not can_access_client(session, review.client_id):
        raise HTTPException(status_code=403, detail="Forbidden: client not in scope")
    response = review_service.create_draft(db, review, body.responseText)
    return {"response": review_service.serialize_response(response)}


@router.post("/reviews/responses/{response_id}/post")
async def post_review_response(
    response_id: UUID,
    session: AgencySession = Depends(require_agency_permission("agency.conversations.respond")),
    db: Session = Depends(get_db),
):
    result = await google_business_service.post_response_to_google(db, response_id)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)
    return result.to_dict()


# ============================================================================
# Voices
# ============================================================================

@router.get("/voices")
async def list_voices(session: AgencySession = Depends(require_agency_permission("agency.ai.edit"))):
    return {"voices": await elevenlabs_service.list_voices()}


@router.get("/voices/{voice_id}")
async def get_voice(
    voice_id: str,
    session: AgencySession = Depends(require_agency_permission("agency.ai.edit")),
):
    voice = await elevenlabs_service.get_voice(voice_id)
    if voice is None:
        raise HTTPException(status_code=404, detail="Voice not found")
    return {"voice": voice}


class VoicePreviewRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)
    stability: float = Field(0.5, ge=0, le=1)
    similarityBoost: float = Field(0.75, ge=0, le=1)


@router.post("/voices/{voice_id}/preview")
async def preview_voice(
    voice_id: str,
    body: VoicePreviewRequest,
    session: AgencySession = Depends(require_agency_permission("agency.ai.edit")),
):
    audio = await elevenlabs_service.synthesize_speech(
        voice_id, body.text, stability=body.stability, similarity_boost=body.similarityBoost
    )
    return Response(content=audio, media_type="audio/mpeg")


# ============================================================================
# Audit log
# ============================================================================

class AuditLogRead(BaseModel):
    id: UUID
    action: str
    personId: UUID | None
    personName: str | None
    clientId: UUID | None
    resourceType: str | None
    resourceId: UUID | None
    metadata: dict[str, Any] | None
    ipAddress: str | None
    createdAt: datetime


class AuditLogListResponse(BaseModel):
    items: list[AuditLogRead]
    total: int
    page: int
    per_page: int


@router.get("/audit-log", response_model=AuditLogListResponse)
def list_audit_log(
    clientId: UUID | None = None,
    action: str | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    session: AgencySession = Depends(require_agency_permission("agency.settings.manage")),
    db: Session = Depends(get_db),
) -> AuditLogListResponse:
    """Newest first, filterable by client and action."""
    if clientId and not can_access_client(session, clientId):
        raise HTTPException(status_code=403, detail="Forbidden: client not in scope")

    entries, total = audit_service.list_events(
        db,
        client_id=clientId,
        action=action,
        offset=pagination.offset,
        limit=pagination.per_page,
    )

    person_ids = {e.person_id for e in entries if e.person_id}
    names = {}
    if person_ids:
        names = {p.id: p.name for p in db.query(Person).filter(Person.id.in_(person_ids)).all()}

    items = [
        AuditLogRead(
            id=e.id,
            action=e.action,
            personId=e.person_id,
            personName=names.get(e.person_id) if e.person_id else None,
            clientId=e.client_id,
            resourceType=e.resource_type,
            resourceId=e.resource_id,
            metadata=e.details,
            ipAddress=e.ip_address,
            createdAt=e.created_at,
        )
        for e in entries
    ]
    return AuditLogListResponse(items=items, total=total, page=pagination.page, per_page=pagination.per_page)
