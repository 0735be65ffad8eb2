"""Client portal: team, feature toggles, notification settings and the escalation queue."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_portal_permission, require_portal_session
from leadrelay.schemas.auth import PortalSession
from leadrelay.services import escalation_service, feature_service, notification_service, team_service

router = APIRouter()


def _granter(session: PortalSession) -> team_service.Granter:
    return team_service.Granter(
        person_id=session.person_id,
        permissions=set(session.permissions),
        bypass_escalation=session.is_owner,
        membership_id=session.membership_id,
    )


# =============================================================================
# Team
# =============================================================================

class AddMemberRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str | None = None
    phone: str | None = None
    roleTemplateId: UUID
    receiveEscalations: bool = False


class UpdateMemberRequest(BaseModel):
    roleTemplateId: UUID | None = None
    isActive: bool | None = None
    receiveEscalations: bool | None = None
    receiveHotTransfers: bool | None = None


@router.get("/team")
def list_team(
    session: PortalSession = Depends(require_portal_permission("portal.team.view")),
    db: Session = Depends(get_db),
):
    members = team_service.list_client_team(db, session.client_id)
    return {"members": [team_service.serialize_client_member(m) for m in members]}


@router.post("/team", status_code=201)
def add_member(
    body: AddMemberRequest,
    request: Request,
    session: PortalSession = Depends(require_portal_permission("portal.team.manage")),
    db: Session = Depends(get_db),
):
    if not body.email and not body.phone:
        raise HTTPException(status_code=400, detail="Email or phone is required")
    try:
        membership = team_service.add_client_member(
            db,
            session.client_id,
            _granter(session),
            name=body.name,
            email=body.email,
            phone=body.phone,
            role_template_id=body.roleTemplateId,
            receive_escalations=body.receiveEscalations,
            request=request,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"member": team_service.serialize_client_member(membership)}


@router.patch("/team/{membership_id}")
def update_member(
    membership_id: UUID,
    body: UpdateMemberRequest,
    request: Request,
    session: PortalSession = Depends(require_portal_permission("portal.team.manage")),
    db: Session = Depends(get_db),
):
    membership = team_service.update_client_member(
        db,
        session.client_id,
        membership_id,
        _granter(session),
        role_template_id=body.roleTemplateId,
        is_active=body.isActive,
        receive_escalations=body.receiveEscalations,
        receive_hot_transfers=body.receiveHotTransfers,
        request=request,
    )
    return {"member": team_service.serialize_client_member(membership)}


@router.delete("/team/{membership_id}")
def remove_member(
    membership_id: UUID,
    request: Request,
    session: PortalSession = Depends(require_portal_permission("portal.team.manage")),
    db: Session = Depends(get_db),
):
    team_service.update_client_member(
        db,
        session.client_id,
        membership_id,
        _granter(session),
        is_active=False,
        request=request,
    )
    return {"success": True}


# =============================================================================
# Features
# =============================================================================

@router.get("/features")
def get_features(
    session: PortalSession = Depends(require_portal_session),
    db: Session = Depends(get_db),
):
    toggles = feature_service.get_client_toggles(db, session.client_id)
    return {**toggles, "enabledFeatures": feature_service.get_enabled_features(db, session.client_id)}


@router.put("/features")
def update_features(
    body: dict[str, Any],
    session: PortalSession = Depends(require_portal_permission("portal.settings.edit")),
    db: Session = Depends(get_db),
):
    return feature_service.update_client_toggles(db, session.client_id, body)


# =============================================================================
# Notification preferences
# =============================================================================

class NotificationPreferencesRequest(BaseModel):
    emailDailySummary: bool | None = None
    quietHoursEnabled: bool | None = None
    quietHoursStart: str | None = Field(None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    quietHoursEnd: str | None = Field(None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    urgentOverride: bool | None = None


@router.get("/notifications")
def get_notifications(
    session: PortalSession = Depends(require_portal_permission("portal.settings.view")),
    db: Session = Depends(get_db),
):
    prefs = notification_service.get_preferences(db, session.client_id)
    return notification_service.serialize_preferences(prefs)


@router.put("/notifications")
def update_notifications(
    body: NotificationPreferencesRequest,
    session: PortalSession = Depends(require_portal_permission("portal.settings.edit")),
    db: Session = Depends(get_db),
):
    prefs = notification_service.update_preferences(db, session.client_id, body.model_dump(exclude_none=True))
    return notification_service.serialize_preferences(prefs)


# =============================================================================
# Escalations
# =============================================================================

class ResolveRequest(BaseModel):
    resolution: str = Field(..., min_length=1, max_length=50)
    notes: str | None = None
    returnToAi: bool = True


@router.get("/escalations")
def list_escalations(
    status: str | None = None,
    session: PortalSession = Depends(require_portal_permission("portal.conversations.view")),
    db: Session = Depends(get_db),
):
    queue = escalation_service.get_escalation_queue(db, session.client_id, status=status)
    return {
        "escalations": [escalation_service.serialize_escalation(e) for e in queue],
        "summary": escalation_service.get_queue_summary(db, session.client_id),
    }


@router.post("/escalations/{escalation_id}/take-over")
def take_over(
    escalation_id: UUID,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    escalation = escalation_service.take_over_conversation(
        db, escalation_id, session.membership_id, client_id=session.client_id
    )
    return {"escalation": escalation_service.serialize_escalation(escalation)}


@router.post("/escalations/{escalation_id}/resolve")
def resolve(
    escalation_id: UUID,
    body: ResolveRequest,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    escalation = escalation_service.resolve_escalation(
        db,
        escalation_id,
        session.membership_id,
        body.resolution,
        body.notes,
        body.returnToAi,
        client_id=session.client_id,
    )
    return {"escalation": escalation_service.serialize_escalation(escalation)}
