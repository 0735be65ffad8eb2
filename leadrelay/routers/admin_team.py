"""Agency team members and their client assignments."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_agency_permission
from leadrelay.db.enums import ClientScope
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import team_service

router = APIRouter()

_require_team_manage = require_agency_permission("agency.team.manage")


class AgencyMemberCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str | None = None
    phone: str | None = None
    roleTemplateId: UUID
    clientScope: ClientScope = ClientScope.ALL
    assignedClientIds: list[UUID] = Field(default_factory=list)


class AgencyMemberUpdate(BaseModel):
    roleTemplateId: UUID | None = None
    clientScope: ClientScope | None = None
    assignedClientIds: list[UUID] | None = None
    isActive: bool | None = None


def _granter(session: AgencySession) -> team_service.Granter:
    return team_service.Granter(
        person_id=session.person_id,
        permissions=set(session.permissions),
        bypass_escalation=session.is_legacy,
        membership_id=session.membership_id,
    )


@router.get("")
def list_team(
    session: AgencySession = Depends(_require_team_manage),
    db: Session = Depends(get_db),
):
    return {"members": [team_service.serialize_agency_member(m) for m in team_service.list_agency_team(db)]}


@router.post("", status_code=201)
def add_member(
    body: AgencyMemberCreate,
    request: Request,
    session: AgencySession = Depends(_require_team_manage),
    db: Session = Depends(get_db),
):
    if not body.email and not body.phone:
        raise HTTPException(status_code=400, detail="Email or phone is required")
    try:
        membership = team_service.add_agency_member(
            db,
            _granter(session),
            name=body.name,
            email=body.email,
            phone=body.phone,
            role_template_id=body.roleTemplateId,
            client_scope=body.clientScope,
            assigned_client_ids=body.assignedClientIds,
            request=request,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"member": team_service.serialize_agency_member(membership)}


@router.patch("/{membership_id}")
def update_member(
    membership_id: UUID,
    body: AgencyMemberUpdate,
    request: Request,
    session: AgencySession = Depends(_require_team_manage),
    db: Session = Depends(get_db),
):
    membership = team_service.update_agency_member(
        db,
        membership_id,
        _granter(session),
        role_template_id=body.roleTemplateId,
        client_scope=body.clientScope,
        assigned_client_ids=body.assignedClientIds,
        is_active=body.isActive,
        request=request,
    )
    return {"member": team_service.serialize_agency_member(membership)}
