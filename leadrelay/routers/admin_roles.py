"""Role template management."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_agency_permission
from leadrelay.core.permissions import get_permissions_by_category
from leadrelay.db.enums import RoleScope
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import role_service

router = APIRouter()

_require_team_manage = require_agency_permission("agency.team.manage")


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    scope: RoleScope
    permissions: list[str] = Field(default_factory=list)
    description: str | None = Field(default=None, max_length=500)


class RoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    permissions: list[str] | None = None
    description: str | None = Field(default=None, max_length=500)


@router.get("")
def list_roles(
    scope: RoleScope | None = None,
    session: AgencySession = Depends(_require_team_manage),
    db: Session = Depends(get_db),
):
    return {"roles": [role_service.serialize_role(r) for r in role_service.list_roles(db, scope)]}


@router.get("/permissions")
def list_permissions(
    scope: RoleScope | None = None,
    session: AgencySession = Depends(_require_team_manage),
):
    """Permission registry grouped by category, for the role editor."""
    return {
        category: [{"key": p.key, "label": p.label, "description": p.description} for p in perms]
        for category, perms in get_permissions_by_category(scope).items()
    }


@router.post("", status_code=201)
def create_role(
    body: RoleCreate,
    request: Request,
    session: AgencySession = Depends(_require_team_manage),
    db: Session = Depends(get_db),
):
    role = role_service.create_role(
        db,
        name=body.name,
        scope=body.scope,
        permissions=body.permissions,
        description=body.description,
        actor_person_id=session.person_id,
        request=request,
    )
    return {"role": role_service.serialize_role(role)}


@router.patch("/{role_id}")
def update_role(
    role_id: UUID,
    body: RoleUpdate,
    request: Request,
    session: AgencySession = Depends(_require_team_manage),
    db: Session = Depends(get_db),
):
    role = role_service.update_role(
        db,
        role_id,
        name=body.name,
        description=body.description,
        permissions=body.permissions,
        actor_person_id=session.person_id,
        request=request,
    )
    return {"role": role_service.serialize_role(role)}


@router.delete("/{role_id}")
def delete_role(
    role_id: UUID,
    request: Request,
    session: AgencySession = Depends(_require_team_manage),
    db: Session = Depends(get_db),
):
    role_service.delete_role(db, role_id, actor_person_id=session.person_id, request=request)
    return {"success": True}
