"""Agency view of client escalation queues and escalation rules."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_agency_client_permission, require_agency_permission
from leadrelay.db.models import ClientMembership, Escalation
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import escalation_service
from leadrelay.services.auth_service import can_access_client

router = APIRouter()


class AssignRequest(BaseModel):
    memberId: UUID


@router.get("/clients/{client_id}/escalations")
def client_escalations(
    client_id: UUID,
    status: str | None = None,
    priority: int | None = None,
    session: AgencySession = Depends(require_agency_client_permission("agency.conversations.view")),
    db: Session = Depends(get_db),
):
    queue = escalation_service.get_escalation_queue(db, client_id, status=status, priority=priority)
    return {
        "escalations": [escalation_service.serialize_escalation(e) for e in queue],
        "summary": escalation_service.get_queue_summary(db, client_id),
    }


@router.post("/escalations/{escalation_id}/assign")
def assign_escalation(
    escalation_id: UUID,
    body: AssignRequest,
    session: AgencySession = Depends(require_agency_permission("agency.conversations.respond")),
    db: Session = Depends(get_db),
):
    escalation = db.get(Escalation, escalation_id)
    if not escalation:
        raise HTTPException(status_code=404, detail="Escalation not found")
    if not can_access_client(session, escalation.client_id):
        raise HTTPException(status_code=403, detail="Forbidden: client not in scope")

    member = db.get(ClientMembership, body.memberId)
    if not member or member.client_id != escalation.client_id or not member.is_active:
        raise HTTPException(status_code=400, detail="Member is not an active member of this client")

    escalation = escalation_service.assign_escalation(db, escalation_id, member.id, escalation.client_id)
    return {"escalation": escalation_service.serialize_escalation(escalation)}


# =============================================================================
# Escalation rules
# =============================================================================

class CreateRuleRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    conditions: dict[str, Any]
    action: dict[str, Any]
    priority: int = Field(100, ge=0, le=1000)
    enabled: bool = True


class UpdateRuleRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    conditions: dict[str, Any] | None = None
    action: dict[str, Any] | None = None
    priority: int | None = Field(None, ge=0, le=1000)
    enabled: bool | None = None


@router.get("/clients/{client_id}/escalation-rules")
def list_escalation_rules(
    client_id: UUID,
    session: AgencySession = Depends(require_agency_client_permission("agency.clients.view")),
    db: Session = Depends(get_db),
):
    rules = escalation_service.list_rules(db, client_id)
    return {"rules": [escalation_service.serialize_rule(rule) for rule in rules]}


@router.post("/clients/{client_id}/escalation-rules", status_code=201)
def create_escalation_rule(
    client_id: UUID,
    body: CreateRuleRequest,
    session: AgencySession = Depends(require_agency_client_permission("agency.clients.edit")),
    db: Session = Depends(get_db),
):
    rule = escalation_service.create_rule(
        db,
        client_id,
        name=body.name,
        conditions=body.conditions,
        action=body.action,
        priority=body.priority,
        enabled=body.enabled,
    )
    return {"rule": escalation_service.serialize_rule(rule)}


@router.put("/clients/{client_id}/escalation-rules/{rule_id}")
def update_escalation_rule(
    client_id: UUID,
    rule_id: UUID,
    body: UpdateRuleRequest,
    session: AgencySession = Depends(require_agency_client_permission("agency.clients.edit")),
    db: Session = Depends(get_db),
):
    rule = escalation_service.update_rule(db, client_id, rule_id, body.model_dump(exclude_none=True))
    return {"rule": escalation_service.serialize_rule(rule)}


@router.delete("/clients/{client_id}/escalation-rules/{rule_id}")
def delete_escalation_rule(
    client_id: UUID,
    rule_id: UUID,
    session: AgencySession = Depends(require_agency_client_permission("agency.clients.edit")),
    db: Session = Depends(get_db),
):
    escalation_service.delete_rule(db, client_id, rule_id)
    return {"success": True}
