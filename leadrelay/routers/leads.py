"""Client portal: leads, manual replies and appointments."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_portal_permission
from leadrelay.db.models import Client
from leadrelay.schemas.auth import PortalSession
from leadrelay.services import lead_service
from leadrelay.services.permission_service import has_permission
from leadrelay.utils.pagination import PaginatedResponse, PaginationParams, get_pagination

router = APIRouter()

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class CreateLeadRequest(BaseModel):
    phone: str = Field(..., min_length=10, max_length=20)
    name: str | None = Field(None, max_length=255)
    email: str | None = Field(None, max_length=255)
    source: str = Field("manual", max_length=50)


class UpdateLeadRequest(BaseModel):
    status: str | None = None
    name: str | None = Field(None, max_length=255)
    email: str | None = Field(None, max_length=255)
    actionRequired: bool | None = None
    actionRequiredReason: str | None = Field(None, max_length=255)


class SendMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=1600)


class CreateAppointmentRequest(BaseModel):
    appointmentDate: date
    appointmentTime: str = Field(..., pattern=HHMM_PATTERN)


class AppointmentStatusRequest(BaseModel):
    status: str


@router.get("")
def list_leads(
    search: str | None = None,
    status: str | None = None,
    source: str | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    session: PortalSession = Depends(require_portal_permission("portal.leads.view")),
    db: Session = Depends(get_db),
):
    leads, total = lead_service.list_leads(
        db, session.client_id, pagination, search=search, status=status, source=source
    )
    return PaginatedResponse.create([lead_service.serialize_lead(lead) for lead in leads], total, pagination)


@router.post("", status_code=201)
def create_lead(
    body: CreateLeadRequest,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    lead = lead_service.create_lead(
        db, session.client_id, phone=body.phone, name=body.name, email=body.email, source=body.source
    )
    return {"lead": lead_service.serialize_lead(lead)}


@router.get("/{lead_id}")
def get_lead(
    lead_id: UUID,
    session: PortalSession = Depends(require_portal_permission("portal.leads.view")),
    db: Session = Depends(get_db),
):
    lead = lead_service.get_lead(db, session.client_id, lead_id)
    result = {"lead": lead_service.serialize_lead(lead)}
    if has_permission(session.permissions, "portal.conversations.view"):
        result["conversation"] = [
            lead_service.serialize_message(m) for m in lead_service.list_conversation(db, lead.id)
        ]
    return result


@router.patch("/{lead_id}")
def update_lead(
    lead_id: UUID,
    body: UpdateLeadRequest,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    fields = {
        "status": "status",
        "name": "name",
        "email": "email",
        "actionRequired": "action_required",
        "actionRequiredReason": "action_required_reason",
    }
    updates = {fields[key]: value for key, value in body.model_dump(exclude_unset=True).items()}
    lead = lead_service.update_lead(db, session.client_id, lead_id, updates)
    return {"lead": lead_service.serialize_lead(lead)}


@router.post("/{lead_id}/send-message")
def send_message(
    lead_id: UUID,
    body: SendMessageRequest,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    lead = lead_service.get_lead(db, session.client_id, lead_id)
    client = db.get(Client, session.client_id)
    message = lead_service.send_manual_message(db, client, lead, body.message)
    return {"success": True, "message": lead_service.serialize_message(message)}


@router.post("/{lead_id}/appointments", status_code=201)
def create_appointment(
    lead_id: UUID,
    body: CreateAppointmentRequest,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    lead = lead_service.get_lead(db, session.client_id, lead_id)
    appointment = lead_service.create_appointment(db, lead, body.appointmentDate, body.appointmentTime)
    return {"appointment": lead_service.serialize_appointment(appointment)}


@router.patch("/appointments/{appointment_id}")
def update_appointment(
    appointment_id: UUID,
    body: AppointmentStatusRequest,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    appointment = lead_service.update_appointment_status(db, session.client_id, appointment_id, body.status)
    return {"appointment": lead_service.serialize_appointment(appointment)}
