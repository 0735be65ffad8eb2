"""Client-side lead management: listing, edits, manual replies, appointments."""

import logging
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from leadrelay.core.exceptions import NotFoundError, ValidationFailedError
from leadrelay.db.enums import MessageDirection
from leadrelay.db.models import Appointment, BlockedNumber, Client, Conversation, Lead
from leadrelay.services import sms_service, stats_service
from leadrelay.services.scheduled_message_service import DEFAULT_MONTHLY_LIMIT
from leadrelay.utils.dates import utcnow
from leadrelay.utils.normalization import normalize_email, normalize_phone
from leadrelay.utils.pagination import PaginationParams

logger = logging.getLogger(__name__)

LEAD_STATUSES = frozenset({"new", "contacted", "estimate_sent", "won", "lost", "active", "opted_out"})
APPOINTMENT_STATUSES = frozenset({"scheduled", "confirmed", "completed", "cancelled", "no_show"})
MANUAL_MESSAGE_TYPE = "contractor_response"


def list_leads(
    db: Session,
    client_id: UUID,
    pagination: PaginationParams,
    *,
    search: str | None = None,
    status: str | None = None,
    source: str | None = None,
) -> tuple[list[Lead], int]:
    query = db.query(Lead).filter(Lead.client_id == client_id)
    if status:
        query = query.filter(Lead.status == status)
    if source:
        query = query.filter(Lead.source == source)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Lead.name.ilike(pattern), Lead.phone.ilike(pattern), Lead.email.ilike(pattern)))

    total = query.count()
    leads = (
        query.order_by(Lead.updated_at.desc())
        .offset(pagination.offset)
        .limit(pagination.per_page)
        .all()
    )
    return leads, total


def get_lead(db: Session, client_id: UUID, lead_id: UUID) -> Lead:
    lead = db.query(Lead).filter(Lead.id == lead_id, Lead.client_id == client_id).first()
    if not lead:
        raise NotFoundError("Lead not found")
    return lead


def create_lead(
    db: Session,
    client_id: UUID,
    *,
    phone: str,
    name: str | None = None,
    email: str | None = None,
    source: str = "manual",
) -> Lead:
    try:
        phone = normalize_phone(phone)
    except ValueError:
        phone = None
    if not phone:
        raise ValidationFailedError("Invalid phone number")
    if db.query(Lead.id).filter(Lead.client_id == client_id, Lead.phone == phone).first():
        raise ValidationFailedError("A lead with this phone number already exists")

    lead = Lead(
        client_id=client_id,
        phone=phone,
        name=name or None,
        email=normalize_email(email) if email else None,
        source=source,
        status="new",
    )
    db.add(lead)
    db.commit()
    db.refresh(lead)
    logger.info("Lead %s created for client %s", lead.id, client_id)
    return lead


def update_lead(db: Session, client_id: UUID, lead_id: UUID, updates: dict[str, Any]) -> Lead:
    lead = get_lead(db, client_id, lead_id)
    if "status" in updates and updates["status"] not in LEAD_STATUSES:
        raise ValidationFailedError(f"Unknown lead status '{updates['status']}'")
    if updates.get("email"):
        updates["email"] = normalize_email(updates["email"])
    if updates.get("action_required") is False:
        updates.setdefault("action_required_reason", None)

    for field, value in updates.items():
        setattr(lead, field, value)
    db.commit()
    db.refresh(lead)
    return lead


def list_conversation(db: Session, lead_id: UUID, limit: int = 200) -> list[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.lead_id == lead_id)
        .order_by(Conversation.created_at)
        .limit(limit)
        .all()
    )


def send_manual_message(db: Session, client: Client, lead: Lead, body: str) -> Conversation:
    """
    Text a lead from the client's number and log it on the thread.

    Raises:
        ValidationFailedError: no Twilio number, opted out, blocked, or over the monthly limit
    """
    if not client.twilio_number:
        raise ValidationFailedError("No phone number configured")
    if lead.opted_out:
        raise ValidationFailedError("Lead has opted out of messages")
    blocked = (
        db.query(BlockedNumber.id)
        .filter(BlockedNumber.client_id == client.id, BlockedNumber.phone == lead.phone)
        .first()
    )
    if blocked:
        raise ValidationFailedError("Number is blocked")
    if (client.messages_sent_this_month or 0) >= (client.monthly_message_limit or DEFAULT_MONTHLY_LIMIT):
        raise ValidationFailedError("Monthly message limit reached")

    sid = sms_service.send_sms(lead.phone, body, client.twilio_number)

    message = Conversation(
        lead_id=lead.id,
        client_id=client.id,
        direction=MessageDirection.OUTBOUND.value,
        message_type=MANUAL_MESSAGE_TYPE,
        content=body,
        twilio_sid=sid,
    )
    db.add(message)
    lead.action_required = False
    lead.action_required_reason = None
    lead.updated_at = utcnow()
    stats_service.increment_daily_stat(db, client.id, "messages_sent")
    client.messages_sent_this_month = (client.messages_sent_this_month or 0) + 1
    db.commit()
    db.refresh(message)
    return message


def create_appointment(db: Session, lead: Lead, appointment_date: date, appointment_time: str) -> Appointment:
    appointment = Appointment(
        client_id=lead.client_id,
        lead_id=lead.id,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        status="scheduled",
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


def update_appointment_status(db: Session, client_id: UUID, appointment_id: UUID, status: str) -> Appointment:
    """Completed appointments are picked up by the NPS survey job."""
    if status not in APPOINTMENT_STATUSES:
        raise ValidationFailedError(f"Unknown appointment status '{status}'")
    appointment = (
        db.query(Appointment)
        .filter(Appointment.id == appointment_id, Appointment.client_id == client_id)
        .first()
    )
    if not appointment:
        raise NotFoundError("Appointment not found")
    appointment.status = status
    appointment.updated_at = utcnow()
    db.commit()
    db.refresh(appointment)
    return appointment


def serialize_lead(lead: Lead) -> dict[str, Any]:
    return {
        "id": str(lead.id),
        "clientId": str(lead.client_id),
        "name": lead.name,
        "phone": lead.phone,
        "email": lead.email,
        "source": lead.source,
        "status": lead.status,
        "stage": lead.stage,
        "actionRequired": lead.action_required,
        "actionRequiredReason": lead.action_required_reason,
        "optedOut": lead.opted_out,
        "score": lead.score,
        "createdAt": lead.created_at.isoformat(),
        "updatedAt": lead.updated_at.isoformat() if lead.updated_at else None,
    }


def serialize_message(message: Conversation) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "direction": message.direction,
        "messageType": message.message_type,
        "content": message.content,
        "createdAt": message.created_at.isoformat(),
    }


def serialize_appointment(appointment: Appointment) -> dict[str, Any]:
    return {
        "id": str(appointment.id),
        "leadId": str(appointment.lead_id),
        "date": appointment.appointment_date.isoformat(),
        "time": appointment.appointment_time,
        "status": appointment.status,
    }
