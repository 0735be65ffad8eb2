"""Client (tenant) management for the agency dashboard."""

import logging
from typing import Any
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from leadrelay.core.exceptions import NotFoundError, ValidationFailedError
from leadrelay.db.enums import AuditAction, ClientStatus
from leadrelay.db.models import Client
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import audit_service
from leadrelay.services.feature_service import FEATURE_FLAGS
from leadrelay.utils.normalization import normalize_email, normalize_phone

logger = logging.getLogger(__name__)

# Writable scalar columns beyond the feature flags
EDITABLE_FIELDS = frozenset({
    "business_name",
    "owner_name",
    "email",
    "phone",
    "timezone",
    "google_business_url",
    "twilio_number",
    "status",
    "monthly_message_limit",
    "notification_email",
    "notification_sms",
    "weekly_summary_enabled",
    "weekly_summary_day",
    "weekly_summary_time",
    "voice_id",
}) | frozenset(FEATURE_FLAGS.values())

# Editable columns the table declares NOT NULL
REQUIRED_FIELDS = frozenset(
    column.name for column in Client.__table__.columns if not column.nullable
) & EDITABLE_FIELDS


def list_clients(db: Session, session: AgencySession, status: str | None = None) -> list[Client]:
    """Newest first, limited to the member's assigned clients when scoped."""
    query = db.query(Client)
    if session.assigned_client_ids is not None:
        if not session.assigned_client_ids:
            return []
        query = query.filter(Client.id.in_(session.assigned_client_ids))
    if status:
        query = query.filter(Client.status == status)
    return query.order_by(Client.created_at.desc()).all()


def get_client(db: Session, client_id: UUID) -> Client:
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise NotFoundError("Client not found")
    return client


def serialize_client(client: Client) -> dict[str, Any]:
    data = {
        "id": str(client.id),
        "businessName": client.business_name,
        "ownerName": client.owner_name,
        "email": client.email,
        "phone": client.phone,
        "timezone": client.timezone,
        "googleBusinessUrl": client.google_business_url,
        "twilioNumber": client.twilio_number,
        "status": client.status,
        "messagesSentThisMonth": client.messages_sent_this_month,
        "monthlyMessageLimit": client.monthly_message_limit,
        "notificationEmail": client.notification_email,
        "notificationSms": client.notification_sms,
        "weeklySummaryEnabled": client.weekly_summary_enabled,
        "weeklySummaryDay": client.weekly_summary_day,
        "weeklySummaryTime": client.weekly_summary_time,
        "googleConnected": bool(client.google_refresh_token),
        "voiceId": client.voice_id,
        "createdAt": client.created_at.isoformat(),
    }
    data["features"] = {flag: bool(getattr(client, column)) for flag, column in FEATURE_FLAGS.items()}
    return data


def _normalize_contact(values: dict[str, Any]) -> None:
    if values.get("phone"):
        try:
            values["phone"] = normalize_phone(values["phone"])
        except ValueError as exc:
            raise ValidationFailedError(str(exc)) from exc
    if values.get("email"):
        values["email"] = normalize_email(values["email"])


def create_client(
    db: Session,
    *,
    business_name: str,
    owner_name: str,
    email: str,
    phone: str,
    timezone: str = "America/Edmonton",
    google_business_url: str | None = None,
    actor_person_id: UUID | None = None,
    request: Request | None = None,
) -> Client:
    """New clients stay pending until a Twilio number is assigned."""
    values: dict[str, Any] = {"email": email, "phone": phone}
    _normalize_contact(values)

    if db.query(Client).filter(Client.email == values["email"]).first():
        raise ValidationFailedError("A client with this email already exists")

    client = Client(
        business_name=business_name,
        owner_name=owner_name,
        email=values["email"],
        phone=values["phone"],
        timezone=timezone,
        google_business_url=google_business_url or None,
        status=ClientStatus.PENDING.value,
    )
    db.add(client)
    db.flush()

    audit_service.log_event(
        db,
        AuditAction.CLIENT_CREATED,
        person_id=actor_person_id,
        client_id=client.id,
        resource_type="client",
        resource_id=client.id,
        request=request,
    )
    db.commit()
    db.refresh(client)
    logger.info("Created client %s", client.id)
    return client


def update_client(
    db: Session,
    client_id: UUID,
    updates: dict[str, Any],
    *,
    actor_person_id: UUID | None = None,
    request: Request | None = None,
) -> tuple[Client, bool]:
    """
    Apply a partial update.

    Returns:
        (client, activated) where activated is True when status moved to active
    """
    unknown = sorted(set(updates) - EDITABLE_FIELDS)
    if unknown:
        raise ValidationFailedError(f"Unknown fields: {', '.join(unknown)}")
    cleared = sorted(field for field in REQUIRED_FIELDS if field in updates and updates[field] is None)
    if cleared:
        raise ValidationFailedError(f"Fields cannot be empty: {', '.join(cleared)}")
    if "status" in updates and updates["status"] not in {s.value for s in ClientStatus}:
        raise ValidationFailedError(f"Invalid status: {updates['status']}")

    client = get_client(db, client_id)
    values = dict(updates)
    _normalize_contact(values)

    if values.get("email") and values["email"] != client.email:
        taken = (
            db.query(Client.id)
            .filter(Client.email == values["email"], Client.id != client_id)
            .first()
        )
        if taken:
            raise ValidationFailedError("A client with this email already exists")

    previous_status = client.status
    for field, value in values.items():
        setattr(client, field, value)

    audit_service.log_event(
        db,
        AuditAction.CLIENT_UPDATED,
        person_id=actor_person_id,
        client_id=client.id,
        resource_type="client",
        resource_id=client.id,
        details={"fields": sorted(values)},
        request=request,
    )
    db.commit()
    db.refresh(client)
    activated = client.status == ClientStatus.ACTIVE.value and previous_status != ClientStatus.ACTIVE.value
    return client, activated


def cancel_client(
    db: Session,
    client_id: UUID,
    *,
    actor_person_id: UUID | None = None,
    request: Request | None = None,
) -> Client:
    """Soft delete."""
    client = get_client(db, client_id)
    client.status = ClientStatus.CANCELLED.value
    audit_service.log_event(
        db,
        AuditAction.CLIENT_CANCELLED,
        person_id=actor_person_id,
        client_id=client.id,
        resource_type="client",
        resource_id=client.id,
        request=request,
    )
    db.commit()
    db.refresh(client)
    return client
