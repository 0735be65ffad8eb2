"""Escalation queue - hand-offs from the AI assistant to a client's team.

Lifecycle: pending → assigned → in_progress → resolved. Priority 1 is most
urgent; the SLA deadline is 1 hour for priority 1-2 and 4 hours otherwise.
"""

import html
import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from leadrelay.core.config import settings
from leadrelay.core.exceptions import NotFoundError, ValidationFailedError
from leadrelay.db.enums import EscalationResolution, EscalationStatus, LeadStage
from leadrelay.db.models import Client, ClientMembership, Escalation, EscalationRule, Lead
from leadrelay.services import email_service, sms_service
from leadrelay.utils.dates import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 3
ROUND_ROBIN = "round_robin"
NOTIFY_CHANNELS = frozenset({"sms", "email"})

RESOLUTION_STAGES = {
    EscalationResolution.CONVERTED.value: LeadStage.BOOKED,
    EscalationResolution.LOST.value: LeadStage.LOST,
    EscalationResolution.RETURNED_TO_AI.value: LeadStage.NURTURING,
}


def sla_hours(priority: int) -> int:
    return 1 if priority <= 2 else 4


def priority_label(priority: int) -> str:
    if priority == 1:
        return "URGENT"
    if priority == 2:
        return "High Priority"
    return "Normal"


def _reason_text(reason: str) -> str:
    return reason.replace("_", " ")


def _escalation_url(escalation_id: UUID) -> str:
    return f"{settings.app_url}/escalations/{escalation_id}"


def _set_lead_stage(db: Session, lead_id: UUID, stage: LeadStage) -> None:
    lead = db.query(Lead).filter(Lead.id == lead_id).first()
    if lead:
        lead.stage = stage.value
        lead.stage_changed_at = utcnow()


# =============================================================================
# Rules & assignment
# =============================================================================

def rule_matches(rule: EscalationRule, reason: str) -> bool:
    """A keyword trigger matches as a case-insensitive substring; any trigger matches on type == reason."""
    triggers = (rule.conditions or {}).get("triggers") or []
    lowered = reason.lower()
    for trigger in triggers:
        if trigger.get("type") == "keyword" and trigger.get("value") is not None:
            if str(trigger["value"]).lower() in lowered:
                return True
        if trigger.get("type") == reason:
            return True
    return False


def list_rules(db: Session, client_id: UUID, enabled_only: bool = False) -> list[EscalationRule]:
    """Rules in evaluation order (lowest priority number first)."""
    query = db.query(EscalationRule).filter(EscalationRule.client_id == client_id)
    if enabled_only:
        query = query.filter(EscalationRule.enabled.is_(True))
    return query.order_by(EscalationRule.priority, EscalationRule.created_at).all()


def match_rule(db: Session, client_id: UUID, reason: str) -> EscalationRule | None:
    for rule in list_rules(db, client_id, enabled_only=True):
        if rule_matches(rule, reason):
            rule.times_triggered = (rule.times_triggered or 0) + 1
            rule.last_triggered_at = utcnow()
            return rule
    return None


def _validate_rule(conditions: dict[str, Any], action: dict[str, Any]) -> None:
    triggers = conditions.get("triggers")
    if not isinstance(triggers, list) or not triggers:
        raise ValidationFailedError("conditions.triggers must be a non-empty list")
    for trigger in triggers:
        if not isinstance(trigger, dict) or not trigger.get("type"):
            raise ValidationFailedError("Each trigger needs a type")
        if trigger["type"] == "keyword" and not str(trigger.get("value") or "").strip():
            raise ValidationFailedError("Keyword triggers need a value")
    channels = action.get("notifyVia") or []
    if not isinstance(channels, list) or set(channels) - NOTIFY_CHANNELS:
        raise ValidationFailedError("notifyVia may only contain 'sms' and 'email'")


def create_rule(
    db: Session,
    client_id: UUID,
    *,
    name: str,
    conditions: dict[str, Any],
    action: dict[str, Any],
    priority: int = 100,
    enabled: bool = True,
) -> EscalationRule:
    if not db.get(Client, client_id):
        raise NotFoundError("Client not found")
    _validate_rule(conditions, action)
    rule = EscalationRule(
        client_id=client_id,
        name=name,
        conditions=conditions,
        action=action,
        priority=priority,
        enabled=enabled,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info("Created escalation rule %s for client %s", rule.id, client_id)
    return rule


def get_rule(db: Session, client_id: UUID, rule_id: UUID) -> EscalationRule:
    rule = (
        db.query(EscalationRule)
        .filter(EscalationRule.id == rule_id, EscalationRule.client_id == client_id)
        .first()
    )
    if not rule:
        raise NotFoundError("Rule not found")
    return rule


def update_rule(db: Session, client_id: UUID, rule_id: UUID, updates: dict[str, Any]) -> EscalationRule:
    rule = get_rule(db, client_id, rule_id)
    if "conditions" in updates or "action" in updates:
        _validate_rule(updates.get("conditions", rule.conditions), updates.get("action", rule.action))
    for field, value in updates.items():
        setattr(rule, field, value)
    db.commit()
    db.refresh(rule)
    return rule


def delete_rule(db: Session, client_id: UUID, rule_id: UUID) -> None:
    db.delete(get_rule(db, client_id, rule_id))
    db.commit()


def serialize_rule(rule: EscalationRule) -> dict[str, Any]:
    return {
        "id": str(rule.id),
        "clientId": str(rule.client_id),
        "name": rule.name,
        "conditions": rule.conditions,
        "action": rule.action,
        "priority": rule.priority,
        "enabled": rule.enabled,
        "timesTriggered": rule.times_triggered,
        "lastTriggeredAt": rule.last_triggered_at.isoformat() if rule.last_triggered_at else None,
        "createdAt": rule.created_at.isoformat(),
    }


def pick_round_robin(db: Session, client_id: UUID) -> UUID | None:
    """Active member with the fewest unstarted escalations (ties: earliest member)."""
    pending_counts = (
        db.query(Escalation.assigned_to, func.count(Escalation.id))
        .filter(
            Escalation.client_id == client_id,
            Escalation.status.in_([EscalationStatus.PENDING.value, EscalationStatus.ASSIGNED.value]),
            Escalation.assigned_to.is_not(None),
        )
        .group_by(Escalation.assigned_to)
        .all()
    )
    counts = {member_id: count for member_id, count in pending_counts}
    members = (
        db.query(ClientMembership.id)
        .filter(ClientMembership.client_id == client_id, ClientMembership.is_active.is_(True))
        .order_by(ClientMembership.created_at)
        .all()
    )
    if not members:
        return None
    return min((m for (m,) in members), key=lambda member_id: counts.get(member_id, 0))


def _resolve_assignee(db: Session, client_id: UUID, assign_to: str | None) -> UUID | None:
    if not assign_to:
        return None
    if assign_to == ROUND_ROBIN:
        return pick_round_robin(db, client_id)
    try:
        return UUID(str(assign_to))
    except ValueError:
        logger.warning("Escalation rule for client %s has invalid assignTo", client_id)
        return None


# =============================================================================
# Create & notify
# =============================================================================

async def create_escalation(
    db: Session,
    *,
    lead_id: UUID,
    client_id: UUID,
    reason: str,
    reason_details: str | None = None,
    trigger_message_id: UUID | None = None,
    priority: int = DEFAULT_PRIORITY,
    conversation_summary: str | None = None,
    suggested_response: str | None = None,
    match_text: str | None = None,
) -> Escalation:
    """
    Queue a lead for human follow-up, or return its existing pending escalation.

    An existing pending escalation is re-prioritised when the new priority is
    more urgent. Rules are matched against `match_text` when given (the
    triggering message), otherwise against `reason`.
    """
    existing = (
        db.query(Escalation)
        .filter(
            Escalation.lead_id == lead_id,
            Escalation.status == EscalationStatus.PENDING.value,
        )
        .first()
    )
    if existing:
        if priority < existing.priority:
            existing.priority = priority
            existing.reason_details = reason_details or existing.reason_details
            db.commit()
        return existing

    assign_to = None
    notify_via: list[str] = ["sms"]
    auto_response = None
    rule = match_rule(db, client_id, match_text or reason)
    if rule:
        action = rule.action or {}
        assign_to = action.get("assignTo")
        notify_via = action.get("notifyVia") or ["sms"]
        auto_response = action.get("autoResponse")

    assigned_to = _resolve_assignee(db, client_id, assign_to)
    now = utcnow()
    escalation = Escalation(
        lead_id=lead_id,
        client_id=client_id,
        reason=reason,
        reason_details=reason_details,
        trigger_message_id=trigger_message_id,
        priority=priority,
        conversation_summary=conversation_summary,
        suggested_response=suggested_response,
        status=EscalationStatus.ASSIGNED.value if assigned_to else EscalationStatus.PENDING.value,
        assigned_to=assigned_to,
        assigned_at=now if assigned_to else None,
        sla_deadline=now + timedelta(hours=sla_hours(priority)),
    )
    db.add(escalation)
    _set_lead_stage(db, lead_id, LeadStage.ESCALATED)
    db.commit()
    db.refresh(escalation)
    logger.info("Created escalation %s for client %s (priority %s)", escalation.id, client_id, priority)

    await notify_escalation(db, escalation, notify_via)

    if auto_response:
        _send_auto_response(db, escalation, auto_response)

    return escalation


def _send_auto_response(db: Session, escalation: Escalation, body: str) -> None:
    lead = db.query(Lead).filter(Lead.id == escalation.lead_id).first()
    client = db.query(Client).filter(Client.id == escalation.client_id).first()
    if not lead or not client or not client.twilio_number:
        return
    try:
        sms_service.send_sms(lead.phone, body, client.twilio_number)
    except Exception:
        logger.exception("Escalation auto-response failed for %s", escalation.id)


def _escalation_recipients(db: Session, escalation: Escalation) -> list[ClientMembership]:
    query = db.query(ClientMembership).options(joinedload(ClientMembership.person))
    if escalation.assigned_to:
        member = query.filter(ClientMembership.id == escalation.assigned_to).first()
        return [member] if member else []
    return query.filter(
        ClientMembership.client_id == escalation.client_id,
        ClientMembership.is_active.is_(True),
        ClientMembership.receive_escalations.is_(True),
    ).all()


async def notify_escalation(db: Session, escalation: Escalation, channels: list[str]) -> None:
    """SMS and/or email the assignee, or every escalation receiver when unassigned."""
    lead = db.query(Lead).filter(Lead.id == escalation.lead_id).first()
    client = db.query(Client).filter(Client.id == escalation.client_id).first()
    lead_name = (lead.name if lead else None) or "Lead"
    label = priority_label(escalation.priority)
    reason = _reason_text(escalation.reason)
    url = _escalation_url(escalation.id)
    message = f"[{label}] {lead_name} needs attention. Reason: {reason}"

    for member in _escalation_recipients(db, escalation):
        person = member.person
        if "sms" in channels and person.phone and client and client.twilio_number:
            try:
                sms_service.send_sms(person.phone, f"{message}\nView: {url}", client.twilio_number)
            except Exception:
                logger.exception("Escalation SMS to membership %s failed", member.id)

        if "email" in channels and person.email:
            body = (
                f"<p><strong>{label}</strong></p>"
                f"<p><strong>Lead:</strong> {html.escape(lead.name if lead and lead.name else 'Unknown')}</p>"
                f"<p><strong>Phone:</strong> {html.escape(lead.phone if lead else '')}</p>"
                f"<p><strong>Reason:</strong> {html.escape(reason)}</p>"
                f"<p><strong>Details:</strong> {html.escape(escalation.reason_details or 'None')}</p>"
            )
            result = await email_service.send_email(
                to=person.email,
                subject=f"[{client.business_name if client else ''}] Escalation: {lead_name}",
                html=email_service.render_layout("Escalation", body, url, "View Escalation"),
            )
            if not result["success"]:
                logger.error("Escalation email to membership %s failed: %s", member.id, result.get("error"))


# =============================================================================
# Workflow
# =============================================================================

def _get_escalation(db: Session, escalation_id: UUID, client_id: UUID | None = None) -> Escalation:
    query = db.query(Escalation).filter(Escalation.id == escalation_id)
    if client_id:
        query = query.filter(Escalation.client_id == client_id)
    escalation = query.first()
    if not escalation:
        raise NotFoundError("Escalation not found")
    return escalation


def assign_escalation(
    db: Session, escalation_id: UUID, member_id: UUID, client_id: UUID | None = None
) -> Escalation:
    escalation = _get_escalation(db, escalation_id, client_id)
    escalation.assigned_to = member_id
    escalation.assigned_at = utcnow()
    escalation.status = EscalationStatus.ASSIGNED.value
    db.commit()
    db.refresh(escalation)
    return escalation


def take_over_conversation(
    db: Session, escalation_id: UUID, member_id: UUID, client_id: UUID | None = None
) -> Escalation:
    """A human starts responding; the AI stays out of the thread."""
    escalation = _get_escalation(db, escalation_id, client_id)
    escalation.status = EscalationStatus.IN_PROGRESS.value
    escalation.assigned_to = member_id
    escalation.first_response_at = utcnow()
    db.commit()
    db.refresh(escalation)
    return escalation


def resolve_escalation(
    db: Session,
    escalation_id: UUID,
    member_id: UUID | None,
    resolution: str,
    notes: str | None = None,
    return_to_ai: bool = True,
    client_id: UUID | None = None,
) -> Escalation:
    escalation = _get_escalation(db, escalation_id, client_id)
    escalation.status = EscalationStatus.RESOLVED.value
    escalation.resolved_at = utcnow()
    escalation.resolved_by = member_id
    escalation.resolution = resolution
    escalation.resolution_notes = notes
    escalation.return_to_ai = return_to_ai
    _set_lead_stage(db, escalation.lead_id, RESOLUTION_STAGES.get(resolution, LeadStage.QUALIFYING))
    db.commit()
    db.refresh(escalation)
    return escalation


# =============================================================================
# Queue views
# =============================================================================

def get_escalation_queue(
    db: Session,
    client_id: UUID,
    *,
    status: str | None = None,
    assigned_to: UUID | None = None,
    priority: int | None = None,
) -> list[Escalation]:
    query = (
        db.query(Escalation)
        .options(
            joinedload(Escalation.lead),
            joinedload(Escalation.assignee).joinedload(ClientMembership.person),
        )
        .filter(Escalation.client_id == client_id)
    )
    if status:
        query = query.filter(Escalation.status == status)
    if assigned_to:
        query = query.filter(Escalation.assigned_to == assigned_to)
    if priority:
        query = query.filter(Escalation.priority == priority)
    return query.order_by(Escalation.priority, Escalation.created_at.desc()).all()


def serialize_escalation(escalation: Escalation) -> dict[str, Any]:
    lead = escalation.lead
    assignee = escalation.assignee
    return {
        "id": str(escalation.id),
        "leadId": str(escalation.lead_id),
        "leadName": lead.name if lead else None,
        "leadPhone": lead.phone if lead else None,
        "reason": escalation.reason,
        "reasonDetails": escalation.reason_details,
        "priority": escalation.priority,
        "status": escalation.status,
        "conversationSummary": escalation.conversation_summary,
        "suggestedResponse": escalation.suggested_response,
        "assignedTo": str(escalation.assigned_to) if escalation.assigned_to else None,
        "assigneeName": assignee.person.name if assignee else None,
        "slaDeadline": escalation.sla_deadline.isoformat() if escalation.sla_deadline else None,
        "slaBreach": escalation.sla_breach,
        "resolution": escalation.resolution,
        "createdAt": escalation.created_at.isoformat(),
    }


def get_queue_summary(db: Session, client_id: UUID) -> dict[str, int]:
    rows = (
        db.query(Escalation.status, func.count(Escalation.id))
        .filter(Escalation.client_id == client_id)
        .group_by(Escalation.status)
        .all()
    )
    counts = dict(rows)
    breached = (
        db.query(func.count(Escalation.id))
        .filter(
            Escalation.client_id == client_id,
            Escalation.sla_breach.is_(True),
            Escalation.status.in_(EscalationStatus.open_values()),
        )
        .scalar()
    )
    return {
        "pending": counts.get(EscalationStatus.PENDING.value, 0),
        "assigned": counts.get(EscalationStatus.ASSIGNED.value, 0),
        "inProgress": counts.get(EscalationStatus.IN_PROGRESS.value, 0),
        "resolved": counts.get(EscalationStatus.RESOLVED.value, 0),
        "slaBreached": breached or 0,
    }


async def check_sla_breaches(db: Session) -> int:
    """Flag overdue pending/assigned escalations and email each client's receivers."""
    now = utcnow()
    breached = (
        db.query(Escalation)
        .filter(
            Escalation.status.in_([EscalationStatus.PENDING.value, EscalationStatus.ASSIGNED.value]),
            Escalation.sla_breach.is_(False),
            Escalation.sla_deadline < now,
        )
        .all()
    )
    for escalation in breached:
        escalation.sla_breach = True
    db.commit()

    for escalation in breached:
        client = db.query(Client).filter(Client.id == escalation.client_id).first()
        members = (
            db.query(ClientMembership)
            .options(joinedload(ClientMembership.person))
            .filter(
                ClientMembership.client_id == escalation.client_id,
                ClientMembership.is_active.is_(True),
                ClientMembership.receive_escalations.is_(True),
            )
            .all()
        )
        body = (
            "<p>An escalation has exceeded the response time SLA.</p>"
            f"<p><strong>Reason:</strong> {html.escape(_reason_text(escalation.reason))}</p>"
        )
        for member in members:
            if not member.person.email:
                continue
            result = await email_service.send_email(
                to=member.person.email,
                subject=f"[SLA Breach] Escalation overdue - {client.business_name if client else ''}",
                html=email_service.render_layout(
                    "SLA Breach Alert", body, _escalation_url(escalation.id), "View Escalation"
                ),
            )
            if not result["success"]:
                logger.error("SLA breach email for %s failed: %s", escalation.id, result.get("error"))

    if breached:
        logger.info("Flagged %s escalations past SLA", len(breached))
    return len(breached)
