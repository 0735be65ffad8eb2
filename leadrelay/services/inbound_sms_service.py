"""
Inbound lead SMS on a client's Twilio number.

Handles STOP/START keywords, blocked senders, NPS score replies, and
keyword escalation rules. Every accepted message is logged on the lead
thread and pauses the lead's pending follow-ups.
"""

import logging
import re
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm import Session

from leadrelay.db.enums import ClientStatus, MessageDirection
from leadrelay.db.models import BlockedNumber, Client, Conversation, Lead, ScheduledMessage
from leadrelay.services import escalation_service, nps_service, sms_service, stats_service
from leadrelay.utils.dates import utcnow
from leadrelay.utils.normalization import mask_phone, normalize_phone
from leadrelay.utils.templates import render_template

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({"stop", "stopall", "unsubscribe", "cancel", "end", "quit"})
START_WORDS = frozenset({"start", "unstop"})
OPT_OUT_REASON = "opt_out"
KEYWORD_ESCALATION_REASON = "keyword_match"

_SCORE = re.compile(r"^\s*(\d{1,2})\s*(?:/\s*10)?\s*[.!]?\s*$")


@dataclass
class InboundOutcome:
    processed: bool
    reason: str | None = None
    lead_id: str | None = None
    opted_out: bool = False
    opted_in: bool = False
    nps_score: int | None = None
    escalation_id: str | None = None


def parse_score(body: str) -> int | None:
    """A bare 0-10 reply ("9", "10/10", "7!"), else None."""
    match = _SCORE.match(body)
    if not match:
        return None
    score = int(match.group(1))
    return score if score <= 10 else None


def _reply(client: Client, to: str, body: str) -> bool:
    try:
        sms_service.send_sms(to, body, client.twilio_number)
    except Exception:
        logger.exception("Reply to %s failed", mask_phone(to))
        return False
    return True


def _cancel_pending(db: Session, lead_id, reason: str) -> int:
    result = db.execute(
        update(ScheduledMessage)
        .where(
            ScheduledMessage.lead_id == lead_id,
            ScheduledMessage.sent.is_(False),
            ScheduledMessage.cancelled.is_(False),
        )
        .values(cancelled=True, cancelled_at=utcnow(), cancelled_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _find_lead(db: Session, client_id, phone: str) -> Lead | None:
    return db.query(Lead).filter(Lead.client_id == client_id, Lead.phone == phone).first()


def handle_opt_out(db: Session, client: Client, phone: str) -> InboundOutcome:
    """Block the sender, mark the lead opted out, cancel its follow-ups, confirm once."""
    blocked = (
        db.query(BlockedNumber.id)
        .filter(BlockedNumber.client_id == client.id, BlockedNumber.phone == phone)
        .first()
    )
    if not blocked:
        db.add(BlockedNumber(client_id=client.id, phone=phone, reason=OPT_OUT_REASON))

    lead = _find_lead(db, client.id, phone)
    if lead:
        lead.opted_out = True
        lead.status = "opted_out"
        _cancel_pending(db, lead.id, "Opted out")
    db.commit()

    logger.info("Opt-out from %s for client %s", mask_phone(phone), client.id)
    _reply(client, phone, render_template("opt_out_confirmation", {"businessName": client.business_name}))
    return InboundOutcome(processed=True, lead_id=str(lead.id) if lead else None, opted_out=True)


def handle_opt_in(db: Session, client: Client, phone: str) -> InboundOutcome:
    """Lift an opt-out block. Blocks added by the agency for other reasons stay."""
    db.query(BlockedNumber).filter(
        BlockedNumber.client_id == client.id,
        BlockedNumber.phone == phone,
        BlockedNumber.reason == OPT_OUT_REASON,
    ).delete(synchronize_session=False)

    lead = _find_lead(db, client.id, phone)
    if lead and lead.opted_out:
        lead.opted_out = False
        lead.status = "active"
    db.commit()

    logger.info("Opt-in from %s for client %s", mask_phone(phone), client.id)
    _reply(client, phone, render_template("opt_in_confirmation", {"businessName": client.business_name}))
    return InboundOutcome(processed=True, lead_id=str(lead.id) if lead else None, opted_in=True)


def _matching_rule(db: Session, client: Client, body: str):
    if not client.auto_escalation_enabled:
        return None
    rules = escalation_service.list_rules(db, client.id, enabled_only=True)
    return next((rule for rule in rules if escalation_service.rule_matches(rule, body)), None)


async def handle_inbound_sms(
    db: Session,
    *,
    from_number: str,
    to_number: str,
    body: str,
    message_sid: str,
) -> InboundOutcome:
    """Route one inbound SMS from a lead to the client that owns `to_number`."""
    try:
        sender = normalize_phone(from_number)
        twilio_number = normalize_phone(to_number)
    except ValueError:
        return InboundOutcome(processed=False, reason="Invalid phone number")
    if not sender or not twilio_number:
        return InboundOutcome(processed=False, reason="Invalid phone number")

    client = (
        db.query(Client)
        .filter(Client.twilio_number == twilio_number, Client.status == ClientStatus.ACTIVE.value)
        .first()
    )
    if not client:
        logger.info("No client for Twilio number %s", mask_phone(twilio_number))
        return InboundOutcome(processed=False, reason="No client for this number")

    text = body.strip()
    keyword = text.lower()
    if keyword in STOP_WORDS:
        return handle_opt_out(db, client, sender)
    if keyword in START_WORDS:
        return handle_opt_in(db, client, sender)

    blocked = (
        db.query(BlockedNumber.id)
        .filter(BlockedNumber.client_id == client.id, BlockedNumber.phone == sender)
        .first()
    )
    if blocked:
        return InboundOutcome(processed=False, reason="Number is blocked")

    lead = _find_lead(db, client.id, sender)
    is_new = lead is None
    if is_new:
        lead = Lead(client_id=client.id, phone=sender, source="sms", status="new")
        db.add(lead)
        db.flush()
    else:
        lead.updated_at = utcnow()

    message = Conversation(
        lead_id=lead.id,
        client_id=client.id,
        direction=MessageDirection.INBOUND.value,
        message_type="sms",
        content=text,
        twilio_sid=message_sid or None,
    )
    db.add(message)
    paused = _cancel_pending(db, lead.id, "Lead replied")
    if is_new:
        stats_service.increment_daily_stat(db, client.id, "conversations_started")
    db.commit()
    if paused:
        logger.info("Paused %s follow-ups for lead %s", paused, lead.id)

    outcome = InboundOutcome(processed=True, lead_id=str(lead.id))

    score = parse_score(text)
    survey = nps_service.find_pending_survey(db, lead.id) if score is not None else None
    if survey:
        nps_service.process_nps_response(db, survey.id, score)
        outcome.nps_score = score
        _reply(client, sender, render_template("nps_thanks", {"businessName": client.business_name}))
        return outcome

    rule = _matching_rule(db, client, text)
    if rule:
        lead.action_required = True
        lead.action_required_reason = f"Matched escalation rule: {rule.name}"
        db.commit()
        escalation = await escalation_service.create_escalation(
            db,
            lead_id=lead.id,
            client_id=client.id,
            reason=KEYWORD_ESCALATION_REASON,
            reason_details=text,
            trigger_message_id=message.id,
            match_text=text,
        )
        outcome.escalation_id = str(escalation.id)

    return outcome
