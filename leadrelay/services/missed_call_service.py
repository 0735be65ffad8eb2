"""Missed-call text-back, with Twilio polling for calls the webhook never finalized."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session
from twilio.base.exceptions import TwilioRestException

from leadrelay.db.enums import ClientStatus, MessageDirection
from leadrelay.db.models import ActiveCall, BlockedNumber, Client, Conversation, Lead
from leadrelay.services import sms_service, stats_service
from leadrelay.utils.dates import utcnow
from leadrelay.utils.normalization import mask_phone, normalize_phone
from leadrelay.utils.templates import render_template

logger = logging.getLogger(__name__)

MISSED_STATUSES = frozenset({"no-answer", "busy", "failed", "canceled"})
DIAL_TIMEOUT_SECONDS = 18
# Calls older than this have a final status
POLL_AFTER_SECONDS = 31
# A "completed" dial leg this short was answered by carrier voicemail
VOICEMAIL_MAX_SECONDS = 45


@dataclass
class MissedCallOutcome:
    processed: bool
    reason: str | None = None
    lead_id: str | None = None
    is_new_lead: bool = False


@dataclass
class PollResult:
    processed: int = 0
    missedDetected: int = 0
    stillActive: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _upsert_lead(db: Session, client_id, phone: str) -> tuple[Lead, bool]:
    lead = db.query(Lead).filter(Lead.client_id == client_id, Lead.phone == phone).first()
    if lead:
        lead.updated_at = utcnow()
        return lead, False
    lead = Lead(client_id=client_id, phone=phone, source="missed_call", status="new")
    db.add(lead)
    db.flush()
    return lead, True


def handle_missed_call(db: Session, *, from_number: str, to_number: str, call_sid: str) -> MissedCallOutcome:
    """Text the caller back once per CallSid and record the lead and stats."""
    try:
        caller = normalize_phone(from_number)
        twilio_number = normalize_phone(to_number)
    except ValueError:
        return MissedCallOutcome(processed=False, reason="Invalid phone number")

    client = _active_client(db, twilio_number)
    if not client:
        return MissedCallOutcome(processed=False, reason="No active client for this number")

    already_sent = (
        db.query(Conversation.id)
        .filter(
            Conversation.twilio_sid == call_sid,
            Conversation.message_type == "sms",
            Conversation.direction == MessageDirection.OUTBOUND.value,
        )
        .first()
    )
    if already_sent:
        return MissedCallOutcome(processed=False, reason="SMS already sent for this call")

    blocked = (
        db.query(BlockedNumber.id)
        .filter(BlockedNumber.client_id == client.id, BlockedNumber.phone == caller)
        .first()
    )
    if blocked:
        return MissedCallOutcome(processed=False, reason="Number is blocked")

    lead, is_new = _upsert_lead(db, client.id, caller)
    content = render_template(
        "missed_call",
        {"ownerName": client.owner_name, "businessName": client.business_name},
    )

    try:
        sms_service.send_sms(caller, content, client.twilio_number)
    except Exception:
        db.rollback()
        logger.exception("Missed-call SMS to %s failed", mask_phone(caller))
        return MissedCallOutcome(processed=False, reason="Failed to send SMS")

    # CallSid rather than the message SID so repeat callbacks dedupe
    db.add(
        Conversation(
            lead_id=lead.id,
            client_id=client.id,
            direction=MessageDirection.OUTBOUND.value,
            message_type="sms",
            content=content,
            twilio_sid=call_sid,
        )
    )
    stats_service.increment_daily_stat(db, client.id, "missed_calls_captured")
    stats_service.increment_daily_stat(db, client.id, "messages_sent")
    if is_new:
        stats_service.increment_daily_stat(db, client.id, "conversations_started")
    client.messages_sent_this_month = (client.messages_sent_this_month or 0) + 1
    db.commit()

    return MissedCallOutcome(processed=True, lead_id=str(lead.id), is_new_lead=is_new)


def _active_client(db: Session, twilio_number: str) -> Client | None:
    return (
        db.query(Client)
        .filter(Client.twilio_number == twilio_number, Client.status == ClientStatus.ACTIVE.value)
        .first()
    )


def register_incoming_call(db: Session, *, call_sid: str, from_number: str, to_number: str) -> Client | None:
    """
    Record a ringing call for the poller and return the client to forward it to.

    Returns None when the number belongs to no active client.
    """
    try:
        twilio_number = normalize_phone(to_number)
    except ValueError:
        return None
    client = _active_client(db, twilio_number)
    if not client:
        logger.info("No active client for Twilio number %s", mask_phone(twilio_number))
        return None

    if call_sid and not db.query(ActiveCall.id).filter(ActiveCall.call_sid == call_sid).first():
        db.add(
            ActiveCall(
                client_id=client.id,
                call_sid=call_sid,
                caller_phone=from_number,
                twilio_number=to_number,
            )
        )
        db.commit()
    return client


def is_missed_dial(dial_status: str, dial_duration: int) -> bool:
    """
    Whether a forwarded leg ended without the owner picking up.

    Carrier voicemail answers the call, so a short "completed" leg counts too.
    """
    if dial_status in MISSED_STATUSES:
        return True
    return dial_status == "completed" and 0 < dial_duration <= VOICEMAIL_MAX_SECONDS


def handle_dial_result(
    db: Session,
    *,
    call_sid: str,
    from_number: str,
    to_number: str,
    dial_status: str,
    dial_duration: int = 0,
) -> MissedCallOutcome | None:
    """Outcome of the <Dial> leg. Texts the caller back when it was missed."""
    outcome = None
    if is_missed_dial(dial_status, dial_duration):
        logger.info("Missed call %s (%s, %ss)", call_sid, dial_status, dial_duration)
        outcome = handle_missed_call(db, from_number=from_number, to_number=to_number, call_sid=call_sid)

    call = db.query(ActiveCall).filter(ActiveCall.call_sid == call_sid).first()
    if call:
        call.processed = True
        call.processed_at = utcnow()
        db.commit()
    return outcome


def _is_not_found(exc: TwilioRestException) -> bool:
    return exc.status == 404 or exc.code == 20404


def check_missed_calls(db: Session, now: datetime | None = None) -> PollResult:
    """
    Poll Twilio for the final status of unprocessed active calls.

    Raises:
        ConfigurationError: Twilio credentials missing
    """
    twilio = sms_service.get_twilio_client()
    cutoff = (now or utcnow()) - timedelta(seconds=POLL_AFTER_SECONDS)
    calls = (
        db.query(ActiveCall)
        .filter(ActiveCall.received_at <= cutoff, ActiveCall.processed.is_(False))
        .all()
    )
    logger.info("Checking %s active calls", len(calls))

    result = PollResult()
    for call in calls:
        try:
            call_data = twilio.calls(call.call_sid).fetch()
        except TwilioRestException as exc:
            if _is_not_found(exc):
                db.delete(call)
                db.commit()
                result.processed += 1
            else:
                logger.error("Error checking call %s: %s", call.call_sid, exc.msg)
            continue

        if call_data.status in MISSED_STATUSES:
            handle_missed_call(
                db,
                from_number=call.caller_phone,
                to_number=call.twilio_number,
                call_sid=call.call_sid,
            )
            result.missedDetected += 1

        call.processed = True
        call.processed_at = utcnow()
        db.flush()
        db.delete(call)
        db.commit()
        result.processed += 1

    result.stillActive = len(calls) - result.processed
    return result
