"""
Agency-to-client messaging over the shared agency Twilio number.

Outbound texts (alerts, onboarding, digests and YES/NO action prompts) are all
recorded in agency_messages. Inbound replies are matched to the most recent
pending prompt for the sending client.
"""

import html
import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import update
from sqlalchemy.orm import Session

from leadrelay.core.config import settings
from leadrelay.db.enums import AgencyMessageCategory, AgencyMessageStatus, ClientStatus, MessageDirection
from leadrelay.db.models import AgencyMessage, Client, NotificationPreferences, SystemSetting
from leadrelay.services import email_service, sms_service, stats_service
from leadrelay.utils.dates import format_hhmm, utcnow
from leadrelay.utils.normalization import mask_phone, normalize_phone

logger = logging.getLogger(__name__)

AGENCY_NUMBER_KEY = "agency_twilio_number"
DEFAULT_PROMPT_HOURS = 24
DIGEST_PROMPT_HOURS = 48

PROMPT_ACTIONS = ("start_sequences", "schedule_callback", "confirm_action")

ACK_NO_PROMPT = "Thanks for your message. Our team will follow up shortly."
REPLY_DECLINED = "No problem - we'll skip this one."
REPLY_OTHER = "Got it - our team will review your response."


def get_agency_number(db: Session) -> str | None:
    row = db.get(SystemSetting, AGENCY_NUMBER_KEY)
    return row.value if row and row.value else None


def set_agency_number(db: Session, phone: str | None) -> str | None:
    value = normalize_phone(phone) if phone else None
    row = db.get(SystemSetting, AGENCY_NUMBER_KEY)
    if row is None:
        row = SystemSetting(key=AGENCY_NUMBER_KEY)
        db.add(row)
    row.value = value
    db.commit()
    return value


def _client_now(client: Client, now: datetime) -> datetime:
    try:
        return now.astimezone(ZoneInfo(client.timezone))
    except (ZoneInfoNotFoundError, ValueError):
        return now


def is_in_quiet_hours(
    db: Session, client_id: UUID, is_urgent: bool = False, now: datetime | None = None
) -> bool:
    """
    Whether the client's quiet hours cover `now` in the client's timezone.

    A range whose start is after its end wraps midnight (22:00 to 07:00).
    """
    prefs = (
        db.query(NotificationPreferences)
        .filter(NotificationPreferences.client_id == client_id)
        .first()
    )
    if not prefs or not prefs.quiet_hours_enabled:
        return False
    if is_urgent and prefs.urgent_override:
        return False

    now = now or utcnow()
    client = db.get(Client, client_id)
    current = format_hhmm(_client_now(client, now) if client else now)
    start, end = prefs.quiet_hours_start, prefs.quiet_hours_end

    if start > end:
        return current >= start or current < end
    return start <= current < end


def send_agency_sms(
    db: Session,
    *,
    client_id: UUID,
    to_phone: str,
    body: str,
    category: AgencyMessageCategory,
    prompt_type: str | None = None,
    action_payload: dict[str, Any] | None = None,
    expires_at: datetime | None = None,
    in_reply_to: UUID | None = None,
) -> UUID | None:
    """Send from the agency number and record the message. Returns its id, or None on failure."""
    agency_number = get_agency_number(db)
    if not agency_number:
        logger.error("No agency number configured")
        return None

    message = AgencyMessage(
        client_id=client_id,
        direction=MessageDirection.OUTBOUND.value,
        channel="sms",
        content=body,
        category=category.value,
        prompt_type=prompt_type,
        action_payload=action_payload,
        action_status=AgencyMessageStatus.PENDING.value if prompt_type else None,
        in_reply_to=in_reply_to,
        expires_at=expires_at,
    )

    try:
        message.twilio_sid = sms_service.send_sms(to_phone, body, agency_number)
        message.delivered = True
    except Exception:
        logger.exception("Agency SMS to %s failed", mask_phone(to_phone))
        message.delivered = False

    db.add(message)
    db.commit()
    return message.id if message.delivered else None


def _log_agency_email(
    db: Session, client_id: UUID, subject: str, body: str, category: AgencyMessageCategory, delivered: bool
) -> None:
    db.add(
        AgencyMessage(
            client_id=client_id,
            direction=MessageDirection.OUTBOUND.value,
            channel="email",
            content=body,
            subject=subject,
            category=category.value,
            delivered=delivered,
        )
    )
    db.commit()


def expire_client_prompts(db: Session, client_id: UUID) -> None:
    db.execute(
        update(AgencyMessage)
        .where(
            AgencyMessage.client_id == client_id,
            AgencyMessage.action_status == AgencyMessageStatus.PENDING.value,
        )
        .values(action_status=AgencyMessageStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )


def send_action_prompt(
    db: Session,
    client_id: UUID,
    prompt_type: str,
    message: str,
    action_payload: dict[str, Any],
    expires_in_hours: int = DEFAULT_PROMPT_HOURS,
    now: datetime | None = None,
) -> UUID | None:
    """Send a YES/NO prompt, replacing any prompt still awaiting a reply."""
    client = db.get(Client, client_id)
    if not client or not client.phone:
        return None
    if is_in_quiet_hours(db, client_id, now=now):
        logger.info("Skipping prompt for client %s: quiet hours", client_id)
        return None

    expire_client_prompts(db, client_id)
    return send_agency_sms(
        db,
        client_id=client_id,
        to_phone=client.phone,
        body=message,
        category=AgencyMessageCategory.ACTION_PROMPT,
        prompt_type=prompt_type,
        action_payload=action_payload,
        expires_at=(now or utcnow()) + timedelta(hours=expires_in_hours),
    )


def send_alert(
    db: Session, client_id: UUID, message: str, is_urgent: bool = False, now: datetime | None = None
) -> UUID | None:
    client = db.get(Client, client_id)
    if not client or not client.phone:
        return None
    if is_in_quiet_hours(db, client_id, is_urgent, now=now):
        logger.info("Skipping alert for client %s: quiet hours", client_id)
        return None
    return send_agency_sms(
        db,
        client_id=client_id,
        to_phone=client.phone,
        body=message,
        category=AgencyMessageCategory.ALERT,
    )


def onboarding_email(owner_name: str, business_name: str, login_url: str) -> tuple[str, str]:
    body = (
        f"<p>Hi {html.escape(owner_name)},</p>"
        f"<p>Your LeadRelay account for <strong>{html.escape(business_name)}</strong> is now active.</p>"
        "<p>From here on we'll text back your missed calls, follow up with new leads, "
        "and keep you posted on anything that needs your attention.</p>"
    )
    return (
        f"Welcome to LeadRelay, {owner_name}!",
        email_service.render_layout("You're all set", body, login_url, "Log In"),
    )


async def send_onboarding_notification(db: Session, client_id: UUID) -> None:
    """Welcome SMS and email for a newly activated client."""
    client = db.get(Client, client_id)
    if not client:
        logger.error("Onboarding notification: client %s not found", client_id)
        return

    login_url = f"{settings.app_url}/login"
    if client.phone:
        send_agency_sms(
            db,
            client_id=client.id,
            to_phone=client.phone,
            body=(
                f"Welcome to LeadRelay, {client.owner_name}!\n\n"
                f"Your account for {client.business_name} is now active.\n\n"
                f"Log in: {login_url}\n\n"
                "We'll handle your missed calls, follow-ups, and reviews."
            ),
            category=AgencyMessageCategory.ONBOARDING,
        )

    if client.email:
        subject, body = onboarding_email(client.owner_name, client.business_name, login_url)
        result = await email_service.send_email(to=client.email, subject=subject, html=body)
        _log_agency_email(db, client.id, subject, body, AgencyMessageCategory.ONBOARDING, result["success"])

    logger.info("Onboarding notification sent for client %s", client.id)


def execute_prompt_action(prompt_type: str | None, action_payload: dict[str, Any] | None, client_id: UUID) -> None:
    if prompt_type not in PROMPT_ACTIONS:
        logger.warning("Unknown prompt type %s for client %s", prompt_type, client_id)
        return
    # start_sequences and schedule_callback are recorded as executed; their
    # follow-up is picked up by the agency team from the message log.
    logger.info("Executing %s for client %s (payload=%s)", prompt_type, client_id, action_payload)


def _pending_prompt(db: Session, client_id: UUID, now: datetime) -> AgencyMessage | None:
    return (
        db.query(AgencyMessage)
        .filter(
            AgencyMessage.client_id == client_id,
            AgencyMessage.action_status == AgencyMessageStatus.PENDING.value,
            AgencyMessage.expires_at >= now,
        )
        .order_by(AgencyMessage.created_at.desc())
        .first()
    )


def handle_agency_inbound_sms(
    db: Session, *, from_number: str, to_number: str, body: str, message_sid: str, now: datetime | None = None
) -> str | None:
    """
    Record a client's reply to the agency number and act on their pending prompt.

    Returns the resulting prompt status, or None when no client or prompt matched.
    """
    now = now or utcnow()
    try:
        phone = normalize_phone(from_number)
    except ValueError:
        phone = from_number
    body = (body or "").strip()

    client = db.query(Client).filter(Client.phone == phone).first()
    if not client:
        logger.info("Agency inbound from unknown number %s", mask_phone(phone))
        return None

    inbound = AgencyMessage(
        client_id=client.id,
        direction=MessageDirection.INBOUND.value,
        channel="sms",
        content=body,
        category=AgencyMessageCategory.REPLY.value,
        twilio_sid=message_sid,
        delivered=True,
    )
    db.add(inbound)
    db.flush()

    prompt = _pending_prompt(db, client.id, now)
    if not prompt:
        db.commit()
        send_agency_sms(
            db,
            client_id=client.id,
            to_phone=client.phone,
            body=ACK_NO_PROMPT,
            category=AgencyMessageCategory.REPLY,
            in_reply_to=inbound.id,
        )
        return None

    inbound.in_reply_to = prompt.id
    prompt.client_reply = body
    reply = body.upper()

    if reply == "STOP":
        # Twilio answers STOP itself
        prompt.action_status = AgencyMessageStatus.REPLIED.value
        db.commit()
        logger.info("Client %s opted out of agency messages", client.id)
        return prompt.action_status

    if reply in ("YES", "Y"):
        prompt.action_status = AgencyMessageStatus.EXECUTED.value
        db.commit()
        execute_prompt_action(prompt.prompt_type, prompt.action_payload, client.id)
        follow_up = f"Done! We've started the action for {client.business_name}."
    elif reply in ("NO", "N"):
        prompt.action_status = AgencyMessageStatus.REPLIED.value
        db.commit()
        follow_up = REPLY_DECLINED
    else:
        prompt.action_status = AgencyMessageStatus.REPLIED.value
        db.commit()
        follow_up = REPLY_OTHER

    send_agency_sms(
        db,
        client_id=client.id,
        to_phone=client.phone,
        body=follow_up,
        category=AgencyMessageCategory.REPLY,
        in_reply_to=prompt.id,
    )
    return prompt.action_status


def trend_text(current: int, previous: int) -> str:
    if previous <= 0:
        return ""
    change = round((current - previous) / previous * 100)
    if change >= 0:
        return f" ({change}% up from last week)"
    return f" ({abs(change)}% down from last week)"


def conversion_rate(appointments: int, messages: int) -> str:
    if messages <= 0:
        return "0.0"
    return f"{appointments / messages * 100:.1f}"


def digest_email(
    client: Client, totals: dict[str, int], trend: str, rate: str, has_action_items: bool, week_start: datetime, now: datetime
) -> tuple[str, str]:
    leads = totals["missed_calls_captured"] + totals["forms_responded"]
    rows = [
        ("Leads", f"{leads}{trend}"),
        ("Messages sent", totals["messages_sent"]),
        ("Appointments", totals["appointments_reminded"]),
        ("Conversion rate", f"{rate}%"),
        ("Missed calls captured", totals["missed_calls_captured"]),
        ("Forms responded", totals["forms_responded"]),
        ("Estimates followed up", totals["estimates_followed_up"]),
        ("Reviews requested", totals["reviews_requested"]),
    ]
    table = "".join(f"<tr><td>{label}</td><td><strong>{value}</strong></td></tr>" for label, value in rows)
    body = (
        f"<p>Hi {html.escape(client.owner_name)},</p>"
        f"<p>Here's how <strong>{html.escape(client.business_name)}</strong> did from "
        f"{week_start:%b} {week_start.day} to {now:%b} {now.day}:</p>"
        f"<table>{table}</table>"
    )
    if has_action_items:
        body += "<p>You have leads without follow-ups. Reply YES to our text to start automated sequences.</p>"
    subject = f"Weekly Digest: {client.business_name}"
    return subject, email_service.render_layout(subject, body, f"{settings.app_url}/dashboard", "View Dashboard")


async def send_weekly_digest(db: Session, client_id: UUID, now: datetime | None = None) -> bool:
    """
    Week-over-week digest by SMS (or a start_sequences prompt) and email.

    Returns True when at least one channel delivered.
    """
    client = db.get(Client, client_id)
    if not client:
        return False

    now = now or utcnow()
    week_start = now - timedelta(days=7)
    current = stats_service.sum_stats(db, client.id, week_start.date(), now.date())
    previous = stats_service.sum_stats(
        db, client.id, (now - timedelta(days=14)).date(), (week_start - timedelta(days=1)).date()
    )

    leads = current["missed_calls_captured"] + current["forms_responded"]
    prev_leads = previous["missed_calls_captured"] + previous["forms_responded"]
    messages = current["messages_sent"]
    appointments = current["appointments_reminded"]
    trend = trend_text(leads, prev_leads)
    rate = conversion_rate(appointments, messages)

    sms_body = "\n".join([
        f"Weekly Digest for {client.business_name}:",
        "",
        f"Leads: {leads}{trend}",
        f"Messages sent: {messages}",
        f"Appointments: {appointments}",
        f"Conversion rate: {rate}%",
    ])
    has_action_items = leads > 0 and appointments == 0
    delivered = False

    if client.phone:
        if has_action_items:
            message_id = send_action_prompt(
                db,
                client.id,
                "start_sequences",
                f"{sms_body}\n\nYou have leads without follow-ups. Reply YES to start automated sequences.",
                {"source": "weekly_digest"},
                expires_in_hours=DIGEST_PROMPT_HOURS,
                now=now,
            )
        else:
            message_id = send_agency_sms(
                db,
                client_id=client.id,
                to_phone=client.phone,
                body=sms_body,
                category=AgencyMessageCategory.WEEKLY_DIGEST,
            )
        delivered = message_id is not None

    if client.email:
        subject, body = digest_email(client, current, trend, rate, has_action_items, week_start, now)
        result = await email_service.send_email(to=client.email, subject=subject, html=body)
        _log_agency_email(db, client.id, subject, body, AgencyMessageCategory.WEEKLY_DIGEST, result["success"])
        delivered = delivered or result["success"]

    if delivered:
        logger.info("Weekly digest sent for client %s", client.id)
    else:
        logger.warning("Weekly digest for client %s was not delivered", client.id)
    return delivered


async def process_agency_weekly_digests(db: Session, now: datetime | None = None) -> int:
    client_ids = [
        row.id
        for row in db.query(Client.id).filter(Client.status == ClientStatus.ACTIVE.value).all()
    ]
    sent = 0
    for client_id in client_ids:
        try:
            if await send_weekly_digest(db, client_id, now):
                sent += 1
        except Exception:
            db.rollback()
            logger.exception("Weekly digest failed for client %s", client_id)
    logger.info("Agency weekly digests sent: %s/%s", sent, len(client_ids))
    return sent


def expire_pending_prompts(db: Session, now: datetime | None = None) -> int:
    result = db.execute(
        update(AgencyMessage)
        .where(
            AgencyMessage.action_status == AgencyMessageStatus.PENDING.value,
            AgencyMessage.expires_at < (now or utcnow()),
        )
        .values(action_status=AgencyMessageStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Expired %s pending prompts", result.rowcount)
    return result.rowcount or 0


def list_messages(
    db: Session,
    *,
    client_id: UUID | None = None,
    category: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[AgencyMessage], int]:
    query = db.query(AgencyMessage)
    if client_id:
        query = query.filter(AgencyMessage.client_id == client_id)
    if category:
        query = query.filter(AgencyMessage.category == category)
    total = query.count()
    items = query.order_by(AgencyMessage.created_at.desc()).offset(offset).limit(limit).all()
    return items, total


def serialize_message(message: AgencyMessage) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "clientId": str(message.client_id),
        "direction": message.direction,
        "channel": message.channel,
        "content": message.content,
        "subject": message.subject,
        "category": message.category,
        "promptType": message.prompt_type,
        "actionPayload": message.action_payload,
        "actionStatus": message.action_status,
        "clientReply": message.client_reply,
        "inReplyTo": str(message.in_reply_to) if message.in_reply_to else None,
        "delivered": message.delivered,
        "expiresAt": message.expires_at.isoformat() if message.expires_at else None,
        "createdAt": message.created_at.isoformat() if message.created_at else None,
    }
