"""Delivery of queued follow-up SMS (scheduled_messages)."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from leadrelay.db.enums import MessageDirection
from leadrelay.db.models import BlockedNumber, Client, Conversation, Lead, ScheduledMessage
from leadrelay.services import sms_service, stats_service
from leadrelay.utils.dates import utcnow

logger = logging.getLogger(__name__)

BATCH_SIZE = 50
DEFAULT_MONTHLY_LIMIT = 10000


@dataclass
class ProcessResult:
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def reset_monthly_counts_if_due(db: Session, now: datetime) -> bool:
    """Zero every client's monthly counter in the first hour of the month (UTC)."""
    if now.day != 1 or now.hour >= 1:
        return False
    db.query(Client).update({Client.messages_sent_this_month: 0}, synchronize_session=False)
    db.commit()
    logger.info("Reset monthly message counts")
    return True


def _mark_cancelled(db: Session, message: ScheduledMessage, reason: str) -> None:
    message.cancelled = True
    message.cancelled_at = utcnow()
    message.cancelled_reason = reason
    db.commit()


def _is_blocked(db: Session, client_id, phone: str) -> bool:
    return (
        db.query(BlockedNumber.id)
        .filter(BlockedNumber.client_id == client_id, BlockedNumber.phone == phone)
        .first()
        is not None
    )


def _claim(db: Session, message_id) -> bool:
    """Atomically mark one message sent; False when another run already took it."""
    result = db.execute(
        update(ScheduledMessage)
        .where(
            ScheduledMessage.id == message_id,
            ScheduledMessage.sent.is_(False),
            ScheduledMessage.cancelled.is_(False),
        )
        .values(sent=True, sent_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def _unclaim(db: Session, message_id) -> None:
    db.execute(
        update(ScheduledMessage)
        .where(ScheduledMessage.id == message_id)
        .values(sent=False, sent_at=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def process_scheduled_messages(db: Session, now: datetime | None = None) -> ProcessResult:
    """Send up to BATCH_SIZE due messages, skipping or cancelling the ones that may not go out."""
    now = now or utcnow()
    reset_monthly_counts_if_due(db, now)

    due = (
        db.query(ScheduledMessage, Lead, Client)
        .join(Lead, Lead.id == ScheduledMessage.lead_id)
        .join(Client, Client.id == ScheduledMessage.client_id)
        .filter(
            ScheduledMessage.sent.is_(False),
            ScheduledMessage.cancelled.is_(False),
            ScheduledMessage.send_at <= now,
        )
        .order_by(ScheduledMessage.send_at)
        .limit(BATCH_SIZE)
        .all()
    )

    result = ProcessResult(processed=len(due))
    for message, lead, client in due:
        if lead.opted_out:
            _mark_cancelled(db, message, "Lead opted out")
            result.skipped += 1
            continue

        if _is_blocked(db, client.id, lead.phone):
            _mark_cancelled(db, message, "Number blocked")
            result.skipped += 1
            continue

        limit = client.monthly_message_limit or DEFAULT_MONTHLY_LIMIT
        if (client.messages_sent_this_month or 0) >= limit:
            result.skipped += 1
            continue

        if not client.twilio_number:
            _mark_cancelled(db, message, "No Twilio number")
            result.skipped += 1
            continue

        message_id = message.id
        if not _claim(db, message_id):
            result.skipped += 1
            continue

        try:
            sid = sms_service.send_sms(lead.phone, message.content, client.twilio_number)
        except Exception:
            logger.exception("Failed to send scheduled message %s", message_id)
            _unclaim(db, message_id)
            result.failed += 1
            continue

        db.add(
            Conversation(
                lead_id=lead.id,
                client_id=client.id,
                direction=MessageDirection.OUTBOUND.value,
                message_type="scheduled",
                content=message.content,
                twilio_sid=sid,
            )
        )
        stats_service.increment_daily_stat(db, client.id, "messages_sent")
        client.messages_sent_this_month = (client.messages_sent_this_month or 0) + 1
        db.commit()
        result.sent += 1

    logger.info(
        "Scheduled messages: processed=%s sent=%s skipped=%s failed=%s",
        result.processed, result.sent, result.skipped, result.failed,
    )
    return result
