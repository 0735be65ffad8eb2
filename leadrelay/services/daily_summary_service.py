"""Daily activity email for clients who opted in via notification preferences."""

import html
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from leadrelay.core.config import settings
from leadrelay.db.enums import ClientStatus, MessageDirection
from leadrelay.db.models import Appointment, Client, Conversation, Lead, NotificationPreferences
from leadrelay.services import email_service, magic_link_service, stats_service
from leadrelay.utils.dates import start_of_day, utcnow
from leadrelay.utils.normalization import format_phone

logger = logging.getLogger(__name__)

ATTENTION_LIMIT = 10
ATTENTION_IDLE_HOURS = 2


@dataclass
class DailyActivity:
    new_leads: int = 0
    messages_sent: int = 0
    messages_received: int = 0
    appointments_booked: int = 0
    missed_calls: int = 0

    @property
    def has_activity(self) -> bool:
        return any(
            (self.new_leads, self.messages_sent, self.messages_received, self.appointments_booked)
        )


def get_daily_activity(db: Session, client_id: UUID, day: date) -> DailyActivity:
    totals = stats_service.sum_stats(db, client_id, day, day)
    start = start_of_day(day)
    end = start + timedelta(days=1)

    received = (
        db.query(func.count(Conversation.id))
        .filter(
            Conversation.client_id == client_id,
            Conversation.direction == MessageDirection.INBOUND.value,
            Conversation.created_at >= start,
            Conversation.created_at < end,
        )
        .scalar()
    )
    booked = (
        db.query(func.count(Appointment.id))
        .filter(
            Appointment.client_id == client_id,
            Appointment.created_at >= start,
            Appointment.created_at < end,
        )
        .scalar()
    )
    return DailyActivity(
        new_leads=totals["conversations_started"],
        messages_sent=totals["messages_sent"],
        messages_received=received or 0,
        appointments_booked=booked or 0,
        missed_calls=totals["missed_calls_captured"],
    )


def get_leads_needing_attention(db: Session, client_id: UUID, now: datetime | None = None) -> list[Lead]:
    """Flagged leads nobody has touched for two hours, most recent first."""
    cutoff = (now or utcnow()) - timedelta(hours=ATTENTION_IDLE_HOURS)
    return (
        db.query(Lead)
        .filter(
            Lead.client_id == client_id,
            Lead.action_required.is_(True),
            Lead.updated_at <= cutoff,
        )
        .order_by(Lead.updated_at.desc())
        .limit(ATTENTION_LIMIT)
        .all()
    )


def get_today_appointments(db: Session, client_id: UUID, day: date) -> list[Appointment]:
    return (
        db.query(Appointment)
        .join(Lead, Lead.id == Appointment.lead_id)
        .filter(Appointment.client_id == client_id, Appointment.appointment_date == day)
        .order_by(Appointment.appointment_time)
        .all()
    )


def format_daily_email(
    client: Client,
    activity: DailyActivity,
    attention: list[Lead],
    appointments: list[Appointment],
    dashboard_link: str,
) -> tuple[str, str]:
    plural = "" if activity.new_leads == 1 else "s"
    subject = f"Daily Update: {activity.new_leads} new lead{plural} - {client.business_name}"

    body = (
        "<p>Yesterday at a glance:</p><ul>"
        f"<li>{activity.new_leads} new leads</li>"
        f"<li>{activity.messages_sent} messages sent</li>"
        f"<li>{activity.messages_received} messages received</li>"
        f"<li>{activity.appointments_booked} appointments booked</li>"
        f"<li>{activity.missed_calls} missed calls captured</li></ul>"
    )
    if attention:
        rows = "".join(
            f'<li><a href="{settings.app_url}/leads/{lead.id}">'
            f"{html.escape(lead.name or format_phone(lead.phone))}</a> {format_phone(lead.phone)}</li>"
            for lead in attention
        )
        body += f"<h3>Needs your attention</h3><ul>{rows}</ul>"
    if appointments:
        rows = "".join(
            f"<li>{appt.appointment_time} - "
            f"{html.escape(appt.lead.name or format_phone(appt.lead.phone))} ({appt.status or 'scheduled'})</li>"
            for appt in appointments
        )
        body += f"<h3>Today's appointments</h3><ul>{rows}</ul>"

    return subject, email_service.render_layout(
        f"Good morning, {client.owner_name}", body, dashboard_link, "Open Dashboard"
    )


async def send_daily_summary(db: Session, client: Client, now: datetime | None = None) -> bool:
    """Returns False when there was nothing to report."""
    now = now or utcnow()
    today = now.date()
    activity = get_daily_activity(db, client.id, today - timedelta(days=1))
    attention = get_leads_needing_attention(db, client.id, now)
    appointments = get_today_appointments(db, client.id, today)

    if not (activity.has_activity or attention or appointments):
        logger.info("Skipping daily summary for client %s: no activity", client.id)
        return False

    link = magic_link_service.create_magic_link(db, client.id)
    db.commit()
    subject, body = format_daily_email(client, activity, attention, appointments, link)
    result = await email_service.send_email(to=client.email, subject=subject, html=body)
    if not result["success"]:
        logger.error("Daily summary email for client %s failed: %s", client.id, result.get("error"))
    return result["success"]


async def process_daily_summaries(db: Session, now: datetime | None = None) -> int:
    clients = (
        db.query(Client)
        .join(NotificationPreferences, NotificationPreferences.client_id == Client.id)
        .filter(
            NotificationPreferences.email_daily_summary.is_(True),
            Client.status == ClientStatus.ACTIVE.value,
        )
        .all()
    )
    sent = 0
    for client in clients:
        try:
            if await send_daily_summary(db, client, now):
                sent += 1
        except Exception:
            db.rollback()
            logger.exception("Daily summary failed for client %s", client.id)
    return sent
