"""Weekly recap SMS + email sent to each client owner on their chosen day and hour."""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from leadrelay.db.enums import ClientStatus, EscalationStatus
from leadrelay.db.models import Client, ClientMembership, Escalation, Person
from leadrelay.services import email_service, magic_link_service, sms_service, stats_service
from leadrelay.utils.dates import parse_hour, sunday_weekday, utcnow

logger = logging.getLogger(__name__)

MIN_DAYS_BETWEEN_SUMMARIES = 6


@dataclass
class WeeklyStats:
    leads_captured: int = 0
    messages_sent: int = 0
    appointments: int = 0
    top_team_member: str | None = None
    top_team_member_resolved: int = 0


def get_weekly_stats(db: Session, client_id: UUID, now: datetime | None = None) -> WeeklyStats:
    now = now or utcnow()
    since = now - timedelta(days=7)
    totals = stats_service.sum_stats(db, client_id, since.date(), now.date())

    top = (
        db.query(Person.name, func.count(Escalation.id).label("resolved"))
        .join(ClientMembership, ClientMembership.id == Escalation.resolved_by)
        .join(Person, Person.id == ClientMembership.person_id)
        .filter(
            Escalation.client_id == client_id,
            Escalation.status == EscalationStatus.RESOLVED.value,
            Escalation.resolved_at >= since,
        )
        .group_by(ClientMembership.id, Person.name)
        .order_by(func.count(Escalation.id).desc())
        .first()
    )

    return WeeklyStats(
        leads_captured=totals["missed_calls_captured"] + totals["forms_responded"],
        messages_sent=totals["messages_sent"],
        appointments=totals["appointments_reminded"],
        top_team_member=top[0] if top else None,
        top_team_member_resolved=int(top[1]) if top else 0,
    )


def format_weekly_sms(business_name: str, stats: WeeklyStats, dashboard_link: str) -> str:
    lines = [
        f"Weekly Recap for {business_name}",
        "",
        f"{stats.leads_captured} leads captured",
        f"{stats.messages_sent} messages sent",
    ]
    if stats.appointments > 0:
        lines.append(f"{stats.appointments} appointments")
    if stats.top_team_member:
        lines.extend(["", f"Top: {stats.top_team_member} ({stats.top_team_member_resolved} resolved)"])
    lines.extend(["", f"Full stats: {dashboard_link}"])
    return "\n".join(lines)


def format_weekly_email(
    business_name: str, owner_name: str, stats: WeeklyStats, dashboard_link: str
) -> tuple[str, str]:
    subject = f"Your Week with LeadRelay - {stats.leads_captured} Leads Captured"

    def metric(label: str, value: int) -> str:
        return (
            f'<h3 style="margin-bottom:4px">{label}</h3>'
            f'<p style="font-size:24px;font-weight:bold;margin:0">{value}</p>'
        )

    block = metric("LEADS CAPTURED", stats.leads_captured) + metric("MESSAGES SENT", stats.messages_sent)
    if stats.appointments > 0:
        block += metric("APPOINTMENTS", stats.appointments)
    body = (
        f"<p>Here's what happened at <strong>{html.escape(business_name)}</strong> this week:</p>"
        f'<div style="background:#f5f5f5;padding:20px;border-radius:8px">{block}</div>'
    )
    if stats.top_team_member:
        body += (
            f"<p><strong>Top performer:</strong> {html.escape(stats.top_team_member)} "
            f"resolved {stats.top_team_member_resolved} escalations</p>"
        )
    return subject, email_service.render_layout(
        f"Hi {owner_name},", body, dashboard_link, "View Full Dashboard"
    )


async def send_weekly_summary(db: Session, client: Client, now: datetime | None = None) -> None:
    now = now or utcnow()
    stats = get_weekly_stats(db, client.id, now)
    link = magic_link_service.create_magic_link(db, client.id)
    db.commit()

    if client.phone and client.twilio_number:
        try:
            sms_service.send_sms(
                client.phone, format_weekly_sms(client.business_name, stats, link), client.twilio_number
            )
        except Exception:
            logger.exception("Weekly summary SMS for client %s failed", client.id)

    if client.email:
        subject, body = format_weekly_email(client.business_name, client.owner_name, stats, link)
        result = await email_service.send_email(to=client.email, subject=subject, html=body)
        if not result["success"]:
            logger.error("Weekly summary email for client %s failed: %s", client.id, result.get("error"))

    client.last_weekly_summary_at = now
    db.commit()


def is_due(client: Client, now: datetime) -> bool:
    if parse_hour(client.weekly_summary_time) != now.hour:
        return False
    if client.last_weekly_summary_at:
        elapsed = now - client.last_weekly_summary_at
        if elapsed < timedelta(days=MIN_DAYS_BETWEEN_SUMMARIES):
            return False
    return True


async def process_weekly_summaries(db: Session, now: datetime | None = None) -> int:
    """Send to active clients scheduled for this weekday (0 = Sunday) and hour."""
    now = now or utcnow()
    clients = (
        db.query(Client)
        .filter(
            Client.status == ClientStatus.ACTIVE.value,
            Client.weekly_summary_enabled.is_(True),
            Client.weekly_summary_day == sunday_weekday(now),
        )
        .all()
    )

    sent = 0
    for client in clients:
        if not is_due(client, now):
            continue
        try:
            await send_weekly_summary(db, client, now)
            sent += 1
        except Exception:
            db.rollback()
            logger.exception("Failed to send weekly summary to client %s", client.id)
    return sent
