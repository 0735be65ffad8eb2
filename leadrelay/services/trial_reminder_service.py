"""Trial reminder emails on days 7, 12 and 14 of the 14-day trial.

The trial starts at the client's created_at; there is no separate trial record.
"""

import html
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from leadrelay.core.config import settings
from leadrelay.db.enums import ClientStatus
from leadrelay.db.models import Client
from leadrelay.services import email_service
from leadrelay.utils.dates import start_of_day, utcnow

logger = logging.getLogger(__name__)

TRIAL_DAYS = 14
REMINDER_DAYS = (7, 12, 14)


@dataclass
class TrialReminderResult:
    processed: int = 0
    sent: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def format_trial_email(business_name: str, owner_name: str, days_left: int, day_number: int) -> tuple[str, str]:
    name = html.escape(owner_name)
    business = html.escape(business_name)
    billing_url = f"{settings.app_url}/client/billing"

    if days_left == 0:
        body = (
            f"<p>Hi {name},</p>"
            f"<p>Your {TRIAL_DAYS}-day trial of LeadRelay for <strong>{business}</strong> ends today.</p>"
            "<p>To keep your missed call recovery, automated follow-ups, and lead management "
            "running, upgrade to a paid plan.</p>"
            '<p style="color:#9ca3af;font-size:14px">If you\'ve already upgraded, you can ignore this email.</p>'
        )
        return (
            f"{business_name} - Your trial ends today",
            email_service.render_layout("Your trial ends today", body, billing_url, "Upgrade Now"),
        )

    if days_left <= 2:
        body = (
            f"<p>Hi {name},</p>"
            f"<p>Your LeadRelay trial for <strong>{business}</strong> ends in {days_left} days.</p>"
            "<p>So far, we've been handling your missed calls, following up with leads, and booking "
            "appointments automatically. Don't lose that momentum.</p>"
        )
        return (
            f"{business_name} - {days_left} days left in your trial",
            email_service.render_layout(f"{days_left} days left in your trial", body, billing_url, "View Plans"),
        )

    body = (
        f"<p>Hi {name},</p>"
        f"<p>You've been using LeadRelay for <strong>{business}</strong> for {day_number} days. "
        "Here's what's running for you:</p>"
        "<ul><li>Missed call recovery: instant text to every missed caller</li>"
        "<li>AI-powered lead follow-ups</li>"
        "<li>Automated appointment booking</li>"
        "<li>Weekly performance reports</li></ul>"
        f"<p>You have <strong>{days_left} days</strong> left in your trial.</p>"
    )
    return (
        f"{business_name} - How's your first week going?",
        email_service.render_layout("One week in!", body, f"{settings.app_url}/client", "View Your Dashboard"),
    )


async def process_trial_reminders(db: Session, now: datetime | None = None) -> TrialReminderResult:
    """Email active clients whose created_at falls on a reminder day (whole UTC day)."""
    now = now or utcnow()
    result = TrialReminderResult()

    for day_number in REMINDER_DAYS:
        day_start = start_of_day((now - timedelta(days=day_number)).date())
        day_end = day_start + timedelta(days=1)
        clients = (
            db.query(Client)
            .filter(
                Client.status == ClientStatus.ACTIVE.value,
                Client.created_at >= day_start,
                Client.created_at < day_end,
            )
            .all()
        )
        for client in clients:
            result.processed += 1
            subject, body = format_trial_email(
                client.business_name, client.owner_name, TRIAL_DAYS - day_number, day_number
            )
            sent = await email_service.send_email(to=client.email, subject=subject, html=body)
            if sent["success"]:
                result.sent += 1
            else:
                result.errors += 1
                logger.error("Trial reminder for client %s failed: %s", client.id, sent.get("error"))

    return result
