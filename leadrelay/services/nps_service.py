"""Post-appointment NPS surveys over SMS."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from leadrelay.core.exceptions import NotFoundError, ValidationFailedError
from leadrelay.db.enums import NpsStatus
from leadrelay.db.models import Appointment, Client, Lead, NpsSurvey
from leadrelay.services import sms_service
from leadrelay.utils.dates import utcnow

logger = logging.getLogger(__name__)

SURVEY_DELAY_HOURS = 4
BATCH_SIZE = 20


@dataclass
class NpsBatchResult:
    sent: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def survey_message(lead_name: str | None, business_name: str) -> str:
    greeting = f"Hi {lead_name}!" if lead_name else "Hi!"
    return (
        f"{greeting} How was your experience with {business_name}? "
        "Reply with a number 1-10 (10 = amazing). Your feedback helps us improve!"
    )


def send_nps_survey(db: Session, lead_id: UUID, appointment_id: UUID | None) -> NpsSurvey | None:
    """Create and text one survey. Returns None when it was skipped or the SMS failed."""
    lead = db.query(Lead).filter(Lead.id == lead_id).first()
    if not lead or lead.opted_out:
        return None

    client = db.query(Client).filter(Client.id == lead.client_id).first()
    if not client or not client.twilio_number:
        return None

    existing = (
        db.query(NpsSurvey.id)
        .filter(NpsSurvey.appointment_id == appointment_id, NpsSurvey.lead_id == lead_id)
        .first()
    )
    if existing:
        return None

    survey = NpsSurvey(
        client_id=lead.client_id,
        lead_id=lead_id,
        appointment_id=appointment_id,
        sent_via="sms",
        status=NpsStatus.SENT.value,
    )
    db.add(survey)
    db.commit()

    try:
        sms_service.send_sms(lead.phone, survey_message(lead.name, client.business_name), client.twilio_number)
    except Exception:
        logger.exception("NPS survey SMS for lead %s failed", lead_id)
        survey.status = NpsStatus.EXPIRED.value
        db.commit()
        return None

    db.refresh(survey)
    return survey


def process_nps_response(db: Session, survey_id: UUID, score: int, comment: str | None = None) -> NpsSurvey:
    if not 0 <= score <= 10:
        raise ValidationFailedError("Score must be between 0 and 10")
    survey = db.query(NpsSurvey).filter(NpsSurvey.id == survey_id).first()
    if not survey:
        raise NotFoundError("Survey not found")
    survey.score = score
    survey.comment = comment or None
    survey.responded_at = utcnow()
    survey.status = NpsStatus.RESPONDED.value
    db.commit()
    db.refresh(survey)
    return survey


def find_pending_survey(db: Session, lead_id: UUID) -> NpsSurvey | None:
    return (
        db.query(NpsSurvey)
        .filter(NpsSurvey.lead_id == lead_id, NpsSurvey.status == NpsStatus.SENT.value)
        .order_by(NpsSurvey.sent_at.desc())
        .first()
    )


def send_pending_nps_surveys(db: Session, now: datetime | None = None) -> NpsBatchResult:
    """Survey completed appointments last updated at least four hours ago."""
    cutoff = (now or utcnow()) - timedelta(hours=SURVEY_DELAY_HOURS)
    appointments = (
        db.query(Appointment.id, Appointment.lead_id)
        .outerjoin(NpsSurvey, NpsSurvey.appointment_id == Appointment.id)
        .filter(
            Appointment.status == "completed",
            Appointment.updated_at <= cutoff,
            NpsSurvey.id.is_(None),
        )
        .limit(BATCH_SIZE)
        .all()
    )

    result = NpsBatchResult()
    for appointment_id, lead_id in appointments:
        try:
            if send_nps_survey(db, lead_id, appointment_id):
                result.sent += 1
        except Exception:
            db.rollback()
            logger.exception("Error sending NPS survey for appointment %s", appointment_id)
            result.errors += 1

    logger.info("NPS: sent %s surveys, %s errors", result.sent, result.errors)
    return result
