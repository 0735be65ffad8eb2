"""One-time login codes for the client portal (SMS or email).

Unknown identifiers get the same response as known ones so the endpoint
cannot be used to discover which phones/emails have portal access.
"""

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from leadrelay.core.config import settings
from leadrelay.db.enums import ClientStatus
from leadrelay.db.models import Client, ClientMembership, OtpCode, Person, RoleTemplate
from leadrelay.services import email_service, sms_service
from leadrelay.utils.dates import utcnow
from leadrelay.utils.normalization import mask_phone, normalize_email, normalize_phone

logger = logging.getLogger(__name__)

OTP_EXPIRY_MINUTES = 5
MAX_REQUESTS_PER_WINDOW = 3
RATE_LIMIT_WINDOW_MINUTES = 15
DEFAULT_MAX_ATTEMPTS = 5

METHOD_PHONE = "phone"
METHOD_EMAIL = "email"


@dataclass
class OtpSendResult:
    success: bool
    error: str | None = None
    retry_after_seconds: int | None = None


@dataclass
class OtpVerifyResult:
    success: bool
    person_id: UUID | None = None
    error: str | None = None  # invalid_or_expired | max_attempts | wrong_code
    attempts_remaining: int | None = None


def generate_code() -> str:
    """Cryptographically random 6-digit code (100000-999999)."""
    return str(secrets.randbelow(900000) + 100000)


def normalize_identifier(identifier: str, method: str) -> str:
    """E.164 for phones, lowercase for emails. Raises ValueError on bad phones."""
    if method == METHOD_PHONE:
        return normalize_phone(identifier) or ""
    return normalize_email(identifier) or ""


def _identifier_column(method: str):
    return OtpCode.phone if method == METHOD_PHONE else OtpCode.email


def find_person(db: Session, identifier: str, method: str) -> Person | None:
    column = Person.phone if method == METHOD_PHONE else Person.email
    return db.query(Person).filter(column == identifier).first()


def list_person_businesses(db: Session, person_id: UUID) -> list[dict]:
    """Active clients where the person holds an active membership."""
    rows = (
        db.query(ClientMembership, Client, RoleTemplate)
        .join(Client, Client.id == ClientMembership.client_id)
        .join(RoleTemplate, RoleTemplate.id == ClientMembership.role_template_id)
        .filter(
            ClientMembership.person_id == person_id,
            ClientMembership.is_active.is_(True),
            Client.status == ClientStatus.ACTIVE.value,
        )
        .order_by(Client.business_name)
        .all()
    )
    return [
        {
            "clientId": str(client.id),
            "businessName": client.business_name,
            "role": role.name,
            "isOwner": membership.is_owner,
            "twilioNumber": client.twilio_number,
        }
        for membership, client, role in rows
    ]


def check_rate_limit(db: Session, identifier: str, method: str, now: datetime | None = None) -> int | None:
    """Return seconds until another code may be sent, or None if allowed."""
    now = now or utcnow()
    window_start = now - timedelta(minutes=RATE_LIMIT_WINDOW_MINUTES)
    recent = (
        db.query(OtpCode.created_at)
        .filter(
            _identifier_column(method) == identifier,
            OtpCode.created_at > window_start,
        )
        .order_by(OtpCode.created_at)
        .all()
    )
    if len(recent) < MAX_REQUESTS_PER_WINDOW:
        return None
    oldest = recent[0][0]
    window_end = oldest + timedelta(minutes=RATE_LIMIT_WINDOW_MINUTES)
    return max(math.ceil((window_end - now).total_seconds()), 1)


async def send_otp(db: Session, identifier: str, method: str) -> OtpSendResult:
    """Create and deliver a login code. Delivery errors are logged, not returned."""
    person = find_person(db, identifier, method)
    if not person:
        return OtpSendResult(success=True)

    businesses = list_person_businesses(db, person.id)
    if not businesses:
        return OtpSendResult(success=True)

    retry_after = check_rate_limit(db, identifier, method)
    if retry_after is not None:
        return OtpSendResult(success=False, error="rate_limit", retry_after_seconds=retry_after)

    code = generate_code()
    db.add(
        OtpCode(
            person_id=person.id,
            phone=identifier if method == METHOD_PHONE else None,
            email=identifier if method == METHOD_EMAIL else None,
            code=code,
            max_attempts=DEFAULT_MAX_ATTEMPTS,
            expires_at=utcnow() + timedelta(minutes=OTP_EXPIRY_MINUTES),
        )
    )
    db.commit()

    if method == METHOD_PHONE:
        from_number = next(
            (b["twilioNumber"] for b in businesses if b["twilioNumber"]),
            settings.TWILIO_PHONE_NUMBER,
        )
        try:
            sms_service.send_sms(
                identifier,
                f"Your login code is {code}. It expires in {OTP_EXPIRY_MINUTES} minutes.",
                from_number,
            )
        except Exception:
            logger.exception("OTP SMS delivery failed for %s", mask_phone(identifier))
    else:
        html = email_service.render_layout(
            "Your Login Code",
            f'<p style="font-size:32px;letter-spacing:8px;font-weight:bold">{code}</p>'
            f"<p>This code expires in {OTP_EXPIRY_MINUTES} minutes.</p>"
            "<p>If you didn't request this code, you can safely ignore this email.</p>",
        )
        result = await email_service.send_email(to=identifier, subject="Your login code", html=html)
        if not result["success"]:
            logger.error("OTP email delivery failed: %s", result.get("error"))

    return OtpSendResult(success=True)


def verify_otp(db: Session, identifier: str, method: str, code: str) -> OtpVerifyResult:
    """Check a code against the newest unexpired, unverified code for the identifier."""
    now = utcnow()
    otp = (
        db.query(OtpCode)
        .filter(
            _identifier_column(method) == identifier,
            OtpCode.expires_at > now,
            OtpCode.verified_at.is_(None),
        )
        .order_by(OtpCode.created_at.desc())
        .first()
    )
    if not otp:
        return OtpVerifyResult(success=False, error="invalid_or_expired")

    if otp.attempts >= otp.max_attempts:
        return OtpVerifyResult(success=False, error="max_attempts", attempts_remaining=0)

    otp.attempts = otp.attempts + 1
    db.commit()

    if not secrets.compare_digest(otp.code, code):
        return OtpVerifyResult(
            success=False,
            error="wrong_code",
            attempts_remaining=otp.max_attempts - otp.attempts,
        )

    otp.verified_at = now
    db.commit()
    return OtpVerifyResult(success=True, person_id=otp.person_id)
