"""
Buying, assigning and releasing client Twilio numbers.

Operations report failures as {"success": False, "error": ...} rather than
raising, so routes can hand the message straight back to the admin UI.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session
from twilio.base.exceptions import TwilioException

from leadrelay.core.config import settings
from leadrelay.core.exceptions import ConfigurationError
from leadrelay.db.enums import ClientStatus
from leadrelay.db.models import Client
from leadrelay.services import sms_service
from leadrelay.utils.normalization import mask_phone

logger = logging.getLogger(__name__)

MAX_RESULTS = 10
DEFAULT_COUNTRY = "CA"
NOT_OWNED = "Number not found in your Twilio account"

_MOCK_NUMBER = re.compile(r"^\+1\d{3}555\d{4}$")

MOCK_LOCALITIES: dict[str, tuple[str, str]] = {
    "403": ("Calgary", "AB"),
    "780": ("Edmonton", "AB"),
    "604": ("Vancouver", "BC"),
    "204": ("Winnipeg", "MB"),
    "506": ("Moncton", "NB"),
    "709": ("St. John's", "NL"),
    "902": ("Halifax", "NS"),
    "867": ("Yellowknife", "NT"),
    "416": ("Toronto", "ON"),
    "514": ("Montreal", "QC"),
    "306": ("Saskatoon", "SK"),
    "212": ("New York", "NY"),
    "415": ("San Francisco", "CA"),
    "214": ("Dallas", "TX"),
    "305": ("Miami", "FL"),
    "312": ("Chicago", "IL"),
}

REGION_AREA_CODES: dict[str, str] = {
    "AB": "403", "BC": "604", "MB": "204", "NB": "506", "NL": "709", "NS": "902",
    "NT": "867", "NU": "867", "ON": "416", "PE": "902", "QC": "514", "SK": "306",
    "YT": "867", "NY": "212", "CA": "415", "TX": "214", "FL": "305", "IL": "312",
    "PA": "215", "OH": "216", "GA": "404", "MI": "313", "WA": "206",
}


@dataclass
class ProvisionResult:
    success: bool
    error: str | None = None
    sid: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.error:
            data["error"] = self.error
        if self.sid:
            data["sid"] = self.sid
        return data


def _is_dev() -> bool:
    return settings.ENV == "dev"


def is_mock_number(phone_number: str) -> bool:
    """+1XXX555NNNN numbers are placeholders, honoured only in dev."""
    return _is_dev() and bool(_MOCK_NUMBER.match(phone_number))


def mock_numbers(area_code: str) -> list[dict[str, Any]]:
    locality, region = MOCK_LOCALITIES.get(area_code, ("Unknown", "XX"))
    return [
        {
            "phoneNumber": f"+1{area_code}555{i:04d}",
            "friendlyName": f"Available {region}",
            "locality": locality,
            "region": region,
            "capabilities": {"voice": True, "SMS": True, "MMS": True},
        }
        for i in range(MAX_RESULTS)
    ]


def _mock_area_code(area_code: str | None, region: str | None) -> str:
    return area_code or REGION_AREA_CODES.get((region or "").upper()) or "403"


def search_available_numbers(
    *,
    area_code: str | None = None,
    contains: str | None = None,
    country: str = DEFAULT_COUNTRY,
    in_region: str | None = None,
    in_locality: str | None = None,
) -> list[dict[str, Any]]:
    """
    Local voice+SMS numbers for sale, at most ten.

    Raises:
        TwilioException: search failed outside dev
        ConfigurationError: Twilio credentials missing outside dev
    """
    params: dict[str, Any] = {"voice_enabled": True, "sms_enabled": True, "limit": MAX_RESULTS}
    if area_code:
        params["area_code"] = area_code
    if contains:
        params["contains"] = contains
    if in_region:
        params["in_region"] = in_region
    if in_locality:
        params["in_locality"] = in_locality

    try:
        numbers = sms_service.get_twilio_client().available_phone_numbers(country).local.list(**params)
    except (TwilioException, ConfigurationError) as exc:
        logger.error("Twilio number search failed: %s", exc)
        if _is_dev():
            return mock_numbers(_mock_area_code(area_code, in_region))
        raise

    logger.info("Found %s available numbers in %s", len(numbers), country)
    if not numbers and _is_dev():
        return mock_numbers(_mock_area_code(area_code, in_region))

    return [
        {
            "phoneNumber": num.phone_number,
            "friendlyName": num.friendly_name,
            "locality": num.locality or "",
            "region": num.region or "",
            "capabilities": {
                "voice": bool(num.capabilities.get("voice")),
                "SMS": bool(num.capabilities.get("SMS") or num.capabilities.get("sms")),
                "MMS": bool(num.capabilities.get("MMS") or num.capabilities.get("mms")),
            },
        }
        for num in numbers[:MAX_RESULTS]
    ]


def _set_client_number(db: Session, client_id: UUID, phone_number: str | None, status: ClientStatus | None = None) -> None:
    client = db.get(Client, client_id)
    if not client:
        raise LookupError("Client not found")
    client.twilio_number = phone_number
    if status:
        client.status = status.value
    db.commit()


def _find_owned(phone_number: str):
    numbers = sms_service.get_twilio_client().incoming_phone_numbers.list(phone_number=phone_number)
    return numbers[0] if numbers else None


def _failure(action: str, exc: Exception) -> ProvisionResult:
    logger.error("Twilio %s failed: %s", action, exc)
    return ProvisionResult(success=False, error=str(exc) or f"Failed to {action} number")


def purchase_number(db: Session, phone_number: str, client_id: UUID) -> ProvisionResult:
    try:
        if is_mock_number(phone_number):
            digits = re.sub(r"\D", "", phone_number)
            sid = f"mock-{digits[-6:]}"
        else:
            purchased = sms_service.get_twilio_client().incoming_phone_numbers.create(
                phone_number=phone_number, friendly_name=f"Client: {client_id}"
            )
            sid = purchased.sid
        _set_client_number(db, client_id, phone_number)
    except (TwilioException, ConfigurationError, LookupError) as exc:
        return _failure("purchase", exc)

    logger.info("Purchased %s for client %s", mask_phone(phone_number), client_id)
    return ProvisionResult(success=True, sid=sid)


def assign_existing_number(db: Session, phone_number: str, client_id: UUID) -> ProvisionResult:
    try:
        owned = _find_owned(phone_number)
        if not owned:
            return ProvisionResult(success=False, error=NOT_OWNED)
        sms_service.get_twilio_client().incoming_phone_numbers(owned.sid).update(
            friendly_name=f"Client: {client_id}"
        )
        _set_client_number(db, client_id, phone_number)
    except (TwilioException, ConfigurationError, LookupError) as exc:
        return _failure("assign", exc)

    logger.info("Assigned %s to client %s", mask_phone(phone_number), client_id)
    return ProvisionResult(success=True)


def configure_existing_number(db: Session, phone_number: str, client_id: UUID) -> ProvisionResult:
    """Point the number's voice and SMS webhooks at this API and activate the client."""
    if not settings.APP_URL:
        return ProvisionResult(success=False, error="APP_URL not configured")
    base = settings.app_url
    try:
        owned = _find_owned(phone_number)
        if not owned:
            return ProvisionResult(success=False, error=NOT_OWNED)
        sms_service.get_twilio_client().incoming_phone_numbers(owned.sid).update(
            voice_url=f"{base}/api/webhooks/twilio/voice",
            voice_method="POST",
            sms_url=f"{base}/api/webhooks/twilio/sms",
            sms_method="POST",
            friendly_name=f"Client: {client_id}",
        )
        _set_client_number(db, client_id, phone_number, ClientStatus.ACTIVE)
    except (TwilioException, ConfigurationError, LookupError) as exc:
        return _failure("configure", exc)

    logger.info("Configured %s for client %s", mask_phone(phone_number), client_id)
    return ProvisionResult(success=True)


def release_number(db: Session, client_id: UUID) -> ProvisionResult:
    """Clear the number's webhooks (the number stays in the account) and pause the client."""
    client = db.get(Client, client_id)
    if not client or not client.twilio_number:
        return ProvisionResult(success=False, error="No number assigned to this client")

    phone_number = client.twilio_number
    try:
        if not is_mock_number(phone_number):
            owned = _find_owned(phone_number)
            if owned:
                sms_service.get_twilio_client().incoming_phone_numbers(owned.sid).update(
                    voice_url="", sms_url="", friendly_name="Released"
                )
        _set_client_number(db, client_id, None, ClientStatus.PAUSED)
    except (TwilioException, ConfigurationError, LookupError) as exc:
        return _failure("release", exc)

    logger.info("Released %s from client %s", mask_phone(phone_number), client_id)
    return ProvisionResult(success=True)


def reassign_number(db: Session, phone_number: str, from_client_id: UUID, to_client_id: UUID) -> ProvisionResult:
    target = db.get(Client, to_client_id)
    if not target:
        return ProvisionResult(success=False, error="Target client not found")
    if target.status == ClientStatus.CANCELLED.value:
        return ProvisionResult(success=False, error="Cannot assign number to cancelled client")

    source = db.get(Client, from_client_id)
    if not source or source.twilio_number != phone_number:
        return ProvisionResult(success=False, error="Number is not assigned to the source client")

    released = release_number(db, from_client_id)
    if not released.success:
        return released
    if is_mock_number(phone_number):
        _set_client_number(db, to_client_id, phone_number, ClientStatus.ACTIVE)
        return ProvisionResult(success=True)
    return configure_existing_number(db, phone_number, to_client_id)


def list_owned_numbers() -> list[dict[str, str]]:
    try:
        numbers = sms_service.get_twilio_client().incoming_phone_numbers.list()
    except (TwilioException, ConfigurationError) as exc:
        logger.error("Listing Twilio numbers failed: %s", exc)
        return []
    return [
        {"phoneNumber": num.phone_number, "friendlyName": num.friendly_name, "sid": num.sid}
        for num in numbers
    ]


def list_unassigned_numbers(db: Session) -> list[dict[str, str]]:
    assigned = {
        row.twilio_number
        for row in db.query(Client.twilio_number).filter(Client.twilio_number.isnot(None)).all()
    }
    return [num for num in list_owned_numbers() if num["phoneNumber"] not in assigned]


def get_account_balance() -> dict[str, str] | None:
    try:
        balance = sms_service.get_twilio_client().api.v2010.account.balance.fetch()
    except (TwilioException, ConfigurationError) as exc:
        logger.error("Fetching Twilio balance failed: %s", exc)
        return None
    return {"balance": balance.balance, "currency": balance.currency}
