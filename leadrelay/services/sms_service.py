"""Twilio messaging client (lazy singleton) and request validation."""

import logging

from twilio.request_validator import RequestValidator
from twilio.rest import Client as TwilioClient

from leadrelay.core.config import settings
from leadrelay.core.exceptions import ConfigurationError
from leadrelay.utils.normalization import mask_phone

logger = logging.getLogger(__name__)

_client: TwilioClient | None = None


def get_twilio_client() -> TwilioClient:
    """Get or create the shared Twilio REST client."""
    global _client
    if _client is None:
        if not settings.twilio_configured:
            raise ConfigurationError("Missing Twilio credentials")
        _client = TwilioClient(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    return _client


def reset_twilio_client() -> None:
    global _client
    _client = None


STATUS_CALLBACK_PATH = "/api/webhooks/twilio/status"


def send_sms(to: str, body: str, from_: str) -> str:
    """
    Send an SMS and return the Twilio message SID.

    Delivery status is reported back to the status webhook when APP_URL is set.

    Raises:
        TwilioRestException: Twilio rejected the message
        ConfigurationError: Twilio credentials missing
    """
    params = {"to": to, "from_": from_, "body": body}
    if settings.APP_URL:
        params["status_callback"] = f"{settings.app_url}{STATUS_CALLBACK_PATH}"
    message = get_twilio_client().messages.create(**params)
    logger.info("SMS sent to %s (sid=%s)", mask_phone(to), message.sid)
    return message.sid


def validate_twilio_request(url: str, params: dict, signature: str | None) -> bool:
    """Check X-Twilio-Signature for an incoming webhook."""
    if not signature or not settings.TWILIO_AUTH_TOKEN:
        return False
    return RequestValidator(settings.TWILIO_AUTH_TOKEN).validate(url, params, signature)
