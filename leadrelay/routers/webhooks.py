"""Inbound webhooks from Stripe and Twilio."""

import logging
from urllib.parse import urlencode

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session
from twilio.twiml.voice_response import VoiceResponse

from leadrelay.core.config import settings
from leadrelay.core.deps import get_db
from leadrelay.services import (
    agency_communication_service,
    inbound_sms_service,
    missed_call_service,
    sms_service,
    stripe_service,
)

router = APIRouter()
logger = logging.getLogger(__name__)

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def _twiml(content: str = EMPTY_TWIML) -> Response:
    return Response(content=content, media_type="text/xml")


def _public_url(request: Request) -> str:
    """URL Twilio called, as it signed it."""
    if not settings.APP_URL:
        return str(request.url)
    query = f"?{request.url.query}" if request.url.query else ""
    return f"{settings.app_url}{request.url.path}{query}"


def _base_url(request: Request) -> str:
    return settings.app_url if settings.APP_URL else str(request.base_url).rstrip("/")


def _as_int(value: str | None) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0


async def _verified_form(request: Request) -> dict[str, str]:
    """Form fields of a Twilio webhook; the signature is enforced outside dev."""
    form = {key: str(value) for key, value in (await request.form()).items()}
    if settings.ENV != "dev":
        url = _public_url(request)
        if not sms_service.validate_twilio_request(url, form, request.headers.get("x-twilio-signature")):
            logger.warning("Rejected Twilio webhook with invalid signature: %s", request.url.path)
            raise HTTPException(status_code=403, detail="Invalid signature")
    return form


@router.post("/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=400, detail="Missing signature")

    payload = await request.body()
    try:
        event = stripe_service.construct_event(payload, signature)
    except (stripe.SignatureVerificationError, ValueError) as exc:
        logger.warning("Stripe webhook signature check failed: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid signature")

    stripe_service.handle_webhook_event(db, event)
    return {"received": True}


@router.post("/twilio/voice")
async def voice(request: Request, db: Session = Depends(get_db)):
    """
    Incoming call on a client's number.

    First hit forwards the call to the business phone. Twilio calls back
    with DialCallStatus once the forwarded leg ends; a miss is texted back.
    """
    form = await _verified_form(request)
    call_sid = form.get("CallSid", "")

    dial_status = form.get("DialCallStatus", "").lower()
    if dial_status:
        missed_call_service.handle_dial_result(
            db,
            call_sid=call_sid,
            from_number=request.query_params.get("origFrom") or form.get("From", ""),
            to_number=request.query_params.get("origTo") or form.get("To", ""),
            dial_status=dial_status,
            dial_duration=_as_int(form.get("DialCallDuration")),
        )
        return _twiml()

    from_number = form.get("From", "")
    to_number = form.get("To", "")
    if not from_number or not to_number:
        return _twiml()

    client = missed_call_service.register_incoming_call(
        db, call_sid=call_sid, from_number=from_number, to_number=to_number
    )
    response = VoiceResponse()
    if client is None:
        response.say("Sorry, we could not process your call.")
    elif not client.phone:
        response.say("Sorry, the business line is not currently available.")
    else:
        query = urlencode({"mode": "dial-result", "origFrom": from_number, "origTo": to_number})
        dial = response.dial(
            timeout=missed_call_service.DIAL_TIMEOUT_SECONDS,
            answer_on_bridge=True,
            action=f"{_base_url(request)}/api/webhooks/twilio/voice?{query}",
            method="POST",
        )
        dial.number(client.phone)
    return _twiml(str(response))


@router.post("/twilio/sms")
async def inbound_sms(request: Request, db: Session = Depends(get_db)):
    form = await _verified_form(request)
    outcome = await inbound_sms_service.handle_inbound_sms(
        db,
        from_number=form.get("From", ""),
        to_number=form.get("To", ""),
        body=form.get("Body", ""),
        message_sid=form.get("MessageSid", ""),
    )
    if not outcome.processed:
        logger.info("Inbound SMS %s not processed: %s", form.get("MessageSid"), outcome.reason)
    return _twiml()


@router.post("/twilio/agency-sms")
async def agency_sms(request: Request, db: Session = Depends(get_db)):
    form = await _verified_form(request)
    agency_communication_service.handle_agency_inbound_sms(
        db,
        from_number=form.get("From", ""),
        to_number=form.get("To", ""),
        body=form.get("Body", ""),
        message_sid=form.get("MessageSid", ""),
    )
    return _twiml()


@router.post("/twilio/status")
async def message_status(request: Request):
    form = await _verified_form(request)
    logger.info(
        "SMS status update: sid=%s status=%s error=%s",
        form.get("MessageSid"),
        form.get("MessageStatus"),
        form.get("ErrorCode"),
    )
    return _twiml()
