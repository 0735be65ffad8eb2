"""Inbound lead SMS, voice forwarding, and NPS replies."""
from datetime import timedelta

import pytest

from leadrelay.core.exceptions import ValidationFailedError
from leadrelay.db.enums import NpsStatus
from leadrelay.db.models import (
    ActiveCall,
    BlockedNumber,
    Conversation,
    Escalation,
    EscalationRule,
    Lead,
    NpsSurvey,
    ScheduledMessage,
)
from leadrelay.services import inbound_sms_service, missed_call_service, nps_service, sms_service
from leadrelay.utils.dates import utcnow

LEAD_PHONE = "+14035550800"
BUSINESS_LINE = "+14035559999"


def _inbound(body, sid="SM1", sender=LEAD_PHONE):
    return {"From": sender, "To": BUSINESS_LINE, "Body": body, "MessageSid": sid}


def _lead_with_followup(db, client, **lead_fields):
    lead = Lead(client_id=client.id, phone=LEAD_PHONE, name="Robin", **lead_fields)
    db.add(lead)
    db.flush()
    db.add(
        ScheduledMessage(
            lead_id=lead.id,
            client_id=client.id,
            sequence_type="estimate_followup",
            content="Any questions about the estimate?",
            send_at=utcnow() + timedelta(days=1),
        )
    )
    db.commit()
    return lead


@pytest.mark.parametrize(
    "body,expected",
    [("9", 9), (" 10/10 ", 10), ("7!", 7), ("0", 0), ("11", None), ("great job", None), ("9 out of 10 maybe", None)],
)
def test_parse_score(body, expected):
    assert inbound_sms_service.parse_score(body) == expected


# =============================================================================
# SMS webhook
# =============================================================================

@pytest.mark.asyncio
async def test_reply_is_logged_and_pauses_followups(client, db, make_client, sent_sms):
    business = make_client()
    lead = _lead_with_followup(db, business)

    res = await client.post("/api/webhooks/twilio/sms", data=_inbound("Is Tuesday ok?"))

    assert res.status_code == 200
    assert "<Response></Response>" in res.text
    message = db.query(Conversation).one()
    assert (message.direction, message.content, message.twilio_sid) == ("inbound", "Is Tuesday ok?", "SM1")
    pending = db.query(ScheduledMessage).one()
    assert pending.cancelled
    assert pending.cancelled_reason == "Lead replied"
    assert db.query(Lead).one().id == lead.id
    assert sent_sms == []


@pytest.mark.asyncio
async def test_unknown_sender_becomes_sms_lead(client, db, make_client, sent_sms):
    make_client()
    await client.post("/api/webhooks/twilio/sms", data=_inbound("Do you do drains?"))
    lead = db.query(Lead).one()
    assert (lead.phone, lead.source) == (LEAD_PHONE, "sms")


@pytest.mark.asyncio
async def test_stop_blocks_and_confirms(client, db, make_client, sent_sms):
    business = make_client(business_name="Prairie Plumbing")
    _lead_with_followup(db, business)

    await client.post("/api/webhooks/twilio/sms", data=_inbound(" STOP "))

    block = db.query(BlockedNumber).one()
    assert (block.phone, block.reason) == (LEAD_PHONE, "opt_out")
    lead = db.query(Lead).one()
    assert lead.opted_out
    assert lead.status == "opted_out"
    assert db.query(ScheduledMessage).one().cancelled_reason == "Opted out"
    assert len(sent_sms) == 1
    assert "Prairie Plumbing" in sent_sms[0].body
    assert "Reply START" in sent_sms[0].body


@pytest.mark.asyncio
async def test_start_lifts_opt_out_but_keeps_agency_blocks(client, db, make_client, sent_sms):
    business = make_client()
    await client.post("/api/webhooks/twilio/sms", data=_inbound("stop", sid="SM1"))
    db.add(BlockedNumber(client_id=business.id, phone="+14035550801", reason="spam"))
    db.commit()

    await client.post("/api/webhooks/twilio/sms", data=_inbound("start", sid="SM2"))

    assert [b.phone for b in db.query(BlockedNumber).all()] == ["+14035550801"]
    assert sent_sms[-1].body.startswith("You've been resubscribed")


@pytest.mark.asyncio
async def test_blocked_sender_is_ignored(client, db, make_client, sent_sms):
    business = make_client()
    db.add(BlockedNumber(client_id=business.id, phone=LEAD_PHONE, reason="spam"))
    db.commit()

    await client.post("/api/webhooks/twilio/sms", data=_inbound("hello?"))

    assert db.query(Conversation).count() == 0
    assert db.query(Lead).count() == 0


@pytest.mark.asyncio
async def test_unknown_business_line_is_not_processed(db, sent_sms):
    outcome = await inbound_sms_service.handle_inbound_sms(
        db, from_number=LEAD_PHONE, to_number="+15875550000", body="hi", message_sid="SM1"
    )
    assert not outcome.processed
    assert outcome.reason == "No client for this number"


# =============================================================================
# NPS replies
# =============================================================================

@pytest.mark.asyncio
async def test_score_reply_records_pending_survey(db, make_client, sent_sms):
    business = make_client()
    lead = _lead_with_followup(db, business)
    survey = NpsSurvey(client_id=business.id, lead_id=lead.id, status=NpsStatus.SENT.value)
    db.add(survey)
    db.commit()

    outcome = await inbound_sms_service.handle_inbound_sms(
        db, from_number=LEAD_PHONE, to_number=BUSINESS_LINE, body="9", message_sid="SM1"
    )

    assert outcome.nps_score == 9
    db.refresh(survey)
    assert (survey.status, survey.score) == (NpsStatus.RESPONDED.value, 9)
    assert sent_sms[0].body.startswith("Thanks for the feedback!")


@pytest.mark.asyncio
async def test_number_without_survey_is_an_ordinary_reply(db, make_client, sent_sms):
    make_client()
    outcome = await inbound_sms_service.handle_inbound_sms(
        db, from_number=LEAD_PHONE, to_number=BUSINESS_LINE, body="3", message_sid="SM1"
    )
    assert outcome.processed
    assert outcome.nps_score is None
    assert sent_sms == []


def test_out_of_range_score_is_rejected(db, make_client):
    business = make_client()
    lead = Lead(client_id=business.id, phone=LEAD_PHONE)
    db.add(lead)
    db.flush()
    survey = NpsSurvey(client_id=business.id, lead_id=lead.id)
    db.add(survey)
    db.commit()

    with pytest.raises(ValidationFailedError):
        nps_service.process_nps_response(db, survey.id, 11)
    db.refresh(survey)
    assert survey.status == NpsStatus.SENT.value


def test_survey_expires_when_sms_transport_fails(db, make_client, monkeypatch):
    business = make_client()
    lead = Lead(client_id=business.id, phone=LEAD_PHONE)
    db.add(lead)
    db.commit()

    def boom(to, body, from_):
        raise TimeoutError("read timed out")

    monkeypatch.setattr(sms_service, "send_sms", boom)

    assert nps_service.send_nps_survey(db, lead.id, None) is None
    assert db.query(NpsSurvey).one().status == NpsStatus.EXPIRED.value


# =============================================================================
# Keyword escalation
# =============================================================================

@pytest.mark.asyncio
async def test_keyword_rule_escalates_lead(db, make_client, sent_sms):
    business = make_client()
    db.add(
        EscalationRule(
            client_id=business.id,
            name="Emergencies",
            conditions={"triggers": [{"type": "keyword", "value": "flood"}]},
            action={"notifyVia": ["sms"]},
            priority=10,
        )
    )
    db.commit()

    outcome = await inbound_sms_service.handle_inbound_sms(
        db, from_number=LEAD_PHONE, to_number=BUSINESS_LINE, body="Basement is FLOODING", message_sid="SM1"
    )

    escalation = db.query(Escalation).one()
    assert outcome.escalation_id == str(escalation.id)
    assert escalation.reason == "keyword_match"
    assert escalation.reason_details == "Basement is FLOODING"
    assert escalation.trigger_message_id == db.query(Conversation).one().id
    lead = db.query(Lead).one()
    assert lead.action_required
    assert lead.action_required_reason == "Matched escalation rule: Emergencies"
    assert db.query(EscalationRule).one().times_triggered == 1


@pytest.mark.asyncio
async def test_rules_are_skipped_when_auto_escalation_is_off(db, make_client, sent_sms):
    business = make_client(auto_escalation_enabled=False)
    db.add(
        EscalationRule(
            client_id=business.id,
            name="Emergencies",
            conditions={"triggers": [{"type": "keyword", "value": "flood"}]},
            action={},
        )
    )
    db.commit()

    outcome = await inbound_sms_service.handle_inbound_sms(
        db, from_number=LEAD_PHONE, to_number=BUSINESS_LINE, body="flood!", message_sid="SM1"
    )

    assert outcome.escalation_id is None
    assert db.query(Escalation).count() == 0


# =============================================================================
# Voice webhook
# =============================================================================

@pytest.mark.asyncio
async def test_incoming_call_is_forwarded_and_tracked(client, db, make_client):
    make_client(phone="+14035550100")

    res = await client.post(
        "/api/webhooks/twilio/voice",
        data={"CallSid": "CA1", "From": LEAD_PHONE, "To": BUSINESS_LINE},
    )

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/xml")
    assert "<Number>+14035550100</Number>" in res.text
    assert 'timeout="18"' in res.text
    assert 'answerOnBridge="true"' in res.text
    assert "mode=dial-result" in res.text
    call = db.query(ActiveCall).one()
    assert (call.call_sid, call.caller_phone, call.processed) == ("CA1", LEAD_PHONE, False)


@pytest.mark.asyncio
async def test_call_to_unknown_number_is_declined(client, db):
    res = await client.post(
        "/api/webhooks/twilio/voice",
        data={"CallSid": "CA1", "From": LEAD_PHONE, "To": BUSINESS_LINE},
    )
    assert "Sorry, we could not process your call." in res.text
    assert db.query(ActiveCall).count() == 0


@pytest.mark.asyncio
async def test_call_without_business_phone_is_declined(client, db, make_client):
    make_client(phone=None)
    res = await client.post(
        "/api/webhooks/twilio/voice",
        data={"CallSid": "CA1", "From": LEAD_PHONE, "To": BUSINESS_LINE},
    )
    assert "the business line is not currently available" in res.text
    assert "<Dial" not in res.text


@pytest.mark.asyncio
async def test_unanswered_dial_texts_caller_back(client, db, make_client, sent_sms):
    make_client()
    await client.post(
        "/api/webhooks/twilio/voice",
        data={"CallSid": "CA1", "From": LEAD_PHONE, "To": BUSINESS_LINE},
    )

    res = await client.post(
        "/api/webhooks/twilio/voice",
        params={"mode": "dial-result", "origFrom": LEAD_PHONE, "origTo": BUSINESS_LINE},
        data={"CallSid": "CA1", "DialCallStatus": "no-answer", "From": "+14035550100", "To": BUSINESS_LINE},
    )

    assert "<Response></Response>" in res.text
    assert [sms.to for sms in sent_sms] == [LEAD_PHONE]
    assert db.query(ActiveCall).one().processed


@pytest.mark.asyncio
async def test_answered_dial_is_not_texted(client, db, make_client, sent_sms):
    make_client()
    await client.post(
        "/api/webhooks/twilio/voice",
        params={"mode": "dial-result", "origFrom": LEAD_PHONE, "origTo": BUSINESS_LINE},
        data={"CallSid": "CA1", "DialCallStatus": "completed", "DialCallDuration": "240"},
    )
    assert sent_sms == []


@pytest.mark.parametrize(
    "status,duration,missed",
    [
        ("no-answer", 0, True),
        ("busy", 0, True),
        ("completed", 20, True),
        ("completed", 45, True),
        ("completed", 46, False),
        ("completed", 0, False),
    ],
)
def test_is_missed_dial(status, duration, missed):
    assert missed_call_service.is_missed_dial(status, duration) is missed
