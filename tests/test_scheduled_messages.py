"""Scheduled follow-up delivery and the monthly counter reset."""
from datetime import datetime, timedelta, timezone

import pytest
from twilio.base.exceptions import TwilioRestException

from leadrelay.db.models import BlockedNumber, Conversation, DailyStats, Lead, ScheduledMessage
from leadrelay.services import scheduled_message_service, sms_service

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def queue(db, make_client):
    """Factory: one due message for a fresh lead of `client`."""
    def _queue(client=None, phone="+14035550401", opted_out=False, send_at=None) -> ScheduledMessage:
        client = client or make_client()
        lead = db.query(Lead).filter(Lead.client_id == client.id, Lead.phone == phone).first()
        if lead is None:
            lead = Lead(client_id=client.id, phone=phone, name="Morgan", opted_out=opted_out)
            db.add(lead)
            db.flush()
        message = ScheduledMessage(
            lead_id=lead.id,
            client_id=client.id,
            sequence_type="estimate_followup",
            content="Just checking in on your estimate!",
            send_at=send_at or NOW - timedelta(minutes=5),
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        return message
    return _queue


def test_due_message_is_sent_and_counted(db, make_client, queue, sent_sms):
    client = make_client(messages_sent_this_month=7)
    message = queue(client)
    queue(client, send_at=NOW + timedelta(hours=1))

    result = scheduled_message_service.process_scheduled_messages(db, now=NOW)

    assert result.to_dict() == {"processed": 1, "sent": 1, "skipped": 0, "failed": 0}
    assert sent_sms[0].to == "+14035550401"
    assert sent_sms[0].from_ == client.twilio_number
    db.refresh(message)
    db.refresh(client)
    assert message.sent is True
    assert client.messages_sent_this_month == 8
    convo = db.query(Conversation).one()
    assert convo.direction == "outbound"
    assert convo.message_type == "scheduled"
    assert db.query(DailyStats).one().messages_sent == 1


def test_opted_out_lead_is_cancelled(db, queue, sent_sms):
    message = queue(opted_out=True)
    result = scheduled_message_service.process_scheduled_messages(db, now=NOW)
    assert result.skipped == 1
    assert sent_sms == []
    db.refresh(message)
    assert message.cancelled is True
    assert message.cancelled_reason == "Lead opted out"


def test_blocked_number_is_cancelled(db, make_client, queue, sent_sms):
    client = make_client()
    db.add(BlockedNumber(client_id=client.id, phone="+14035550401"))
    db.commit()
    message = queue(client)

    scheduled_message_service.process_scheduled_messages(db, now=NOW)
    db.refresh(message)
    assert message.cancelled_reason == "Number blocked"
    assert sent_sms == []


def test_client_without_number_is_cancelled(db, make_client, queue, sent_sms):
    message = queue(make_client(twilio_number=None))
    scheduled_message_service.process_scheduled_messages(db, now=NOW)
    db.refresh(message)
    assert message.cancelled_reason == "No Twilio number"


def test_monthly_limit_skips_without_cancelling(db, make_client, queue, sent_sms):
    message = queue(make_client(monthly_message_limit=10, messages_sent_this_month=10))
    result = scheduled_message_service.process_scheduled_messages(db, now=NOW)
    assert result.skipped == 1
    db.refresh(message)
    assert message.cancelled is False
    assert message.sent is False


def test_send_failure_leaves_message_queued(db, queue, monkeypatch):
    def boom(to, body, from_):
        raise TwilioRestException(500, "/Messages", msg="carrier error")

    monkeypatch.setattr(sms_service, "send_sms", boom)
    message = queue()

    result = scheduled_message_service.process_scheduled_messages(db, now=NOW)

    assert result.failed == 1
    db.refresh(message)
    assert message.sent is False
    assert message.sent_at is None
    assert db.query(Conversation).count() == 0


def test_transport_error_unclaims_and_batch_continues(db, make_client, queue, monkeypatch):
    client = make_client()
    first = queue(client, phone="+14035550401")
    second = queue(client, phone="+14035550402", send_at=NOW - timedelta(minutes=1))
    delivered = []

    def flaky(to, body, from_):
        if to == "+14035550401":
            raise ConnectionError("connection reset by peer")
        delivered.append(to)
        return "SM123"

    monkeypatch.setattr(sms_service, "send_sms", flaky)

    result = scheduled_message_service.process_scheduled_messages(db, now=NOW)

    assert result.to_dict() == {"processed": 2, "sent": 1, "skipped": 0, "failed": 1}
    assert delivered == ["+14035550402"]
    db.refresh(first)
    db.refresh(second)
    assert first.sent is False
    assert first.sent_at is None
    assert second.sent is True


def test_monthly_counts_reset_first_hour_of_month(db, make_client):
    client = make_client(messages_sent_this_month=250)

    assert not scheduled_message_service.reset_monthly_counts_if_due(db, datetime(2026, 4, 1, 1, 0, tzinfo=timezone.utc))
    assert not scheduled_message_service.reset_monthly_counts_if_due(db, datetime(2026, 4, 2, 0, 30, tzinfo=timezone.utc))
    db.refresh(client)
    assert client.messages_sent_this_month == 250

    assert scheduled_message_service.reset_monthly_counts_if_due(db, datetime(2026, 4, 1, 0, 30, tzinfo=timezone.utc))
    db.refresh(client)
    assert client.messages_sent_this_month == 0
