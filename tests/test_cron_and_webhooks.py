"""Cron job authentication and inbound Stripe/Twilio webhooks."""
from datetime import timedelta

import pytest
import stripe

from leadrelay.db.enums import AgencyMessageCategory, AgencyMessageStatus
from leadrelay.db.models import AgencyMessage, Coupon, Invoice, Lead, Payment
from leadrelay.services import agency_communication_service, stripe_service
from leadrelay.utils.dates import utcnow

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


# =============================================================================
# Cron
# =============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "test-cron-secret"}])
async def test_cron_requires_secret(client, headers):
    res = await client.get("/api/cron/expire-prompts", headers=headers)
    assert res.status_code == 401
    assert res.json() == {"error": "Unauthorized"}


@pytest.mark.asyncio
async def test_expire_prompts_job(client, db, make_client):
    target = make_client()
    db.add(
        AgencyMessage(
            client_id=target.id,
            direction="outbound",
            channel="sms",
            content="Reply YES",
            category=AgencyMessageCategory.ACTION_PROMPT.value,
            prompt_type="start_sequences",
            action_status=AgencyMessageStatus.PENDING.value,
            expires_at=utcnow() - timedelta(hours=1),
        )
    )
    db.commit()

    res = await client.post("/api/cron/expire-prompts", headers=CRON_HEADERS)
    assert res.status_code == 200
    body = res.json()
    assert body["expired"] == 1
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_process_scheduled_job(client, sent_sms):
    res = await client.get("/api/cron/process-scheduled", headers=CRON_HEADERS)
    assert res.status_code == 200
    body = res.json()
    assert body["processed"] == 0
    assert body["sent"] == 0


@pytest.mark.asyncio
async def test_coupon_reconciliation_job(client, db):
    db.add(Coupon(code="DRIFT", discount_type="amount", discount_value=500, times_redeemed=4))
    db.commit()

    res = await client.post("/api/cron/coupon-reconciliation", headers=CRON_HEADERS)
    assert res.status_code == 200
    body = res.json()
    assert body["checked"] == 1
    assert body["fixed"] == 1
    assert body["discrepancies"] == [{"code": "DRIFT", "was": 4, "now": 0}]


# =============================================================================
# Stripe
# =============================================================================

@pytest.mark.asyncio
async def test_stripe_webhook_requires_signature(client):
    res = await client.post("/api/webhooks/stripe", content=b"{}")
    assert res.status_code == 400
    assert res.json() == {"error": "Missing signature"}


@pytest.mark.asyncio
async def test_stripe_webhook_rejects_bad_signature(client, monkeypatch):
    def reject(payload, signature):
        raise stripe.SignatureVerificationError("No signatures found", signature)

    monkeypatch.setattr(stripe_service, "construct_event", reject)
    res = await client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=bad"})
    assert res.status_code == 400
    assert res.json() == {"error": "Invalid signature"}


@pytest.mark.asyncio
async def test_checkout_completed_marks_payment_paid(client, db, make_client, monkeypatch, sent_sms):
    business = make_client(business_name="Prairie Plumbing")
    lead = Lead(client_id=business.id, phone="+14035550501", name="Pat")
    db.add(lead)
    db.flush()
    invoice = Invoice(client_id=business.id, lead_id=lead.id, total_amount=100000, remaining_amount=100000)
    db.add(invoice)
    db.flush()
    payment = Payment(
        client_id=business.id,
        lead_id=lead.id,
        invoice_id=invoice.id,
        type="deposit",
        amount=50000,
        stripe_payment_link_id="plink_123",
    )
    db.add(payment)
    db.commit()

    event = {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "payment_link": "plink_123",
                "payment_intent": "pi_123",
                "amount_total": 50000,
                "metadata": {"leadId": str(lead.id), "clientId": str(business.id)},
            }
        },
    }
    monkeypatch.setattr(stripe_service, "construct_event", lambda payload, signature: event)

    res = await client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=ok"})
    assert res.status_code == 200
    assert res.json() == {"received": True}

    db.refresh(payment)
    db.refresh(invoice)
    assert payment.status == "paid"
    assert payment.stripe_payment_intent_id == "pi_123"
    assert invoice.paid_amount == 50000
    assert invoice.remaining_amount == 50000
    assert invoice.status == "partial"

    assert sent_sms[0].to == "+14035550501"
    assert sent_sms[0].body == "Payment of $500.00 received! Thank you for your business. - Prairie Plumbing"


# =============================================================================
# Twilio
# =============================================================================

@pytest.mark.asyncio
async def test_agency_sms_webhook_returns_twiml(client, db, make_client, sent_sms):
    agency_communication_service.set_agency_number(db, "+15875550000")
    make_client(phone="+14035550600")

    res = await client.post(
        "/api/webhooks/twilio/agency-sms",
        data={"From": "+14035550600", "To": "+15875550000", "Body": "hello", "MessageSid": "SM9"},
    )
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/xml")
    assert "<Response></Response>" in res.text
    # No pending prompt, so the client gets an acknowledgement
    assert [sms.body for sms in sent_sms] == [agency_communication_service.ACK_NO_PROMPT]


@pytest.mark.asyncio
async def test_status_callback(client):
    res = await client.post(
        "/api/webhooks/twilio/status",
        data={"MessageSid": "SM1", "MessageStatus": "delivered"},
    )
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/xml")
