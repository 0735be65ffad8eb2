"""Payment reminder sequences, manual cancellation and portal payment links."""
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from leadrelay.core.exceptions import ValidationFailedError
from leadrelay.db.models import Conversation, Invoice, Lead, Payment, ScheduledMessage
from leadrelay.services import sequence_service, stripe_service
from leadrelay.utils.dates import utcnow


class FakeStripe:
    """Records Customer and PaymentLink creation."""

    def __init__(self):
        self.customers = []
        self.links = []
        self.Customer = SimpleNamespace(create=self._create_customer)
        self.Price = SimpleNamespace(create=lambda **kwargs: SimpleNamespace(id="price_1"))
        self.PaymentLink = SimpleNamespace(create=self._create_link)

    def _create_customer(self, **kwargs):
        self.customers.append(kwargs)
        return SimpleNamespace(id=f"cus_{len(self.customers)}")

    def _create_link(self, **kwargs):
        self.links.append(kwargs)
        n = len(self.links)
        return SimpleNamespace(id=f"plink_{n}", url=f"https://buy.stripe.test/{n}")


@pytest.fixture
def fake_stripe(monkeypatch) -> FakeStripe:
    fake = FakeStripe()
    monkeypatch.setattr(stripe_service, "get_stripe", lambda: fake)
    return fake


@pytest.fixture
def lead(db, portal_auth) -> Lead:
    lead = Lead(client_id=portal_auth.client.id, phone="+14035550950", name="Jordan", email="jordan@example.com")
    db.add(lead)
    db.commit()
    db.refresh(lead)
    return lead


def _enable_payments(db, client):
    client.payment_links_enabled = True
    db.commit()


# =============================================================================
# Payment reminder sequence
# =============================================================================

def test_payment_send_times_drop_past_steps(make_client):
    client = make_client(timezone="America/Edmonton")

    schedule = sequence_service.payment_send_times(client, date(2026, 3, 10), today=date(2026, 3, 14))

    assert schedule == [
        (datetime(2026, 3, 17, 16, 0, tzinfo=timezone.utc), "payment_day_7"),
        (datetime(2026, 3, 24, 16, 0, tzinfo=timezone.utc), "payment_day_14"),
    ]


def test_invoice_due_today_keeps_due_date_step(make_client):
    client = make_client(timezone="UTC")
    today = date(2026, 3, 14)
    templates = [t for _, t in sequence_service.payment_send_times(client, today, today=today)]
    assert templates == ["payment_due", "payment_day_3", "payment_day_7", "payment_day_14"]


@pytest.mark.asyncio
async def test_start_payment_sequence_with_own_link(portal_client, db, lead):
    due = (utcnow() + timedelta(days=3)).date()

    res = await portal_client.post(
        "/api/client/sequences/payment",
        json={
            "leadId": str(lead.id),
            "invoiceNumber": "1042",
            "amount": 250,
            "dueDate": due.isoformat(),
            "paymentLink": "https://pay.example/1042",
        },
    )

    assert res.status_code == 201
    data = res.json()
    assert data["scheduledCount"] == 4
    assert data["invoice"]["totalAmount"] == 25000
    messages = db.query(ScheduledMessage).order_by(ScheduledMessage.send_at).all()
    assert {m.sequence_type for m in messages} == {"payment_reminder"}
    assert messages[0].content == (
        "Hi Jordan, friendly reminder that invoice #1042 for $250.00 is due today. "
        "Here's a quick link to pay: https://pay.example/1042. Thanks!"
    )


def test_stripe_unavailable_still_schedules_reminders(db, portal_auth, lead):
    result = sequence_service.start_payment_reminder(
        db, portal_auth.client.id, lead.id, amount=9900, due_date=(utcnow() + timedelta(days=2)).date()
    )
    assert result.payment_link is None
    assert result.scheduled == 4
    assert db.query(Payment).count() == 0


def test_stripe_link_is_created_for_amount(db, portal_auth, lead, fake_stripe):
    result = sequence_service.start_payment_reminder(
        db, portal_auth.client.id, lead.id, amount=9900, due_date=(utcnow() + timedelta(days=2)).date()
    )
    assert result.payment_link == "https://buy.stripe.test/1"
    assert fake_stripe.links[0]["metadata"]["invoiceId"] == str(result.invoice.id)


def test_restarting_sequence_cancels_previous_reminders(db, portal_auth, lead):
    due = (utcnow() + timedelta(days=2)).date()
    sequence_service.start_payment_reminder(db, portal_auth.client.id, lead.id, due_date=due, payment_link="https://a")
    sequence_service.start_payment_reminder(db, portal_auth.client.id, lead.id, due_date=due, payment_link="https://b")

    cancelled = db.query(ScheduledMessage).filter(ScheduledMessage.cancelled.is_(True)).all()
    assert len(cancelled) == 4
    assert {m.cancelled_reason for m in cancelled} == {"New payment sequence started"}
    assert db.query(ScheduledMessage).filter(ScheduledMessage.cancelled.is_(False)).count() == 4


@pytest.mark.asyncio
async def test_marking_invoice_paid_stops_reminders(portal_client, db, portal_auth, lead):
    result = sequence_service.start_payment_reminder(
        db, portal_auth.client.id, lead.id, due_date=(utcnow() + timedelta(days=2)).date(), payment_link="https://a"
    )
    db.add(Payment(client_id=lead.client_id, lead_id=lead.id, invoice_id=result.invoice.id, amount=5000))
    db.commit()

    res = await portal_client.patch("/api/client/sequences/payment", json={"invoiceId": str(result.invoice.id)})

    assert res.status_code == 200
    assert res.json()["invoice"]["status"] == "paid"
    assert {m.cancelled_reason for m in db.query(ScheduledMessage).all()} == {"Invoice paid"}
    assert db.query(Payment).one().status == "paid"


@pytest.mark.asyncio
async def test_cancel_sequence_by_type(portal_client, db, lead):
    for sequence_type in ("estimate_followup", "payment_reminder"):
        db.add(
            ScheduledMessage(
                lead_id=lead.id,
                client_id=lead.client_id,
                sequence_type=sequence_type,
                content="...",
                send_at=utcnow() + timedelta(days=1),
            )
        )
    db.commit()

    res = await portal_client.post("/api/client/sequences/cancel", json={"leadId": str(lead.id), "sequenceType": "estimate"})

    assert res.json() == {"success": True, "cancelled": 1}
    estimate = db.query(ScheduledMessage).filter(ScheduledMessage.sequence_type == "estimate_followup").one()
    assert estimate.cancelled_reason == "Manually cancelled"

    res = await portal_client.post("/api/client/sequences/cancel", json={"leadId": str(lead.id), "sequenceType": "birthday"})
    assert res.status_code == 400


# =============================================================================
# Payment links
# =============================================================================

@pytest.mark.asyncio
async def test_payments_require_feature(portal_client, lead):
    res = await portal_client.get("/api/client/payments")
    assert res.status_code == 403
    assert res.json() == {"error": "Feature 'paymentLinks' is not enabled for this client"}


def test_stripe_customer_is_reused(db, lead, fake_stripe):
    first = stripe_service.get_or_create_stripe_customer(db, lead.id, email=lead.email, phone=lead.phone)
    second = stripe_service.get_or_create_stripe_customer(db, lead.id, email=lead.email, phone=lead.phone)

    assert first == second == "cus_1"
    assert len(fake_stripe.customers) == 1
    assert fake_stripe.customers[0]["metadata"] == {"leadId": str(lead.id), "source": "leadrelay"}
    db.refresh(lead)
    assert lead.stripe_customer_id == "cus_1"


def test_payment_link_rejects_non_positive_amount(db, lead, fake_stripe):
    with pytest.raises(ValidationFailedError, match="Amount must be positive"):
        stripe_service.create_payment_link(
            db, client_id=lead.client_id, lead_id=lead.id, amount=0, description="Nothing"
        )
    assert fake_stripe.links == []


@pytest.mark.asyncio
async def test_create_payment_link_for_lead(portal_client, db, portal_auth, lead, fake_stripe):
    _enable_payments(db, portal_auth.client)
    lead.stripe_customer_id = "cus_existing"
    db.commit()

    res = await portal_client.post(
        "/api/client/payments",
        json={"leadId": str(lead.id), "amount": 125.5, "description": "Drain repair", "type": "deposit"},
    )

    assert res.status_code == 201
    payment = res.json()["payment"]
    assert (payment["amount"], payment["type"], payment["paymentUrl"]) == (12550, "deposit", "https://buy.stripe.test/1")
    assert fake_stripe.customers == []
    assert fake_stripe.links[0]["metadata"]["customerId"] == "cus_existing"


@pytest.mark.asyncio
async def test_invoice_then_deposit(portal_client, db, portal_auth, lead, fake_stripe):
    _enable_payments(db, portal_auth.client)

    res = await portal_client.post(
        "/api/client/payments",
        json={"leadId": str(lead.id), "amount": 1000, "description": "Water heater", "createInvoice": True},
    )
    assert res.status_code == 201
    invoice_id = res.json()["invoice"]["id"]
    assert res.json()["invoice"]["remainingAmount"] == 100000

    res = await portal_client.post(f"/api/client/payments/invoices/{invoice_id}/deposit", json={"depositPercent": 25})
    assert res.status_code == 201
    deposit = res.json()["payment"]
    assert (deposit["amount"], deposit["type"]) == (25000, "deposit")
    assert deposit["description"] == "25% Deposit - Water heater"

    res = await portal_client.get("/api/client/payments", params={"leadId": str(lead.id)})
    assert len(res.json()["payments"]) == 2
    assert db.query(Invoice).count() == 1


@pytest.mark.asyncio
async def test_send_payment_link(portal_client, db, portal_auth, lead, sent_sms):
    _enable_payments(db, portal_auth.client)
    payment = Payment(
        client_id=lead.client_id,
        lead_id=lead.id,
        amount=48000,
        stripe_payment_link_url="https://buy.stripe.test/9",
    )
    unlinked = Payment(client_id=lead.client_id, lead_id=lead.id, amount=100)
    db.add_all([payment, unlinked])
    db.commit()

    res = await portal_client.post(f"/api/client/payments/{payment.id}/send")

    assert res.status_code == 200
    assert sent_sms[0].body == "Hi! Your balance of $480.00 is ready. Pay securely here: https://buy.stripe.test/9"
    assert db.query(Conversation).one().message_type == "payment_link"

    res = await portal_client.post(f"/api/client/payments/{unlinked.id}/send")
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_send_payment_link_needs_business_number(portal_client, db, portal_auth, lead, sent_sms):
    _enable_payments(db, portal_auth.client)
    portal_auth.client.twilio_number = None
    payment = Payment(client_id=lead.client_id, lead_id=lead.id, amount=100, stripe_payment_link_url="https://x")
    db.add(payment)
    db.commit()

    res = await portal_client.post(f"/api/client/payments/{payment.id}/send")

    assert res.status_code == 400
    assert res.json() == {"error": "No phone number configured"}
