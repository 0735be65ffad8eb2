"""
Stripe payment links for lead invoices and the payments webhook.

Amounts are integer cents throughout; Stripe prices are created in CAD.
"""

import json
import logging
from datetime import date, timedelta
from typing import Any
from uuid import UUID

import stripe
from sqlalchemy.orm import Session

from leadrelay.core.config import settings
from leadrelay.core.exceptions import ConfigurationError, NotFoundError, ValidationFailedError
from leadrelay.db.enums import InvoiceStatus, MessageDirection, PaymentStatus
from leadrelay.db.models import Client, Conversation, Invoice, Lead, Payment
from leadrelay.services import sms_service
from leadrelay.utils.dates import utcnow
from leadrelay.utils.normalization import mask_phone
from leadrelay.utils.templates import render_template

logger = logging.getLogger(__name__)

CURRENCY = "cad"
PAYMENT_LINK_DAYS = 30

_configured = False


def get_stripe():
    """Return the stripe module with the API key applied on first use."""
    global _configured
    if not _configured:
        if not settings.STRIPE_SECRET_KEY:
            raise ConfigurationError("Stripe is not configured")
        stripe.api_key = settings.STRIPE_SECRET_KEY
        _configured = True
    return stripe


def reset_stripe() -> None:
    global _configured
    _configured = False


def get_or_create_stripe_customer(
    db: Session, lead_id: UUID, email: str | None = None, phone: str | None = None, name: str | None = None
) -> str:
    lead = db.get(Lead, lead_id)
    if lead and lead.stripe_customer_id:
        return lead.stripe_customer_id

    customer = get_stripe().Customer.create(
        email=email,
        phone=phone,
        name=name or (lead.name if lead else None),
        metadata={"leadId": str(lead_id), "source": "leadrelay"},
    )
    if lead:
        lead.stripe_customer_id = customer.id
        db.commit()
    return customer.id


def create_payment_link(
    db: Session,
    *,
    client_id: UUID,
    lead_id: UUID,
    amount: int,
    description: str,
    invoice_id: UUID | None = None,
    payment_type: str = "full",
    metadata: dict[str, str] | None = None,
) -> Payment:
    """Create a one-time CAD price, a payment link for it, and the pending payment row."""
    if amount <= 0:
        raise ValidationFailedError("Amount must be positive")

    client = get_stripe()
    price = client.Price.create(
        unit_amount=amount,
        currency=CURRENCY,
        product_data={"name": description},
    )
    link = client.PaymentLink.create(
        line_items=[{"price": price.id, "quantity": 1}],
        metadata={
            "clientId": str(client_id),
            "leadId": str(lead_id),
            "invoiceId": str(invoice_id) if invoice_id else "",
            "type": payment_type,
            **(metadata or {}),
        },
        after_completion={
            "type": "redirect",
            "redirect": {"url": f"{settings.app_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}"},
        },
        phone_number_collection={"enabled": True},
        billing_address_collection="auto",
    )

    payment = Payment(
        client_id=client_id,
        lead_id=lead_id,
        invoice_id=invoice_id,
        type=payment_type,
        amount=amount,
        description=description,
        stripe_payment_link_id=link.id,
        stripe_payment_link_url=link.url,
        status=PaymentStatus.PENDING.value,
        link_expires_at=utcnow() + timedelta(days=PAYMENT_LINK_DAYS),
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    logger.info("Payment link %s created for lead %s", link.id, lead_id)
    return payment


def create_invoice_with_link(
    db: Session,
    *,
    client_id: UUID,
    lead_id: UUID,
    total_amount: int,
    description: str,
    due_date: date | None = None,
    invoice_number: str | None = None,
    metadata: dict[str, str] | None = None,
) -> tuple[Invoice, Payment]:
    invoice = Invoice(
        client_id=client_id,
        lead_id=lead_id,
        invoice_number=invoice_number or f"INV-{int(utcnow().timestamp() * 1000)}",
        description=description,
        total_amount=total_amount,
        paid_amount=0,
        remaining_amount=total_amount,
        status=InvoiceStatus.PENDING.value,
        due_date=due_date,
    )
    db.add(invoice)
    db.commit()
    payment = create_payment_link(
        db,
        client_id=client_id,
        lead_id=lead_id,
        invoice_id=invoice.id,
        amount=total_amount,
        description=description,
        metadata=metadata,
    )
    return invoice, payment


def get_invoice(db: Session, client_id: UUID, invoice_id: UUID) -> Invoice:
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id, Invoice.client_id == client_id).first()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def create_deposit_link(db: Session, invoice_id: UUID, deposit_percent: int = 50) -> Payment:
    invoice = db.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    if not invoice.total_amount:
        raise ValidationFailedError("Invoice has no total amount")

    return create_payment_link(
        db,
        client_id=invoice.client_id,
        lead_id=invoice.lead_id,
        invoice_id=invoice.id,
        amount=round(invoice.total_amount * deposit_percent / 100),
        description=f"{deposit_percent}% Deposit - {invoice.description or 'Invoice'}",
        payment_type="deposit",
    )


def handle_payment_success(
    db: Session, payment_link_id: str, payment_intent_id: str, amount_paid: int
) -> Payment | None:
    payment = db.query(Payment).filter(Payment.stripe_payment_link_id == payment_link_id).first()
    if not payment:
        logger.error("No payment found for Stripe link %s", payment_link_id)
        return None

    payment.status = PaymentStatus.PAID.value
    payment.paid_at = utcnow()
    payment.stripe_payment_intent_id = payment_intent_id

    if payment.invoice_id:
        invoice = db.get(Invoice, payment.invoice_id)
        if invoice and invoice.total_amount:
            invoice.paid_amount = (invoice.paid_amount or 0) + amount_paid
            invoice.remaining_amount = invoice.total_amount - invoice.paid_amount
            invoice.status = (
                InvoiceStatus.PAID.value if invoice.remaining_amount <= 0 else InvoiceStatus.PARTIAL.value
            )

    db.commit()
    return payment


def format_amount(cents: int) -> str:
    """Format cents as dollars, e.g. 123456 -> '$1,234.56'."""
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def generate_payment_message(amount: int, payment_url: str, days_overdue: int | None = None) -> str:
    formatted = format_amount(amount)
    if days_overdue and days_overdue > 0:
        return f"Hi! Your balance of {formatted} was due {days_overdue} days ago. Pay securely here: {payment_url}"
    return f"Hi! Your balance of {formatted} is ready. Pay securely here: {payment_url}"


def construct_event(payload: bytes, signature: str) -> dict[str, Any]:
    """
    Verify a webhook signature and return the decoded event.

    Raises:
        stripe.SignatureVerificationError: signature does not match
        ValueError: payload is not valid JSON
    """
    get_stripe().Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    return json.loads(payload)


def _notify_payment(db: Session, session: dict[str, Any]) -> None:
    metadata = session.get("metadata") or {}
    lead_id, client_id = metadata.get("leadId"), metadata.get("clientId")
    if not (lead_id and client_id):
        return

    lead = db.get(Lead, UUID(lead_id))
    client = db.get(Client, UUID(client_id))
    amount = format_amount(session.get("amount_total") or 0)

    if lead and client and client.twilio_number:
        body = render_template("payment_confirmation", {"amount": amount, "businessName": client.business_name})
        try:
            sms_service.send_sms(lead.phone, body, client.twilio_number)
        except Exception:
            logger.exception("Payment confirmation to %s failed", mask_phone(lead.phone))

    if client and client.phone and settings.TWILIO_PHONE_NUMBER:
        customer_name = (session.get("customer_details") or {}).get("name") or "customer"
        body = render_template("payment_owner_notice", {"amount": amount, "customerName": customer_name})
        try:
            sms_service.send_sms(client.phone, body, settings.TWILIO_PHONE_NUMBER)
        except Exception:
            logger.exception("Payment notice to client %s failed", client.id)


def handle_webhook_event(db: Session, event: dict[str, Any]) -> None:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "checkout.session.completed":
        if obj.get("payment_link") and obj.get("payment_intent"):
            handle_payment_success(db, obj["payment_link"], obj["payment_intent"], obj.get("amount_total") or 0)
            _notify_payment(db, obj)

    elif event_type == "checkout.session.expired":
        if obj.get("payment_link"):
            db.query(Payment).filter(Payment.stripe_payment_link_id == obj["payment_link"]).update(
                {Payment.status: PaymentStatus.CANCELLED.value}, synchronize_session=False
            )
            db.commit()

    elif event_type == "charge.refunded":
        if obj.get("payment_intent"):
            db.query(Payment).filter(Payment.stripe_payment_intent_id == obj["payment_intent"]).update(
                {Payment.status: PaymentStatus.REFUNDED.value}, synchronize_session=False
            )
            db.commit()

    else:
        logger.debug("Ignoring Stripe event %s", event_type)


# =============================================================================
# Portal payments
# =============================================================================

def list_payments(db: Session, client_id: UUID, lead_id: UUID | None = None) -> list[Payment]:
    query = db.query(Payment).filter(Payment.client_id == client_id)
    if lead_id:
        query = query.filter(Payment.lead_id == lead_id)
    return query.order_by(Payment.created_at.desc()).all()


def send_payment_link(db: Session, client_id: UUID, payment_id: UUID) -> str:
    """
    Text a payment link to its lead. Returns the Twilio message SID.

    Raises:
        NotFoundError: no such payment, or it has no link
        ValidationFailedError: the client has no Twilio number
    """
    payment = db.query(Payment).filter(Payment.id == payment_id, Payment.client_id == client_id).first()
    if not payment or not payment.stripe_payment_link_url:
        raise NotFoundError("Payment link not found")
    client = db.get(Client, client_id)
    if not client or not client.twilio_number:
        raise ValidationFailedError("No phone number configured")
    lead = db.get(Lead, payment.lead_id)

    days_overdue = None
    if payment.invoice_id:
        invoice = db.get(Invoice, payment.invoice_id)
        if invoice and invoice.due_date:
            days_overdue = (utcnow().date() - invoice.due_date).days

    body = generate_payment_message(payment.amount, payment.stripe_payment_link_url, days_overdue)
    sid = sms_service.send_sms(lead.phone, body, client.twilio_number)
    db.add(
        Conversation(
            lead_id=lead.id,
            client_id=client.id,
            direction=MessageDirection.OUTBOUND.value,
            message_type="payment_link",
            content=body,
            twilio_sid=sid,
        )
    )
    db.commit()
    logger.info("Payment link %s sent to %s", payment.id, mask_phone(lead.phone))
    return sid


def serialize_payment(payment: Payment) -> dict[str, Any]:
    return {
        "id": str(payment.id),
        "leadId": str(payment.lead_id),
        "invoiceId": str(payment.invoice_id) if payment.invoice_id else None,
        "type": payment.type,
        "amount": payment.amount,
        "description": payment.description,
        "status": payment.status,
        "paymentUrl": payment.stripe_payment_link_url,
        "paidAt": payment.paid_at.isoformat() if payment.paid_at else None,
        "createdAt": payment.created_at.isoformat(),
    }


def serialize_invoice(invoice: Invoice) -> dict[str, Any]:
    return {
        "id": str(invoice.id),
        "leadId": str(invoice.lead_id),
        "invoiceNumber": invoice.invoice_number,
        "description": invoice.description,
        "totalAmount": invoice.total_amount,
        "paidAmount": invoice.paid_amount,
        "remainingAmount": invoice.remaining_amount,
        "status": invoice.status,
        "dueDate": invoice.due_date.isoformat() if invoice.due_date else None,
    }
