"""
Follow-up sequences: queued ScheduledMessage rows for a lead.

The scheduled-message job delivers them; replies, opt-outs and paid
invoices cancel whatever is still pending.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import stripe
from sqlalchemy import update
from sqlalchemy.orm import Session

from leadrelay.core.exceptions import ConfigurationError, NotFoundError, ValidationFailedError
from leadrelay.db.enums import InvoiceStatus, PaymentStatus
from leadrelay.db.models import Client, Invoice, Lead, Payment, ScheduledMessage
from leadrelay.services import stripe_service
from leadrelay.utils.dates import utcnow
from leadrelay.utils.templates import render_template

logger = logging.getLogger(__name__)

PAYMENT_SEQUENCE = "payment_reminder"
PAYMENT_SEND_HOUR = 10
# (days after due date, template)
PAYMENT_STEPS = (
    (0, "payment_due"),
    (3, "payment_day_3"),
    (7, "payment_day_7"),
    (14, "payment_day_14"),
)

SEQUENCE_TYPES: dict[str, tuple[str, ...]] = {
    "appointment": ("appointment_reminder",),
    "estimate": ("estimate_followup",),
    "review": ("review_request", "referral_request"),
    "payment": (PAYMENT_SEQUENCE,),
}


@dataclass
class PaymentSequence:
    invoice: Invoice
    payment_link: str | None
    scheduled: int


def _client_zone(client: Client) -> ZoneInfo:
    try:
        return ZoneInfo(client.timezone or "UTC")
    except ZoneInfoNotFoundError:
        logger.warning("Unknown timezone %r for client %s", client.timezone, client.id)
        return ZoneInfo("UTC")


def cancel_pending(db: Session, lead_id: UUID, reason: str, sequence_types: tuple[str, ...] | None = None) -> int:
    """Cancel unsent messages for a lead, optionally only some sequence types."""
    statement = update(ScheduledMessage).where(
        ScheduledMessage.lead_id == lead_id,
        ScheduledMessage.sent.is_(False),
        ScheduledMessage.cancelled.is_(False),
    )
    if sequence_types:
        statement = statement.where(ScheduledMessage.sequence_type.in_(sequence_types))
    result = db.execute(
        statement.values(cancelled=True, cancelled_at=utcnow(), cancelled_reason=reason)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def cancel_sequences(db: Session, client_id: UUID, lead_id: UUID, sequence_type: str | None = None) -> int:
    lead = db.query(Lead.id).filter(Lead.id == lead_id, Lead.client_id == client_id).first()
    if not lead:
        raise NotFoundError("Lead not found")
    if sequence_type is not None and sequence_type not in SEQUENCE_TYPES:
        raise ValidationFailedError(f"Unknown sequence type '{sequence_type}'")

    types = SEQUENCE_TYPES[sequence_type] if sequence_type else None
    cancelled = cancel_pending(db, lead_id, "Manually cancelled", types)
    logger.info("Cancelled %s messages for lead %s", cancelled, lead_id)
    return cancelled


def payment_send_times(client: Client, due: date, today: date | None = None) -> list[tuple[datetime, str]]:
    """
    Send times for each reminder step at 10:00 client time.

    Steps whose day has already passed are dropped. The due-date step still
    goes out when the invoice is due today.
    """
    zone = _client_zone(client)
    today = today or utcnow().astimezone(zone).date()
    schedule = []
    for offset, template in PAYMENT_STEPS:
        day = due + timedelta(days=offset)
        if day < today or (day == today and offset != 0):
            continue
        local = datetime.combine(day, time(PAYMENT_SEND_HOUR), tzinfo=zone)
        schedule.append((local.astimezone(timezone.utc), template))
    return schedule


def start_payment_reminder(
    db: Session,
    client_id: UUID,
    lead_id: UUID,
    *,
    amount: int | None = None,
    invoice_number: str | None = None,
    due_date: date | None = None,
    payment_link: str | None = None,
) -> PaymentSequence:
    """
    Create an invoice and queue the 0/3/7/14-day reminder sequence.

    `amount` is in cents. A Stripe link is created when there is an amount and
    no link was supplied; a Stripe failure leaves the reminders without a link.
    """
    lead = db.query(Lead).filter(Lead.id == lead_id, Lead.client_id == client_id).first()
    if not lead:
        raise NotFoundError("Lead not found")
    client = db.get(Client, client_id)

    due = due_date or utcnow().astimezone(_client_zone(client)).date()
    invoice = Invoice(
        client_id=client_id,
        lead_id=lead_id,
        invoice_number=invoice_number or f"INV-{int(utcnow().timestamp() * 1000)}",
        total_amount=amount or 0,
        paid_amount=0,
        remaining_amount=amount or 0,
        status=InvoiceStatus.PENDING.value,
        due_date=due,
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)

    if amount and amount > 0 and not payment_link:
        try:
            payment = stripe_service.create_payment_link(
                db,
                client_id=client_id,
                lead_id=lead_id,
                invoice_id=invoice.id,
                amount=amount,
                description=f"Invoice {invoice.invoice_number}",
            )
            payment_link = payment.stripe_payment_link_url
        except (ConfigurationError, stripe.StripeError) as exc:
            logger.warning("No payment link for invoice %s: %s", invoice.id, exc)

    cancel_pending(db, lead_id, "New payment sequence started", (PAYMENT_SEQUENCE,))

    variables = {
        "name": lead.name or "there",
        "invoiceNumber": invoice.invoice_number,
        "amount": stripe_service.format_amount(amount or 0),
        "paymentLink": payment_link or "",
    }
    schedule = payment_send_times(client, due)
    for send_at, template in schedule:
        db.add(
            ScheduledMessage(
                lead_id=lead_id,
                client_id=client_id,
                sequence_type=PAYMENT_SEQUENCE,
                content=render_template(template, variables),
                send_at=send_at,
            )
        )
    db.commit()
    logger.info("Payment sequence for invoice %s: %s reminders", invoice.id, len(schedule))
    return PaymentSequence(invoice=invoice, payment_link=payment_link, scheduled=len(schedule))


def mark_invoice_paid(db: Session, client_id: UUID, invoice_id: UUID) -> Invoice:
    """Close an invoice by hand, stop its reminders and settle open payment links."""
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id, Invoice.client_id == client_id).first()
    if not invoice:
        raise NotFoundError("Invoice not found")

    invoice.status = InvoiceStatus.PAID.value
    invoice.paid_amount = invoice.total_amount
    invoice.remaining_amount = 0
    db.query(Payment).filter(
        Payment.invoice_id == invoice.id,
        Payment.status == PaymentStatus.PENDING.value,
    ).update({"status": PaymentStatus.PAID.value, "paid_at": utcnow()}, synchronize_session=False)
    db.commit()

    cancel_pending(db, invoice.lead_id, "Invoice paid", (PAYMENT_SEQUENCE,))
    db.refresh(invoice)
    return invoice
