"""Client portal: follow-up sequences."""

from datetime import date
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_portal_permission
from leadrelay.schemas.auth import PortalSession
from leadrelay.services import sequence_service, stripe_service

router = APIRouter()


class CancelSequenceRequest(BaseModel):
    leadId: UUID
    sequenceType: str | None = None


class StartPaymentRequest(BaseModel):
    leadId: UUID
    invoiceNumber: str | None = Field(None, max_length=50)
    amount: Decimal | None = Field(None, ge=0, decimal_places=2)  # dollars
    dueDate: date | None = None
    paymentLink: str | None = Field(None, max_length=500)


class InvoicePaidRequest(BaseModel):
    invoiceId: UUID


@router.post("/cancel")
def cancel_sequence(
    body: CancelSequenceRequest,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    cancelled = sequence_service.cancel_sequences(db, session.client_id, body.leadId, body.sequenceType)
    return {"success": True, "cancelled": cancelled}


@router.post("/payment", status_code=201)
def start_payment_sequence(
    body: StartPaymentRequest,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    result = sequence_service.start_payment_reminder(
        db,
        session.client_id,
        body.leadId,
        amount=int(body.amount * 100) if body.amount is not None else None,
        invoice_number=body.invoiceNumber,
        due_date=body.dueDate,
        payment_link=body.paymentLink,
    )
    return {
        "success": True,
        "invoice": stripe_service.serialize_invoice(result.invoice),
        "paymentLink": result.payment_link,
        "scheduledCount": result.scheduled,
    }


@router.patch("/payment")
def mark_invoice_paid(
    body: InvoicePaidRequest,
    session: PortalSession = Depends(require_portal_permission("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    invoice = sequence_service.mark_invoice_paid(db, session.client_id, body.invoiceId)
    return {"success": True, "invoice": stripe_service.serialize_invoice(invoice)}
