"""Client portal: Stripe payment links for leads (the paymentLinks feature)."""

from datetime import date
from decimal import Decimal
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_portal_permission
from leadrelay.schemas.auth import PortalSession
from leadrelay.services import feature_service, lead_service, stripe_service

router = APIRouter()


def require_payments(*permissions: str):
    """Portal permission check plus the paymentLinks feature gate."""
    permission_dep = require_portal_permission(*permissions)

    def dependency(
        session: PortalSession = Depends(permission_dep),
        db: Session = Depends(get_db),
    ) -> PortalSession:
        feature_service.require_feature(db, session.client_id, "paymentLinks")
        return session
    return dependency


class CreatePaymentRequest(BaseModel):
    leadId: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)  # dollars
    description: str | None = Field(None, max_length=500)
    type: Literal["full", "deposit"] = "full"
    createInvoice: bool = False
    dueDate: date | None = None


class DepositRequest(BaseModel):
    depositPercent: int = Field(50, ge=1, le=100)


@router.get("")
def list_payments(
    leadId: UUID | None = None,
    session: PortalSession = Depends(require_payments("portal.revenue.view")),
    db: Session = Depends(get_db),
):
    payments = stripe_service.list_payments(db, session.client_id, leadId)
    return {"payments": [stripe_service.serialize_payment(p) for p in payments]}


@router.post("", status_code=201)
def create_payment(
    body: CreatePaymentRequest,
    session: PortalSession = Depends(require_payments("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    lead = lead_service.get_lead(db, session.client_id, body.leadId)
    customer_id = stripe_service.get_or_create_stripe_customer(
        db, lead.id, email=lead.email, phone=lead.phone, name=lead.name
    )
    amount = int(body.amount * 100)
    description = body.description or "Payment"
    metadata = {"customerId": customer_id}

    if body.createInvoice:
        invoice, payment = stripe_service.create_invoice_with_link(
            db,
            client_id=session.client_id,
            lead_id=lead.id,
            total_amount=amount,
            description=description,
            due_date=body.dueDate,
            metadata=metadata,
        )
        return {
            "invoice": stripe_service.serialize_invoice(invoice),
            "payment": stripe_service.serialize_payment(payment),
        }

    payment = stripe_service.create_payment_link(
        db,
        client_id=session.client_id,
        lead_id=lead.id,
        amount=amount,
        description=description,
        payment_type=body.type,
        metadata=metadata,
    )
    return {"payment": stripe_service.serialize_payment(payment)}


@router.post("/invoices/{invoice_id}/deposit", status_code=201)
def create_deposit(
    invoice_id: UUID,
    body: DepositRequest,
    session: PortalSession = Depends(require_payments("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    stripe_service.get_invoice(db, session.client_id, invoice_id)
    payment = stripe_service.create_deposit_link(db, invoice_id, body.depositPercent)
    return {"payment": stripe_service.serialize_payment(payment)}


@router.post("/{payment_id}/send")
def send_payment(
    payment_id: UUID,
    session: PortalSession = Depends(require_payments("portal.leads.edit")),
    db: Session = Depends(get_db),
):
    sid = stripe_service.send_payment_link(db, session.client_id, payment_id)
    return {"success": True, "messageSid": sid}
