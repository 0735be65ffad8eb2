"""Agency billing: subscription plan catalogue."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_agency_permission
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import plan_service

router = APIRouter()

SLUG_PATTERN = r"^[a-z0-9_]+$"


class CreatePlanRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str | None = Field(None, min_length=1, max_length=50, pattern=SLUG_PATTERN)
    priceMonthly: int = Field(..., ge=0)  # cents
    features: dict[str, Any] | None = None
    trialDays: int = Field(14, ge=0, le=90)
    stripePriceId: str | None = Field(None, max_length=100)


class UpdatePlanRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    slug: str | None = Field(None, min_length=1, max_length=50, pattern=SLUG_PATTERN)
    priceMonthly: int | None = Field(None, ge=0)
    features: dict[str, Any] | None = None
    trialDays: int | None = Field(None, ge=0, le=90)
    stripePriceId: str | None = Field(None, max_length=100)
    isActive: bool | None = None


UPDATE_FIELDS = {
    "name": "name",
    "slug": "slug",
    "priceMonthly": "price_monthly",
    "features": "features",
    "trialDays": "trial_days",
    "stripePriceId": "stripe_price_id",
    "isActive": "is_active",
}


@router.get("")
def list_plans(
    includeInactive: bool = False,
    session: AgencySession = Depends(require_agency_permission("agency.billing.view")),
    db: Session = Depends(get_db),
):
    plans = plan_service.list_plans(db, include_inactive=includeInactive)
    return {"plans": [plan_service.serialize_plan(plan) for plan in plans]}


@router.post("", status_code=201)
def create_plan(
    body: CreatePlanRequest,
    session: AgencySession = Depends(require_agency_permission("agency.billing.manage")),
    db: Session = Depends(get_db),
):
    plan = plan_service.create_plan(
        db,
        name=body.name,
        slug=body.slug,
        price_monthly=body.priceMonthly,
        features=body.features,
        trial_days=body.trialDays,
        stripe_price_id=body.stripePriceId,
    )
    return {"plan": plan_service.serialize_plan(plan)}


@router.get("/{plan_id}")
def get_plan(
    plan_id: UUID,
    session: AgencySession = Depends(require_agency_permission("agency.billing.manage")),
    db: Session = Depends(get_db),
):
    return {"plan": plan_service.serialize_plan(plan_service.get_plan(db, plan_id))}


@router.patch("/{plan_id}")
def update_plan(
    plan_id: UUID,
    body: UpdatePlanRequest,
    session: AgencySession = Depends(require_agency_permission("agency.billing.manage")),
    db: Session = Depends(get_db),
):
    updates = {UPDATE_FIELDS[key]: value for key, value in body.model_dump(exclude_none=True).items()}
    plan = plan_service.update_plan(db, plan_id, updates)
    return {"plan": plan_service.serialize_plan(plan)}


@router.delete("/{plan_id}")
def deactivate_plan(
    plan_id: UUID,
    session: AgencySession = Depends(require_agency_permission("agency.billing.manage")),
    db: Session = Depends(get_db),
):
    plan = plan_service.deactivate_plan(db, plan_id)
    return {"success": True, "plan": plan_service.serialize_plan(plan)}
