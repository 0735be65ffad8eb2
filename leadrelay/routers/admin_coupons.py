"""Coupon administration and checkout-time validation."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, require_agency_permission
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import coupon_service

router = APIRouter()

_require_billing_view = require_agency_permission("agency.billing.view")
_require_billing_manage = require_agency_permission("agency.billing.manage")


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str | None = Field(default=None, max_length=100)
    discountType: Literal["percent", "amount"]
    discountValue: int = Field(..., gt=0)
    duration: Literal["once", "repeating", "forever"] = "once"
    durationMonths: int | None = Field(default=None, ge=1)
    maxRedemptions: int | None = Field(default=None, ge=1)
    validFrom: datetime | None = None
    validUntil: datetime | None = None
    applicablePlans: list[str] | None = None
    firstTimeOnly: bool = False


class CouponUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=100)
    isActive: bool | None = None
    maxRedemptions: int | None = Field(default=None, ge=1)
    validUntil: datetime | None = None


class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    planId: str | None = None
    clientId: UUID | None = None


@router.get("")
def list_coupons(
    session: AgencySession = Depends(_require_billing_view),
    db: Session = Depends(get_db),
):
    return {"coupons": [coupon_service.serialize_coupon(c) for c in coupon_service.list_coupons(db)]}


@router.post("", status_code=201)
def create_coupon(
    body: CouponCreate,
    session: AgencySession = Depends(_require_billing_manage),
    db: Session = Depends(get_db),
):
    coupon = coupon_service.create_coupon(
        db,
        code=body.code,
        name=body.name,
        discount_type=body.discountType,
        discount_value=body.discountValue,
        duration=body.duration,
        duration_months=body.durationMonths,
        max_redemptions=body.maxRedemptions,
        valid_from=body.validFrom,
        valid_until=body.validUntil,
        applicable_plans=body.applicablePlans,
        first_time_only=body.firstTimeOnly,
    )
    return {"coupon": coupon_service.serialize_coupon(coupon)}


@router.patch("/{coupon_id}")
def update_coupon(
    coupon_id: UUID,
    body: CouponUpdate,
    session: AgencySession = Depends(_require_billing_manage),
    db: Session = Depends(get_db),
):
    provided = body.model_dump(exclude_unset=True)
    updates = {
        column: provided[key]
        for key, column in (
            ("name", "name"),
            ("isActive", "is_active"),
            ("maxRedemptions", "max_redemptions"),
            ("validUntil", "valid_until"),
        )
        if key in provided
    }
    coupon = coupon_service.update_coupon(db, coupon_id, updates)
    return {"coupon": coupon_service.serialize_coupon(coupon)}


@router.delete("/{coupon_id}")
def delete_coupon(
    coupon_id: UUID,
    session: AgencySession = Depends(_require_billing_manage),
    db: Session = Depends(get_db),
):
    coupon_service.delete_coupon(db, coupon_id)
    return {"success": True}


@router.post("/validate")
def validate_coupon(
    body: CouponValidateRequest,
    session: AgencySession = Depends(_require_billing_view),
    db: Session = Depends(get_db),
):
    result = coupon_service.validate_coupon(db, body.code, body.planId, body.clientId)
    return result.to_dict()
