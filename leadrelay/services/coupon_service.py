"""Coupon validation, redemption counting and admin CRUD."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from leadrelay.core.exceptions import NotFoundError, ValidationFailedError
from leadrelay.db.models import Coupon, Subscription
from leadrelay.utils.dates import utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "is_active", "max_redemptions", "valid_until"})


@dataclass
class CouponValidation:
    valid: bool
    error: str | None = None
    discountType: str | None = None
    discountValue: int | None = None
    duration: str | None = None
    durationMonths: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None or k == "valid"}


@dataclass
class ReconciliationResult:
    checked: int = 0
    fixed: int = 0
    discrepancies: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _invalid(error: str) -> CouponValidation:
    return CouponValidation(valid=False, error=error)


def validate_coupon(
    db: Session, code: str, plan_id: str | UUID | None, client_id: UUID | None, now: datetime | None = None
) -> CouponValidation:
    code = code.strip().upper()
    coupon = db.query(Coupon).filter(Coupon.code == code).first()
    if not coupon:
        return _invalid("Invalid coupon code")
    if not coupon.is_active:
        return _invalid("This coupon is no longer active")

    now = now or utcnow()
    if coupon.valid_from and now < coupon.valid_from:
        return _invalid("This coupon is not yet active")
    if coupon.valid_until and now > coupon.valid_until:
        return _invalid("This coupon has expired")

    if coupon.max_redemptions and (coupon.times_redeemed or 0) >= coupon.max_redemptions:
        return _invalid("This coupon has reached its maximum number of uses")

    if coupon.applicable_plans and str(plan_id) not in coupon.applicable_plans:
        return _invalid("This coupon is not valid for the selected plan")

    if coupon.first_time_only and client_id:
        used = (
            db.query(Subscription.id)
            .filter(Subscription.client_id == client_id, Subscription.coupon_code == code)
            .first()
        )
        if used:
            return _invalid("This coupon can only be used once per client")

    return CouponValidation(
        valid=True,
        discountType=coupon.discount_type,
        discountValue=coupon.discount_value,
        duration=coupon.duration or "once",
        durationMonths=coupon.duration_months,
    )


def redeem_coupon(db: Session, code: str) -> None:
    db.execute(
        update(Coupon)
        .where(Coupon.code == code.strip().upper())
        .values(times_redeemed=func.coalesce(Coupon.times_redeemed, 0) + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def reconcile_coupon_redemptions(db: Session) -> ReconciliationResult:
    """Reset each coupon's times_redeemed to the number of subscriptions using it."""
    actual = dict(
        db.query(Subscription.coupon_code, func.count(Subscription.id))
        .filter(Subscription.coupon_code.isnot(None))
        .group_by(Subscription.coupon_code)
        .all()
    )

    result = ReconciliationResult()
    for coupon in db.query(Coupon).all():
        result.checked += 1
        count = int(actual.get(coupon.code, 0))
        current = coupon.times_redeemed or 0
        if count != current:
            coupon.times_redeemed = count
            result.discrepancies.append({"code": coupon.code, "was": current, "now": count})
            result.fixed += 1
    db.commit()

    if result.discrepancies:
        logger.warning("Coupon redemption counts corrected: %s", result.discrepancies)
    return result


def list_coupons(db: Session) -> list[Coupon]:
    return db.query(Coupon).order_by(Coupon.created_at.desc()).all()


def serialize_coupon(coupon: Coupon) -> dict[str, Any]:
    return {
        "id": str(coupon.id),
        "code": coupon.code,
        "name": coupon.name,
        "discountType": coupon.discount_type,
        "discountValue": coupon.discount_value,
        "duration": coupon.duration,
        "durationMonths": coupon.duration_months,
        "maxRedemptions": coupon.max_redemptions,
        "timesRedeemed": coupon.times_redeemed,
        "validFrom": coupon.valid_from.isoformat() if coupon.valid_from else None,
        "validUntil": coupon.valid_until.isoformat() if coupon.valid_until else None,
        "applicablePlans": coupon.applicable_plans,
        "firstTimeOnly": coupon.first_time_only,
        "isActive": coupon.is_active,
        "createdAt": coupon.created_at.isoformat() if coupon.created_at else None,
    }


def create_coupon(db: Session, **values: Any) -> Coupon:
    code = values.pop("code").strip().upper()
    if db.query(Coupon.id).filter(Coupon.code == code).first():
        raise ValidationFailedError("A coupon with this code already exists")
    plans = values.pop("applicable_plans", None)
    coupon = Coupon(
        code=code,
        applicable_plans=[str(p) for p in plans] if plans else None,
        **values,
    )
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    logger.info("Coupon %s created", code)
    return coupon


def update_coupon(db: Session, coupon_id: UUID, updates: dict[str, Any]) -> Coupon:
    coupon = db.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError("Coupon not found")
    for key, value in updates.items():
        if key in UPDATABLE_FIELDS:
            setattr(coupon, key, value)
    db.commit()
    db.refresh(coupon)
    return coupon


def delete_coupon(db: Session, coupon_id: UUID) -> None:
    coupon = db.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError("Coupon not found")
    db.delete(coupon)
    db.commit()
