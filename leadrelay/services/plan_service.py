"""Subscription plan catalogue managed by the agency."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from leadrelay.core.exceptions import NotFoundError, ValidationFailedError
from leadrelay.db.models import Plan
from leadrelay.utils.normalization import slugify

logger = logging.getLogger(__name__)


def list_plans(db: Session, include_inactive: bool = False) -> list[Plan]:
    query = db.query(Plan)
    if not include_inactive:
        query = query.filter(Plan.is_active.is_(True))
    return query.order_by(Plan.price_monthly).all()


def get_plan(db: Session, plan_id: UUID) -> Plan:
    plan = db.get(Plan, plan_id)
    if not plan:
        raise NotFoundError("Plan not found")
    return plan


def create_plan(
    db: Session,
    *,
    name: str,
    price_monthly: int,
    slug: str | None = None,
    features: dict[str, Any] | None = None,
    trial_days: int = 14,
    stripe_price_id: str | None = None,
) -> Plan:
    slug = slug or slugify(name)
    if db.query(Plan.id).filter(Plan.slug == slug).first():
        raise ValidationFailedError(f"A plan with slug '{slug}' already exists")
    plan = Plan(
        name=name,
        slug=slug,
        price_monthly=price_monthly,
        features=features,
        trial_days=trial_days,
        stripe_price_id=stripe_price_id,
        is_active=True,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    logger.info("Created plan %s (%s)", plan.slug, plan.id)
    return plan


def update_plan(db: Session, plan_id: UUID, updates: dict[str, Any]) -> Plan:
    plan = get_plan(db, plan_id)
    if "slug" in updates and updates["slug"] != plan.slug:
        if db.query(Plan.id).filter(Plan.slug == updates["slug"]).first():
            raise ValidationFailedError(f"A plan with slug '{updates['slug']}' already exists")
    for field, value in updates.items():
        setattr(plan, field, value)
    db.commit()
    db.refresh(plan)
    return plan


def deactivate_plan(db: Session, plan_id: UUID) -> Plan:
    """Plans are never deleted; subscriptions keep pointing at them."""
    return update_plan(db, plan_id, {"is_active": False})


def serialize_plan(plan: Plan) -> dict[str, Any]:
    return {
        "id": str(plan.id),
        "name": plan.name,
        "slug": plan.slug,
        "priceMonthly": plan.price_monthly,
        "features": plan.features or {},
        "trialDays": plan.trial_days,
        "stripePriceId": plan.stripe_price_id,
        "isActive": plan.is_active,
        "createdAt": plan.created_at.isoformat(),
    }
