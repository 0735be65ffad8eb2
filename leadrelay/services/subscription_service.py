"""Keep local subscription state in line with Stripe, which is authoritative."""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

import stripe
from sqlalchemy import update
from sqlalchemy.orm import Session

from leadrelay.db.enums import ClientStatus, SubscriptionStatus
from leadrelay.db.models import BillingEvent, Client, Subscription
from leadrelay.utils.dates import utcnow

logger = logging.getLogger(__name__)

RECONCILE_STATUSES = (
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.TRIALING.value,
    SubscriptionStatus.PAST_DUE.value,
    SubscriptionStatus.PAUSED.value,
)
BATCH_SIZE = 10
BATCH_PAUSE_SECONDS = 0.5


@dataclass
class SubscriptionReconciliation:
    checked: int = 0
    mismatches: int = 0
    fixed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def map_stripe_status(stripe_status: str | None) -> str:
    """incomplete, incomplete_expired and anything unrecognised count as canceled."""
    if stripe_status and SubscriptionStatus.has_value(stripe_status):
        return stripe_status
    return SubscriptionStatus.CANCELED.value


def _cancel_client(db: Session, client_id) -> None:
    db.execute(
        update(Client)
        .where(Client.id == client_id, Client.status == ClientStatus.ACTIVE.value)
        .values(status=ClientStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )


def _event_id(kind: str, sub: Subscription) -> str:
    return f"{kind}_{sub.id}_{int(time.time() * 1000)}"


def _reconcile_one(db: Session, sub: Subscription, stripe_client, result: SubscriptionReconciliation) -> None:
    if not sub.stripe_subscription_id:
        result.errors.append(f"Sub {sub.id}: no stripeSubscriptionId - cannot reconcile")
        return

    try:
        remote = stripe_client.Subscription.retrieve(sub.stripe_subscription_id)
    except stripe.StripeError as exc:
        if getattr(exc, "http_status", None) != 404:
            logger.error("Stripe retrieval for subscription %s failed: %s", sub.id, exc)
            result.errors.append(f"Sub {sub.id}: retrieval failed")
            return
        result.mismatches += 1
        sub.status = SubscriptionStatus.CANCELED.value
        sub.canceled_at = utcnow()
        db.add(
            BillingEvent(
                client_id=sub.client_id,
                event_type="reconciliation_fix",
                description="Subscription not found in Stripe - marked as canceled",
                stripe_event_id=_event_id("reconciliation_orphan", sub),
            )
        )
        _cancel_client(db, sub.client_id)
        db.commit()
        result.fixed += 1
        logger.info("Orphaned subscription %s marked canceled", sub.id)
        return

    remote_status = remote.status
    if remote_status == sub.status:
        return

    result.mismatches += 1
    previous = sub.status
    mapped = map_stripe_status(remote_status)
    sub.status = mapped
    sub.canceled_at = (
        datetime.fromtimestamp(remote.canceled_at, tz=timezone.utc) if remote.canceled_at else None
    )
    sub.cancel_at_period_end = bool(remote.cancel_at_period_end)
    db.add(
        BillingEvent(
            client_id=sub.client_id,
            event_type="reconciliation_fix",
            description=f"Status corrected: {previous} -> {mapped} (Stripe: {remote_status})",
            stripe_event_id=_event_id("reconciliation", sub),
        )
    )
    if mapped == SubscriptionStatus.CANCELED.value:
        _cancel_client(db, sub.client_id)
    db.commit()
    result.fixed += 1
    logger.info("Subscription %s corrected: %s -> %s", sub.id, previous, mapped)


def reconcile_subscriptions(db: Session, stripe_client) -> SubscriptionReconciliation:
    subs = db.query(Subscription).filter(Subscription.status.in_(RECONCILE_STATUSES)).all()
    result = SubscriptionReconciliation(checked=len(subs))

    for start in range(0, len(subs), BATCH_SIZE):
        for sub in subs[start:start + BATCH_SIZE]:
            _reconcile_one(db, sub, stripe_client, result)
        if start + BATCH_SIZE < len(subs):
            time.sleep(BATCH_PAUSE_SECONDS)

    logger.info(
        "Stripe reconciliation: checked=%s mismatches=%s fixed=%s errors=%s",
        result.checked, result.mismatches, result.fixed, len(result.errors),
    )
    return result
