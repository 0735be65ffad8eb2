"""
Scheduled job endpoints.

Protected by `Authorization: Bearer <CRON_SECRET>`. Each job accepts GET
and POST so any external scheduler can call it.
"""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadrelay.core.deps import get_db, verify_cron_secret
from leadrelay.core.exceptions import ConfigurationError
from leadrelay.core.structured_logging import build_log_context
from leadrelay.services import (
    agency_communication_service,
    coupon_service,
    daily_summary_service,
    escalation_service,
    missed_call_service,
    nps_service,
    scheduled_message_service,
    stripe_service,
    subscription_service,
    trial_reminder_service,
    weekly_summary_service,
)
from leadrelay.utils.dates import utcnow

router = APIRouter(dependencies=[Depends(verify_cron_secret)])
logger = logging.getLogger(__name__)

METHODS = ["GET", "POST"]


def _done(job: str, data: dict) -> dict:
    logger.info("Cron job finished: %s", data, extra=build_log_context(job=job))
    return {**data, "timestamp": utcnow().isoformat()}


@router.api_route("/process-scheduled", methods=METHODS)
def process_scheduled(db: Session = Depends(get_db)):
    now = utcnow()
    try:
        scheduled_message_service.reset_monthly_counts_if_due(db, now)
        result = scheduled_message_service.process_scheduled_messages(db, now)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Scheduled message run failed", extra=build_log_context(job="process-scheduled"))
        raise HTTPException(status_code=500, detail="Processing failed")
    return _done("process-scheduled", result.to_dict())


@router.api_route("/check-missed-calls", methods=METHODS)
def check_missed_calls(db: Session = Depends(get_db)):
    try:
        result = missed_call_service.check_missed_calls(db)
    except ConfigurationError:
        logger.error("Missed call check skipped: Twilio not configured", extra=build_log_context(job="check-missed-calls"))
        raise HTTPException(status_code=500, detail="Missing Twilio credentials")
    return _done("check-missed-calls", result.to_dict())


@router.api_route("/weekly-summary", methods=METHODS)
async def weekly_summary(db: Session = Depends(get_db)):
    sent = await weekly_summary_service.process_weekly_summaries(db)
    return _done("weekly-summary", {"sent": sent})


@router.api_route("/daily-summary", methods=METHODS)
async def daily_summary(db: Session = Depends(get_db)):
    sent = await daily_summary_service.process_daily_summaries(db)
    return _done("daily-summary", {"sent": sent})


@router.api_route("/trial-reminders", methods=METHODS)
async def trial_reminders(db: Session = Depends(get_db)):
    result = await trial_reminder_service.process_trial_reminders(db)
    return _done("trial-reminders", result.to_dict())


@router.api_route("/nps-surveys", methods=METHODS)
def nps_surveys(db: Session = Depends(get_db)):
    result = nps_service.send_pending_nps_surveys(db)
    return _done("nps-surveys", result.to_dict())


@router.api_route("/expire-prompts", methods=METHODS)
def expire_prompts(db: Session = Depends(get_db)):
    expired = agency_communication_service.expire_pending_prompts(db)
    return _done("expire-prompts", {"expired": expired})


@router.api_route("/agency-digest", methods=METHODS)
async def agency_digest(db: Session = Depends(get_db)):
    sent = await agency_communication_service.process_agency_weekly_digests(db)
    return _done("agency-digest", {"sent": sent})


@router.api_route("/escalation-sla", methods=METHODS)
async def escalation_sla(db: Session = Depends(get_db)):
    breached = await escalation_service.check_sla_breaches(db)
    return _done("escalation-sla", {"breached": breached})


@router.api_route("/coupon-reconciliation", methods=METHODS)
def coupon_reconciliation(db: Session = Depends(get_db)):
    try:
        result = coupon_service.reconcile_coupon_redemptions(db)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Coupon reconciliation failed", extra=build_log_context(job="coupon-reconciliation"))
        raise HTTPException(status_code=500, detail="Reconciliation failed")
    return _done("coupon-reconciliation", result.to_dict())


@router.api_route("/stripe-reconciliation", methods=METHODS)
def stripe_reconciliation(db: Session = Depends(get_db)):
    try:
        result = subscription_service.reconcile_subscriptions(db, stripe_service.get_stripe())
    except (ConfigurationError, stripe.StripeError):
        db.rollback()
        logger.exception("Stripe reconciliation failed", extra=build_log_context(job="stripe-reconciliation"))
        raise HTTPException(status_code=500, detail="Reconciliation failed")
    return _done("stripe-reconciliation", result.to_dict())
