"""Twilio number search, purchase and assignment."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from twilio.base.exceptions import TwilioException

from leadrelay.core.deps import get_db, require_agency_permission
from leadrelay.core.exceptions import ConfigurationError
from leadrelay.schemas.auth import AgencySession
from leadrelay.services import twilio_provisioning_service as provisioning
from leadrelay.utils.normalization import normalize_phone

router = APIRouter()
logger = logging.getLogger(__name__)

_require_phones = require_agency_permission("agency.phones.manage")


class NumberForClient(BaseModel):
    phoneNumber: str = Field(..., min_length=7, max_length=20)
    clientId: UUID


class ReleaseRequest(BaseModel):
    clientId: UUID


class ReassignRequest(BaseModel):
    phoneNumber: str = Field(..., min_length=7, max_length=20)
    fromClientId: UUID
    toClientId: UUID


def _result(result: provisioning.ProvisionResult):
    if not result.success:
        return JSONResponse(status_code=400, content={"error": result.error})
    return result.to_dict()


def _e164(phone: str) -> str | JSONResponse:
    try:
        return normalize_phone(phone)
    except ValueError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})


@router.get("/search")
def search_numbers(
    areaCode: str | None = None,
    contains: str | None = None,
    country: str = provisioning.DEFAULT_COUNTRY,
    inRegion: str | None = None,
    inLocality: str | None = None,
    session: AgencySession = Depends(_require_phones),
):
    try:
        numbers = provisioning.search_available_numbers(
            area_code=areaCode,
            contains=contains,
            country=country,
            in_region=inRegion,
            in_locality=inLocality,
        )
    except (TwilioException, ConfigurationError) as exc:
        return JSONResponse(status_code=400, content={"error": str(exc) or "Failed to search numbers"})
    return {"numbers": numbers}


@router.post("/purchase")
def purchase_number(
    body: NumberForClient,
    session: AgencySession = Depends(_require_phones),
    db: Session = Depends(get_db),
):
    phone = _e164(body.phoneNumber)
    if isinstance(phone, JSONResponse):
        return phone
    return _result(provisioning.purchase_number(db, phone, body.clientId))


@router.post("/assign")
def assign_number(
    body: NumberForClient,
    session: AgencySession = Depends(_require_phones),
    db: Session = Depends(get_db),
):
    """Attach a number that is already in the Twilio account."""
    phone = _e164(body.phoneNumber)
    if isinstance(phone, JSONResponse):
        return phone
    return _result(provisioning.assign_existing_number(db, phone, body.clientId))


@router.post("/configure")
def configure_number(
    body: NumberForClient,
    session: AgencySession = Depends(_require_phones),
    db: Session = Depends(get_db),
):
    """Point an owned number's webhooks at this API and activate the client."""
    phone = _e164(body.phoneNumber)
    if isinstance(phone, JSONResponse):
        return phone
    return _result(provisioning.configure_existing_number(db, phone, body.clientId))


@router.post("/release")
def release_number(
    body: ReleaseRequest,
    session: AgencySession = Depends(_require_phones),
    db: Session = Depends(get_db),
):
    return _result(provisioning.release_number(db, body.clientId))


@router.post("/reassign")
def reassign_number(
    body: ReassignRequest,
    session: AgencySession = Depends(_require_phones),
    db: Session = Depends(get_db),
):
    phone = _e164(body.phoneNumber)
    if isinstance(phone, JSONResponse):
        return phone
    return _result(provisioning.reassign_number(db, phone, body.fromClientId, body.toClientId))


@router.get("/unassigned")
def unassigned_numbers(
    session: AgencySession = Depends(_require_phones),
    db: Session = Depends(get_db),
):
    return {"numbers": provisioning.list_unassigned_numbers(db)}


@router.get("/balance")
def account_balance(session: AgencySession = Depends(_require_phones)):
    return {"balance": provisioning.get_account_balance()}
