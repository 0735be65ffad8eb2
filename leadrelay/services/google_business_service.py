"""Posting review replies to Google Business Profile."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from leadrelay.core.config import settings
from leadrelay.db.enums import ReviewResponseStatus
from leadrelay.db.models import Client, Review, ReviewResponse
from leadrelay.services.http_service import DEFAULT_TIMEOUT_SECONDS, error_detail, request_with_retries
from leadrelay.utils.dates import utcnow

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_BUSINESS_API = "https://mybusiness.googleapis.com/v4"
DEFAULT_TOKEN_TTL_SECONDS = 3600


class GoogleApiError(Exception):
    pass


@dataclass
class PostResult:
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, **({"error": self.error} if self.error else {})}


async def refresh_google_token(db: Session, client: Client) -> str:
    """Exchange the stored refresh token and persist the new access token."""
    if not client.google_refresh_token:
        raise GoogleApiError("Google Business not connected")

    data = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "client_secret": settings.GOOGLE_CLIENT_SECRET,
        "refresh_token": client.google_refresh_token,
        "grant_type": "refresh_token",
    }
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as http:
        response = await request_with_retries(
            lambda: http.post(GOOGLE_TOKEN_URL, data=data),
            label="Google token refresh",
        )

    payload = response.json() if response.content else {}
    access_token = payload.get("access_token")
    if not access_token:
        raise GoogleApiError("Failed to refresh token")

    client.google_access_token = access_token
    client.google_token_expires_at = utcnow() + timedelta(
        seconds=payload.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS
    )
    db.commit()
    return access_token


async def _put_reply(access_token: str, review_name: str, comment: str) -> None:
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as http:
        response = await request_with_retries(
            lambda: http.put(
                f"{GOOGLE_BUSINESS_API}/{review_name}/reply",
                headers={"Authorization": f"Bearer {access_token}"},
                json={"comment": comment},
            ),
            label="Google review reply",
        )
    if not response.is_success:
        raise GoogleApiError(error_detail(response) or "Failed to post response")


async def post_response_to_google(db: Session, response_id: UUID) -> PostResult:
    response = db.get(ReviewResponse, response_id)
    if not response:
        return PostResult(success=False, error="Response not found")

    review = db.get(Review, response.review_id)
    if not review or review.source != "google":
        return PostResult(success=False, error="Not a Google review")

    client = db.get(Client, response.client_id)
    if not client or not client.google_access_token:
        return PostResult(success=False, error="Google Business not connected")

    try:
        access_token = client.google_access_token
        if client.google_token_expires_at and client.google_token_expires_at < utcnow():
            access_token = await refresh_google_token(db, client)

        # external_id holds the full accounts/.../locations/.../reviews/... resource name
        await _put_reply(access_token, review.external_id, response.response_text)
    except (GoogleApiError, httpx.HTTPError) as exc:
        message = str(exc) or "Unknown error"
        logger.error("Posting review response %s failed: %s", response_id, message)
        response.post_error = message
        db.commit()
        return PostResult(success=False, error=message)

    now = utcnow()
    response.status = ReviewResponseStatus.POSTED.value
    response.posted_at = now
    response.post_error = None
    review.has_response = True
    review.response_text = response.response_text
    review.response_date = now
    db.commit()
    return PostResult(success=True)
