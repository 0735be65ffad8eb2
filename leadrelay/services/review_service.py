"""Review reply drafts kept per review until they are posted."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from leadrelay.core.exceptions import NotFoundError
from leadrelay.db.enums import ReviewResponseStatus
from leadrelay.db.models import Review, ReviewResponse


def get_review(db: Session, review_id: UUID) -> Review:
    review = db.get(Review, review_id)
    if not review:
        raise NotFoundError("Review not found")
    return review


def list_responses(db: Session, review_id: UUID) -> list[ReviewResponse]:
    return (
        db.query(ReviewResponse)
        .filter(ReviewResponse.review_id == review_id)
        .order_by(ReviewResponse.created_at.desc())
        .all()
    )


def create_draft(db: Session, review: Review, response_text: str) -> ReviewResponse:
    response = ReviewResponse(
        review_id=review.id,
        client_id=review.client_id,
        response_text=response_text.strip(),
        status=ReviewResponseStatus.DRAFT.value,
    )
    db.add(response)
    db.commit()
    db.refresh(response)
    return response


def serialize_response(response: ReviewResponse) -> dict[str, Any]:
    return {
        "id": str(response.id),
        "reviewId": str(response.review_id),
        "responseText": response.response_text,
        "status": response.status,
        "postedAt": response.posted_at.isoformat() if response.posted_at else None,
        "postError": response.post_error,
        "createdAt": response.created_at.isoformat(),
    }
