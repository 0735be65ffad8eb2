"""Single-use client portal login links (sent in summaries and onboarding)."""

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from leadrelay.core.config import settings
from leadrelay.core.security import generate_token, hash_token
from leadrelay.db.models import MagicLinkToken
from leadrelay.utils.dates import utcnow

logger = logging.getLogger(__name__)

MAGIC_LINK_DAYS = 7


def create_magic_link(db: Session, client_id: UUID) -> str:
    """Create a login link for the client's portal; valid 7 days, used once."""
    token = generate_token(32)
    db.add(
        MagicLinkToken(
            client_id=client_id,
            token_hash=hash_token(token),
            expires_at=utcnow() + timedelta(days=MAGIC_LINK_DAYS),
        )
    )
    db.flush()
    return f"{settings.app_url}/api/client/auth/magic?token={token}"


def validate_magic_link(db: Session, token: str | None) -> UUID | None:
    """Consume a link token. Returns the client id, or None if unknown/expired/used."""
    if not token:
        return None
    record = (
        db.query(MagicLinkToken)
        .filter(MagicLinkToken.token_hash == hash_token(token))
        .first()
    )
    if not record or record.used_at is not None or record.expires_at < utcnow():
        return None
    record.used_at = utcnow()
    db.flush()
    return record.client_id
