"""Audit logging service - security event tracking for agency and portal actions.

Security guidelines:
- NEVER log secrets (tokens, OTP codes)
- Use IDs instead of raw contact data where possible
- IP: Trust X-Forwarded-For only behind a configured proxy
"""

from typing import Any
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from leadrelay.core.config import settings
from leadrelay.db.enums import AuditAction
from leadrelay.db.models import AuditLog


def get_client_ip(request: Request | None) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    """
    if not request:
        return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request | None) -> str | None:
    """Extract user agent from request (truncated to the column size)."""
    if not request:
        return None
    ua = request.headers.get("user-agent", "")
    return ua[:500] if ua else None


def log_event(
    db: Session,
    action: AuditAction | str,
    *,
    person_id: UUID | None = None,
    client_id: UUID | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    details: dict[str, Any] | None = None,
    request: Request | None = None,
) -> AuditLog:
    """
    Record an audit event. The caller owns the transaction (flush only).

    Args:
        action: e.g. AuditAction.AUTH_LOGIN ("auth.login")
        resource_type: Type of entity affected (e.g. 'client_membership', 'role_template')
        details: Additional context, stored in the `metadata` column
        request: FastAPI request for IP/user-agent extraction
    """
    entry = AuditLog(
        person_id=person_id,
        client_id=client_id,
        action=action.value if isinstance(action, AuditAction) else action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    db.add(entry)
    db.flush()
    return entry


def list_events(
    db: Session,
    *,
    client_id: UUID | None = None,
    action: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[AuditLog], int]:
    """Newest-first audit entries with a total count."""
    query = db.query(AuditLog)
    if client_id:
        query = query.filter(AuditLog.client_id == client_id)
    if action:
        query = query.filter(AuditLog.action == action)
    total = query.count()
    items = query.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit).all()
    return items, total
