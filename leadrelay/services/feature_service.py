"""Per-client feature flags."""

from uuid import UUID

from sqlalchemy.orm import Session

from leadrelay.core.exceptions import NotFoundError, PermissionDeniedError, ValidationFailedError
from leadrelay.db.models import Client

# API name -> Client column
FEATURE_FLAGS: dict[str, str] = {
    "missedCallSms": "missed_call_sms_enabled",
    "aiResponse": "ai_response_enabled",
    "aiAgent": "ai_agent_enabled",
    "autoEscalation": "auto_escalation_enabled",
    "voice": "voice_enabled",
    "flows": "flows_enabled",
    "leadScoring": "lead_scoring_enabled",
    "reputationMonitoring": "reputation_monitoring_enabled",
    "autoReviewResponse": "auto_review_response_enabled",
    "calendarSync": "calendar_sync_enabled",
    "hotTransfer": "hot_transfer_enabled",
    "paymentLinks": "payment_links_enabled",
    "photoRequests": "photo_requests_enabled",
    "multiLanguage": "multi_language_enabled",
}

# Toggles a client may change from the portal
CLIENT_SAFE_TOGGLES: dict[str, str] = {
    "missedCallSmsEnabled": "missed_call_sms_enabled",
    "aiResponseEnabled": "ai_response_enabled",
    "photoRequestsEnabled": "photo_requests_enabled",
    "notificationEmail": "notification_email",
    "notificationSms": "notification_sms",
}


def _column(flag: str) -> str:
    if flag not in FEATURE_FLAGS:
        raise ValueError(f"Unknown feature flag '{flag}'")
    return FEATURE_FLAGS[flag]


def _get_client(db: Session, client_id: UUID) -> Client:
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise NotFoundError("Client not found")
    return client


def is_feature_enabled(db: Session, client_id: UUID, flag: str) -> bool:
    column = _column(flag)
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        return False
    return bool(getattr(client, column))


def get_enabled_features(db: Session, client_id: UUID) -> list[str]:
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        return []
    return [flag for flag, column in FEATURE_FLAGS.items() if getattr(client, column)]


def require_feature(db: Session, client_id: UUID, flag: str) -> None:
    """
    Raises:
        PermissionDeniedError: the feature is off for this client
    """
    if not is_feature_enabled(db, client_id, flag):
        raise PermissionDeniedError(f"Feature '{flag}' is not enabled for this client")


def get_client_toggles(db: Session, client_id: UUID) -> dict[str, bool]:
    client = _get_client(db, client_id)
    return {key: bool(getattr(client, column)) for key, column in CLIENT_SAFE_TOGGLES.items()}


def update_client_toggles(db: Session, client_id: UUID, updates: dict[str, bool]) -> dict[str, bool]:
    unknown = sorted(set(updates) - set(CLIENT_SAFE_TOGGLES))
    if unknown:
        raise ValidationFailedError(f"Unknown or restricted toggles: {', '.join(unknown)}")
    for key, value in updates.items():
        if not isinstance(value, bool):
            raise ValidationFailedError(f"Toggle '{key}' must be a boolean")

    client = _get_client(db, client_id)
    for key, value in updates.items():
        setattr(client, CLIENT_SAFE_TOGGLES[key], value)
    db.commit()
    db.refresh(client)
    return {key: bool(getattr(client, column)) for key, column in CLIENT_SAFE_TOGGLES.items()}
