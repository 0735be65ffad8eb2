"""Client notification preferences (daily summary email, quiet hours)."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from leadrelay.db.models import NotificationPreferences

# API name -> column
PREFERENCE_FIELDS: dict[str, str] = {
    "emailDailySummary": "email_daily_summary",
    "quietHoursEnabled": "quiet_hours_enabled",
    "quietHoursStart": "quiet_hours_start",
    "quietHoursEnd": "quiet_hours_end",
    "urgentOverride": "urgent_override",
}


def get_preferences(db: Session, client_id: UUID) -> NotificationPreferences:
    """Stored preferences, or unsaved defaults when the client never set any."""
    prefs = db.query(NotificationPreferences).filter(NotificationPreferences.client_id == client_id).first()
    if prefs:
        return prefs
    return NotificationPreferences(
        client_id=client_id,
        email_daily_summary=False,
        quiet_hours_enabled=False,
        quiet_hours_start="22:00",
        quiet_hours_end="07:00",
        urgent_override=True,
    )


def update_preferences(db: Session, client_id: UUID, updates: dict[str, Any]) -> NotificationPreferences:
    prefs = get_preferences(db, client_id)
    if prefs.id is None:
        db.add(prefs)
    for key, value in updates.items():
        setattr(prefs, PREFERENCE_FIELDS[key], value)
    db.commit()
    db.refresh(prefs)
    return prefs


def serialize_preferences(prefs: NotificationPreferences) -> dict[str, Any]:
    return {key: getattr(prefs, column) for key, column in PREFERENCE_FIELDS.items()}
