"""Per-client daily counters (daily_stats)."""

from datetime import date
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from leadrelay.db.models import DailyStats
from leadrelay.utils.dates import utcnow

COUNTER_FIELDS = frozenset({
    "messages_sent",
    "missed_calls_captured",
    "forms_responded",
    "appointments_reminded",
    "estimates_followed_up",
    "reviews_requested",
    "payments_reminded",
    "conversations_started",
})


def increment_daily_stat(
    db: Session,
    client_id: UUID,
    field: str,
    amount: int = 1,
    day: date | None = None,
) -> DailyStats:
    """Add `amount` to one counter on the client's row for `day` (UTC today by default)."""
    if field not in COUNTER_FIELDS:
        raise ValueError(f"Unknown daily stat '{field}'")
    day = day or utcnow().date()
    row = (
        db.query(DailyStats)
        .filter(DailyStats.client_id == client_id, DailyStats.day == day)
        .first()
    )
    if row is None:
        row = DailyStats(client_id=client_id, day=day, **{f: 0 for f in COUNTER_FIELDS})
        db.add(row)
    setattr(row, field, (getattr(row, field) or 0) + amount)
    db.flush()
    return row


def sum_stats(db: Session, client_id: UUID, start: date, end: date) -> dict[str, int]:
    """Totals for each counter over [start, end] inclusive."""
    columns = [func.coalesce(func.sum(getattr(DailyStats, f)), 0) for f in sorted(COUNTER_FIELDS)]
    row = (
        db.query(*columns)
        .filter(
            DailyStats.client_id == client_id,
            DailyStats.day >= start,
            DailyStats.day <= end,
        )
        .one()
    )
    return {f: int(v or 0) for f, v in zip(sorted(COUNTER_FIELDS), row)}
