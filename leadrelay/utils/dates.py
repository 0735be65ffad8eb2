"""Date/time helpers. All persisted timestamps are UTC."""

from datetime import date, datetime, time, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(day: date) -> datetime:
    """Midnight UTC at the start of `day`."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def days_ago(days: int, now: datetime | None = None) -> datetime:
    return (now or utcnow()) - timedelta(days=days)


def sunday_weekday(moment: datetime) -> int:
    """Weekday with Sunday as 0 through Saturday as 6."""
    return (moment.weekday() + 1) % 7


def parse_hour(hhmm: str | None, default: int = 8) -> int:
    """Hour component of an 'HH:MM' string."""
    if not hhmm:
        return default
    try:
        return int(hhmm.split(":", 1)[0])
    except ValueError:
        return default


def format_hhmm(moment: datetime) -> str:
    return moment.strftime("%H:%M")
