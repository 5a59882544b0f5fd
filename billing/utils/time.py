"""Time utilities."""
import calendar
from datetime import UTC, date, datetime, timezone


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def today_utc() -> date:
    """Return the current calendar date in UTC."""

    return utcnow().date()


def parse_iso_utc(value: str) -> datetime:
    """Parse an ISO 8601 string and normalize it to UTC."""

    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def add_months(value: date, months: int) -> date:
    """Shift ``value`` by whole months, clamping to the last day of the month.

    ``add_months(date(2024, 1, 31), 1)`` is ``date(2024, 2, 29)``.
    """

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


__all__ = ["utcnow", "today_utc", "parse_iso_utc", "ensure_aware", "add_months"]
