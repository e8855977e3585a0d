"""Shared utility functions for services and blueprints.

as_utc:          normalise naive datetimes (SQLite drops tzinfo) to UTC
parse_datetime:  ISO string → aware datetime, raises ValidationError on bad input
parse_date:      ISO date string → date, returns None on bad input
parse_period:    YYYY-MM validation for budget periods
"""
import logging
import re
from datetime import date, datetime, timezone

from aog_tracker.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as a timezone-aware UTC datetime.

    SQLite stores DateTime(timezone=True) columns without offset, so values
    read back are naive; they were written as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value, field: str = "value") -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z``. Empty input returns None; anything else that
    does not parse raises ValidationError naming ``field``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        raise ValidationError(
            f"{field} must be an ISO-8601 timestamp",
            details={field: str(value)},
        )


def parse_date(value):
    """Parse a YYYY-MM-DD string to a date. Returns None for empty/invalid input."""
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        return None


def parse_period(value, field: str = "budget_period") -> str:
    """Validate a YYYY-MM budget period string and return it."""
    text = str(value or "").strip()
    if not _PERIOD_RE.match(text):
        raise ValidationError(f"{field} must be in YYYY-MM format", details={field: value})
    return text


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from ``start`` to ``end`` (may be negative)."""
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600.0
