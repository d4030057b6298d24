"""Shared utility functions for services and blueprints.

utcnow:          timezone-aware "now"
ensure_utc:      SQLite returns naive datetimes; normalise before comparing
isoformat_utc:   ISO-8601 string with an explicit UTC offset, for JSON output
parse_datetime:  raises ValueError on bad input, for 400 responses
"""
import logging
from datetime import date, datetime, time, timezone

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value):
    """Attach UTC to a naive datetime; convert an aware one to UTC.

    None passes through unchanged.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value):
    """Serialise a datetime as UTC ISO-8601; None stays None."""
    return ensure_utc(value).isoformat() if value else None


def parse_datetime(value):
    """Parse an ISO-8601 date or datetime string to an aware datetime.

    Returns None for empty input. A bare date (YYYY-MM-DD) means end of
    that day in UTC, which is how deadlines are entered. A trailing ``Z``
    is accepted.

    Raises:
        ValueError: on unparseable input.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time(23, 59, 59), tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        if len(text) == 10:
            return datetime.combine(date.fromisoformat(text), time(23, 59, 59), tzinfo=timezone.utc)
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise ValueError(
            "Invalid datetime format. Use YYYY-MM-DD or an ISO-8601 timestamp."
        ) from exc
