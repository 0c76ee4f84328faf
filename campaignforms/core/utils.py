"""
Shared utility functions for the campaign forms backend.
"""

import uuid
from datetime import datetime, timezone

from dateutil import parser as dateutil_parser


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate an opaque identifier for forms and submissions."""
    return uuid.uuid4().hex


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp into a timezone-aware UTC datetime.

    Accepts ISO 8601 strings (as written by the JSON and SQLite backends)
    and the looser formats older records used. Naive values are assumed
    to be UTC. Returns None if the value cannot be parsed.

    Args:
        value: The timestamp string or datetime to normalize.

    Returns:
        A timezone-aware datetime, or None if parsing fails.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = dateutil_parser.parse(value)
        except (ValueError, TypeError, OverflowError):
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def is_empty_answer(value) -> bool:
    """True for absent answers: None, blank strings, empty lists or mappings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False
