"""ISO-8601 helpers for persisted meeting times.

Every ``proposed_time`` written to the graph uses the same UTC form,
``YYYY-MM-DDTHH:MM:SS.mmmZ``, so string comparisons and parsing agree.
"""

from __future__ import annotations

from datetime import datetime
from datetime import timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format *value* as millisecond-precision UTC ISO-8601 with a ``Z`` suffix.

    Naive datetimes are assumed to already be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string into an aware UTC datetime, or ``None``."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_iso(value: str | datetime | None) -> str | None:
    """Return the canonical persisted form of *value*, or ``None`` if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_iso(value)
    parsed = parse_iso(value)
    return to_iso(parsed) if parsed is not None else None


def is_valid_iso(value: str | None) -> bool:
    return parse_iso(value) is not None


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
