"""Timestamp-with-offset helpers for updatedAt cursors.

The remote service reports updatedAt with millisecond precision, so the
smallest step a cursor can advance by is one millisecond.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any

from pullsync.lib.errors import CursorParseError

__all__ = [
    "MINIMAL_TIME_UNIT",
    "advance_timestamp",
    "format_timestamp",
    "parse_timestamp",
]

MINIMAL_TIME_UNIT = timedelta(milliseconds=1)

# datetime.fromisoformat only accepts 3 or 6 fractional digits before 3.11
_FRACTION_PATTERN = re.compile(r"(T\d{2}:\d{2}:\d{2})\.(\d+)")


def _normalize_iso(value: str) -> str:
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    def pad(match: "re.Match[str]") -> str:
        digits = match.group(2)[:6].ljust(6, "0")
        return f"{match.group(1)}.{digits}"

    return _FRACTION_PATTERN.sub(pad, text, count=1)


def parse_timestamp(value: Any) -> datetime:
    """Parse an updatedAt value into a timezone-aware datetime.

    Naive values are assumed to be UTC.

    Raises:
        CursorParseError: If the value is missing or not an ISO-8601 timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(_normalize_iso(value))
        except ValueError as exc:
            raise CursorParseError(
                f"Invalid updatedAt timestamp: {value!r}",
                value=value,
            ) from exc
    else:
        raise CursorParseError("Missing updatedAt timestamp", value=value)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as UTC ISO-8601 with milliseconds and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def advance_timestamp(value: datetime) -> datetime:
    """Return the timestamp one minimal time unit later."""
    return value + MINIMAL_TIME_UNIT
