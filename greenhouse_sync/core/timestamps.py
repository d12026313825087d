"""Normalization of the timestamp encodings the greenhouse backend emits.

The backend is inconsistent about how it serializes instants. Depending on the
endpoint (and the backend build) a timestamp arrives as:

- an ISO-8601 string, with or without an offset (``2025-07-11T09:23:35``),
- a Java ``LocalDateTime`` serialized as a number array
  (``[2025, 7, 11, 22, 13, 36, 123000000]``), trailing fields optional,
- ``null``.

Everything is converted to a timezone-aware UTC ``datetime``. The helpers here
never raise on bad input and never invent a time: callers that need a value
supply their own fallback via :func:`normalize_or`.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Optional, Sequence

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_NANOS_PER_MILLI = 1_000_000
_MIN_FIELDS = 3
_MAX_FIELDS = 7


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def normalize(value: Any, *, assume_tz: tzinfo = timezone.utc) -> Optional[datetime]:
    """Convert a backend timestamp into an aware UTC datetime.

    Args:
        value: ISO-8601 string, numeric field sequence, or None.
        assume_tz: Zone applied to values that carry no offset.

    Returns:
        The instant in UTC, or None when the value is absent or unusable.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return _parse_iso8601(value, assume_tz)
    if isinstance(value, (list, tuple)):
        return _from_fields(value, assume_tz)
    return None


def normalize_or(
    value: Any, fallback: datetime, *, assume_tz: tzinfo = timezone.utc
) -> datetime:
    """Normalize ``value``, substituting ``fallback`` when that yields None."""
    parsed = normalize(value, assume_tz=assume_tz)
    return parsed if parsed is not None else fallback


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the Unix epoch for an aware datetime."""
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


def format_backend_timestamp(value: datetime) -> str:
    """Render ``value`` as offset-less UTC ``YYYY-MM-DDTHH:MM:SS``.

    This is the shape the control endpoint expects for ``updatedAt``.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="seconds")


def _parse_iso8601(value: str, assume_tz: tzinfo) -> Optional[datetime]:
    text = value.strip()
    if not text:
        return None

    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=assume_tz)

    return _validated(parsed)


def _from_fields(fields: Sequence[Any], assume_tz: tzinfo) -> Optional[datetime]:
    if not _MIN_FIELDS <= len(fields) <= _MAX_FIELDS:
        return None

    numbers: list[int] = []
    for item in fields:
        number = _as_int(item)
        if number is None:
            return None
        numbers.append(number)

    numbers.extend([0] * (_MAX_FIELDS - len(numbers)))
    year, month, day, hour, minute, second, nanos = numbers

    if not 0 <= nanos < 1_000_000_000:
        return None
    millis = nanos // _NANOS_PER_MILLI

    try:
        parsed = datetime(
            year,
            month,
            day,
            hour,
            minute,
            second,
            millis * 1000,
            tzinfo=assume_tz,
        )
    except (OverflowError, ValueError):
        return None

    return _validated(parsed)


def _as_int(value: Any) -> Optional[int]:
    # bool is an int subclass; a JSON true/false is never a date field
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        return int(value)
    return None


def _validated(value: datetime) -> Optional[datetime]:
    try:
        epoch_seconds = value.timestamp()
        normalized = value.astimezone(timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    if not math.isfinite(epoch_seconds):
        return None
    return normalized


__all__ = [
    "EPOCH",
    "format_backend_timestamp",
    "from_epoch_ms",
    "normalize",
    "normalize_or",
    "to_epoch_ms",
    "utcnow",
]
