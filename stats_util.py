"""Time, text and filename helpers shared by the stats modules."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from typing import Any

MIN_DATE = datetime.fromtimestamp(0, tz=timezone.utc)
MAX_DATE = datetime(9999, 12, 31, 23, 59, 59, 999000, tzinfo=timezone.utc)

_HUMANIZED_RE = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2})@(\d{1,2})h(\d{1,2})m(\d{1,2})s(?:(\d{1,3})ms)?$"
)
_LONG_DATE_FORMATS = (
    "%B %d, %Y %I:%M%p",
    "%B %d, %Y %I:%M %p",
    "%b %d, %Y %I:%M%p",
    "%b %d, %Y %I:%M %p",
    "%B %d, %Y %H:%M",
)
_WORD_RE = re.compile(r"\b\w+\b")
_UNSAFE_FILENAME_RE = re.compile(r'[/\\?<>:*|"\x00-\x1f\x80-\x9f]')
_RESERVED_FILENAME_RE = re.compile(
    r"^(con|prn|aux|nul|com\d|lpt\d)(\..*)?$", re.IGNORECASE
)


def now() -> datetime:
    """Return the current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_epoch_ms(value: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a loosely formatted chat timestamp into an aware UTC datetime.

    Accepted forms:
        - ``datetime`` instances (naive ones are taken as UTC).
        - Numbers, or strings of digits, holding epoch milliseconds.
        - ISO-8601 strings, with or without a trailing ``Z``.
        - The chat file naming form ``2024-7-12@01h31m37s`` with an
          optional ``123ms`` suffix.
        - Long human dates such as ``June 19, 2023 2:20pm``.

    Args:
        value: Raw timestamp value from a chat record.

    Returns:
        The parsed instant, or None if *value* is empty or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, (int, float)):
        if value != value:  # NaN
            return None
        return _from_epoch_ms(float(value))
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if text.isdigit():
        return _from_epoch_ms(float(text))

    try:
        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    match = _HUMANIZED_RE.match(text)
    if match:
        year, month, day, hour, minute, second, millis = match.groups()
        try:
            return datetime(
                int(year), int(month), int(day),
                int(hour), int(minute), int(second),
                int(millis or 0) * 1000,
                tzinfo=timezone.utc,
            )
        except ValueError:
            return None

    for fmt in _LONG_DATE_FORMATS:
        try:
            return _as_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


def calculate_duration(start: Any, end: Any) -> int | None:
    """Return the milliseconds between two timestamps.

    Both arguments go through ``parse_timestamp``.  Returns None when
    either side cannot be parsed, so aggregates skip the value.
    """
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        return None
    return round((end_dt - start_dt).total_seconds() * 1000)


def min_date(*dates: datetime | None) -> datetime | None:
    """Return the earliest of *dates*, ignoring None."""
    present = [d for d in dates if d is not None]
    return min(present) if present else None


def max_date(*dates: datetime | None) -> datetime | None:
    """Return the latest of *dates*, ignoring None."""
    present = [d for d in dates if d is not None]
    return max(present) if present else None


def date_to_iso(value: datetime) -> str:
    return value.isoformat()


def date_from_iso(value: Any, default: datetime = MIN_DATE) -> datetime:
    """Read a persisted date back, falling back to *default*."""
    parsed = parse_timestamp(value)
    return parsed if parsed is not None else default


def count_words(text: Any) -> int:
    """Count maximal runs of word characters in *text*."""
    if not isinstance(text, str):
        return 0
    return len(_WORD_RE.findall(text))


def hash_message(text: Any) -> str:
    """Return the SHA-256 hex digest of a message body."""
    body = text if isinstance(text, str) else ""
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def sanitize_filename(name: str) -> str:
    """Strip path separators and characters not allowed in file names.

    Returns an empty string for names that reduce to nothing, to ``.``
    or ``..``, or to a reserved device name.
    """
    cleaned = _UNSAFE_FILENAME_RE.sub("", name).rstrip(". ")
    if cleaned in ("", ".", "..") or _RESERVED_FILENAME_RE.match(cleaned):
        return ""
    return cleaned[:255]
