"""Timestamp utilities for wordsync.

All sync timestamps travel as ISO-8601 strings. They are normalized to the
canonical UTC form ``YYYY-MM-DDTHH:MM:SS.mmmZ`` so that string order matches
chronological order in storage queries.

Precision is one millisecond. Sub-millisecond digits are truncated when a
value is normalized, so two edits within the same millisecond compare as a
tie, and the server then keeps the version it already has.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], str]

CANONICAL_FORMAT = "%Y-%m-%dT%H:%M:%S"


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as a canonical UTC timestamp string.

    Args:
        dt: datetime, naive values are treated as UTC

    Returns:
        String like "2024-01-01T12:00:00.000Z", microseconds truncated
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    millis = dt.microsecond // 1000
    return f"{dt.strftime(CANONICAL_FORMAT)}.{millis:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing "Z" and naive timestamps (read as UTC).

    Raises:
        ValueError: If the value is not a parseable timestamp
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"not a timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_timestamp(value: str) -> str:
    """Return the canonical string form of an ISO-8601 timestamp."""
    return format_timestamp(parse_timestamp(value))


def utc_now() -> str:
    """Get the current time as a canonical timestamp string."""
    return format_timestamp(datetime.now(timezone.utc))


def is_after(value: Optional[str], reference: Optional[str]) -> bool:
    """Check whether ``value`` is strictly later than ``reference``.

    A missing value is never after anything. A missing reference means
    "no watermark", which every present value is after.
    """
    if value is None:
        return False
    if reference is None:
        return True
    return parse_timestamp(value) > parse_timestamp(reference)


def same_instant(a: Optional[str], b: Optional[str]) -> bool:
    """Check whether two timestamps denote the same instant."""
    if a is None or b is None:
        return a is b
    return parse_timestamp(a) == parse_timestamp(b)


class SteppingClock:
    """Deterministic clock that advances a fixed step on every reading.

    Shared by several stores and servers it gives a single global timeline,
    which is what the sync protocol assumes of real wall clocks.
    """

    def __init__(self, start: str = "2024-01-01T00:00:00.000Z", step_seconds: float = 1.0) -> None:
        self._current = parse_timestamp(start)
        self._step = timedelta(seconds=step_seconds)

    def __call__(self) -> str:
        self._current = self._current + self._step
        return format_timestamp(self._current)

    def peek(self) -> str:
        """Return the last issued time without advancing."""
        return format_timestamp(self._current)
