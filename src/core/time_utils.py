"""Time helpers — pure functions shared by the session machine and reports.

All persisted timestamps are ISO-8601 UTC strings with a trailing "Z",
millisecond precision, matching what the remote store already holds.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def now_iso() -> str:
    return to_iso(utc_now())


def parse_iso(raw: str | None) -> datetime | None:
    """Parse an ISO timestamp, returning None on malformed input.

    Naive values are assumed to be UTC.
    """
    if not raw or not isinstance(raw, str):
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def add_seconds_iso(raw: str, seconds: int) -> str:
    dt = parse_iso(raw) or utc_now()
    return to_iso(dt + timedelta(seconds=seconds))


def clamp_int(value: float, minimum: int, maximum: int) -> int:
    """Truncate to int and clamp; non-finite input maps to ``minimum``."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return minimum
    if not math.isfinite(number):
        return minimum
    return min(maximum, max(minimum, int(number)))


def format_duration_sec(total_sec: float) -> str:
    """Format seconds as HH:MM:SS, clamped to one day."""
    sec = clamp_int(total_sec, 0, 24 * 60 * 60)
    hh, rest = divmod(sec, 3600)
    mm, ss = divmod(rest, 60)
    return f"{hh:02d}:{mm:02d}:{ss:02d}"


def format_datetime(raw: str) -> str:
    """Human-readable local date and time, or the raw string if unparseable."""
    dt = parse_iso(raw)
    if dt is None:
        return raw
    local = dt.astimezone()
    return local.strftime("%Y-%m-%d - %H:%M:%S")


def seconds_until(raw_ends_at: str, now: datetime | None = None) -> float:
    """Seconds from ``now`` until the given ISO timestamp (negative if past).

    Malformed timestamps count as already elapsed.
    """
    ends_at = parse_iso(raw_ends_at)
    if ends_at is None:
        return 0.0
    current = now or utc_now()
    return (ends_at - current).total_seconds()


def parse_duration(text: str) -> int | None:
    """Parse a user duration: plain minutes ("25"), "MM:SS" or "HH:MM:SS".

    Returns seconds (at least 1), or None if the text is not a duration.
    """
    text = text.strip()
    if not text:
        return None
    parts = text.split(":")
    if len(parts) > 3 or not all(p.isdigit() for p in parts):
        return None
    numbers = [int(p) for p in parts]
    if len(numbers) == 1:
        total = clamp_int(numbers[0], 0, 24 * 60) * 60
    elif len(numbers) == 2:
        total = clamp_int(numbers[0], 0, 24 * 60) * 60 + clamp_int(numbers[1], 0, 59)
    else:
        h, m, s = numbers
        total = clamp_int(h, 0, 24) * 3600 + clamp_int(m, 0, 59) * 60 + clamp_int(s, 0, 59)
    return max(1, total)
