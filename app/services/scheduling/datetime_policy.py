# app/services/scheduling/datetime_policy.py
"""
Meeting start-time parsing and the fallback policy.

Naive values are read in the business timezone. Anything unparseable or in
the past resolves to 15:00 local on the next calendar day.
"""

from datetime import datetime, time, timedelta, tzinfo

FALLBACK_HOUR = 15

_EXPLICIT_FORMATS = (
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %I:%M %p",
    "%Y-%m-%d %I %p",
    "%Y/%m/%d %H:%M",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M %p",
    "%B %d, %Y %I:%M %p",
    "%B %d %Y %I:%M %p",
)


def parse_meeting_datetime(value: str | None, tz: tzinfo) -> datetime | None:
    """
    Parse a date-time string into an aware datetime.

    Accepts ISO 8601 (including a trailing 'Z') and a handful of explicit
    formats. Date-only values are rejected since they carry no start time.

    Returns:
        Aware datetime, or None if the value cannot be parsed
    """
    if not value or not value.strip():
        return None
    text = value.strip()

    parsed = None
    if "T" in text or "-" in text[:10]:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        # fromisoformat happily returns midnight for a bare date
        if parsed is not None and len(text) <= 10:
            return None

    if parsed is None:
        for fmt in _EXPLICIT_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def fallback_start(now: datetime, tz: tzinfo) -> datetime:
    """15:00 on the calendar day after `now`, in the business timezone."""
    local_now = now.astimezone(tz)
    next_day = local_now.date() + timedelta(days=1)
    return datetime.combine(next_day, time(hour=FALLBACK_HOUR), tzinfo=tz)


def resolve_meeting_start(value: str | None, now: datetime, tz: tzinfo) -> datetime:
    """Parse `value`, applying the next-day 15:00 fallback when unparseable or past."""
    parsed = parse_meeting_datetime(value, tz)
    if parsed is None or parsed < now:
        return fallback_start(now, tz)
    return parsed
