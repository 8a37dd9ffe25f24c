# app/models/domain/calendar_domain.py
"""
Calendar Domain Models
Domain models for calendar operations and business logic.
Used by services for internal processing and business rules.
"""

from dataclasses import dataclass
from datetime import UTC, datetime


def parse_google_datetime(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp as returned by Google APIs."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True, frozen=True)
class BusyInterval:
    """A busy block returned by a freebusy query."""

    start: datetime
    end: datetime

    def overlaps(self, window_start: datetime, window_end: datetime) -> bool:
        return self.start < window_end and self.end > window_start


class CalendarEvent:
    """A created Google Calendar event."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.raw_data = data

    def join_link(self) -> str:
        """
        Best available link for joining the meeting.

        Order: the event's hangoutLink, then the first video entry point of
        the conference data, then any entry point. Empty string when the
        event has no conference attached.
        """
        if self.raw_data.get("hangoutLink"):
            return self.raw_data["hangoutLink"]

        entry_points = (self.raw_data.get("conferenceData") or {}).get("entryPoints") or []

        for entry in entry_points:
            if entry.get("entryPointType") == "video" and entry.get("uri"):
                return entry["uri"]

        for entry in entry_points:
            if entry.get("uri"):
                return entry["uri"]

        return ""
