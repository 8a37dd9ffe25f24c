# app/models/domain/meeting_domain.py
"""
Meeting booking domain models.

MeetingResult is the only thing callers render user-facing text from;
provider error text stays inside `detail` for logs.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


class SchedulingErrorCode(StrEnum):
    CALENDAR_NOT_CONFIGURED = "CALENDAR_NOT_CONFIGURED"
    INVALID_DATE_FORMAT = "INVALID_DATE_FORMAT"
    PAST_DATE = "PAST_DATE"
    TIME_CONFLICT = "TIME_CONFLICT"
    CALENDAR_API_ERROR = "CALENDAR_API_ERROR"


class MeetingStatus(StrEnum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class MeetingRequest:
    attendee_email: str
    subject: str
    date_time: str
    duration_minutes: int = 30
    description: str = ""
    profile_id: str | None = None


@dataclass(slots=True)
class Meeting:
    owner_id: str
    attendee_email: str
    subject: str
    start_time: datetime
    end_time: datetime
    status: MeetingStatus = MeetingStatus.SCHEDULED
    external_event_id: str | None = None
    join_link: str = ""
    description: str = ""
    profile_id: str | None = None
    id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Meeting":
        return cls(
            id=str(row["id"]),
            owner_id=row["owner_id"],
            profile_id=str(row["profile_id"]) if row.get("profile_id") else None,
            attendee_email=row["attendee_email"],
            subject=row["subject"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            status=MeetingStatus(row["status"]),
            external_event_id=row.get("external_event_id"),
            join_link=row.get("join_link") or "",
            description=row.get("description") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "attendee_email": self.attendee_email,
            "subject": self.subject,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status.value,
            "external_event_id": self.external_event_id,
            "join_link": self.join_link,
        }


@dataclass(slots=True, frozen=True)
class MeetingResult:
    success: bool
    message: str
    meeting: Meeting | None = None
    error_code: SchedulingErrorCode | None = None
    detail: str | None = None

    @property
    def event_id(self) -> str | None:
        return self.meeting.external_event_id if self.meeting else None

    @property
    def join_link(self) -> str | None:
        return self.meeting.join_link if self.meeting else None


@dataclass(slots=True, frozen=True)
class CalendarIntegration:
    owner_id: str
    refresh_token: str
    calendar_id: str = "primary"
    is_active: bool = True
    timezone: str | None = None
