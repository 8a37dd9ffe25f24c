# app/models/api/meeting_response.py
"""
Meeting API response models.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from app.models.api.channel_response import MeetingOutcomeResponse


class MeetingResponse(BaseModel):
    """A stored meeting."""

    id: str | None = Field(None, description="Meeting id")
    attendee_email: str
    subject: str
    start_time: datetime
    end_time: datetime
    status: str
    external_event_id: str | None = None
    join_link: str = ""


class ScheduleMeetingResponse(MeetingOutcomeResponse):
    """Booking outcome plus the stored meeting on success."""

    meeting: MeetingResponse | None = Field(None, description="Stored meeting")


class AvailabilityResponse(BaseModel):
    """Free start times on one day."""

    day: date
    duration_minutes: int
    slots: list[datetime] = Field(default_factory=list)
