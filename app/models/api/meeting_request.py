# app/models/api/meeting_request.py
"""
Meeting API request models.
"""

from pydantic import BaseModel, Field


class ScheduleMeetingRequest(BaseModel):
    """Request to book a meeting on the account's calendar."""

    attendee_email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    subject: str = Field(..., min_length=1, max_length=200, description="Meeting subject")
    date_time: str = Field(..., description="ISO 8601 start date-time")
    duration_minutes: int = Field(default=30, ge=5, le=480, description="Duration in minutes")
    description: str = Field(default="", max_length=1000, description="Event description")
    profile_id: str | None = Field(default=None, description="Profile the meeting belongs to")
