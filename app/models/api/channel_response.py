# app/models/api/channel_response.py
"""
Channel API response models.
"""

from pydantic import BaseModel, Field


class MeetingOutcomeResponse(BaseModel):
    """Result of a booking attempt; failures carry a typed error code."""

    success: bool = Field(..., description="Whether the meeting was booked")
    message: str = Field(..., description="User-facing message")
    event_id: str | None = Field(None, description="Calendar event id")
    join_link: str | None = Field(None, description="Video join link, empty if none")
    error_code: str | None = Field(None, description="Typed failure code")


class TurnResponse(BaseModel):
    """Reply produced for one inbound message."""

    reply: str = Field(..., description="Text to deliver to the contact")
    profile_id: str = Field(..., description="Resolved profile id")
    scheduling_requested: bool = Field(default=False, description="Whether a meeting was requested")
    meeting: MeetingOutcomeResponse | None = Field(None, description="Booking outcome, if any")


class WebhookAckResponse(BaseModel):
    """Acknowledgement of a gateway webhook delivery."""

    status: str = Field(default="ok")
    messages: int = Field(default=0, description="Inbound messages in the delivery")
    accepted: int = Field(default=0, description="Messages that entered the pipeline")
    replied: int = Field(default=0, description="Replies sent")
    status_updates: int = Field(default=0, description="Outbound records updated")
