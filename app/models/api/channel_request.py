# app/models/api/channel_request.py
"""
Channel API request models.
Inbound messages posted by the chat widget and the voice transcription bridge.
"""

from pydantic import BaseModel, Field


class ChatMessageRequest(BaseModel):
    """A live-chat message from the website widget."""

    session_id: str = Field(..., min_length=1, max_length=200, description="Chat session identifier")
    message: str = Field(..., min_length=1, max_length=5000, description="Message text")
    profile_id: str | None = Field(default=None, description="Profile id already known to the widget")


class VoiceTranscriptRequest(BaseModel):
    """One caller utterance transcribed by the telephony bridge."""

    caller_phone: str = Field(..., min_length=3, max_length=40, description="Caller phone number")
    transcript: str = Field(..., min_length=1, max_length=5000, description="Transcribed speech")
    call_id: str | None = Field(default=None, description="Telephony call identifier")
    profile_id: str | None = Field(default=None, description="Profile id already known to the bridge")
