# app/models/api/profile_response.py
"""
Profile API response models.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ProfileResponse(BaseModel):
    id: str
    owner_id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    last_interaction_channel: str | None = None
    last_seen: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class InteractionResponse(BaseModel):
    id: str | None = None
    channel: str
    direction: str
    content: str
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class HistoryResponse(BaseModel):
    """Conversation history, oldest first."""

    profile_id: str
    cross_session: bool
    interactions: list[InteractionResponse] = Field(default_factory=list)
