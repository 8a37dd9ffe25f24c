# app/models/domain/profile_domain.py
"""
Profile and Interaction domain models.

A Profile is the durable identity of one contact across every channel;
Interactions are the append-only message records attached to it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class Channel(StrEnum):
    VOICE = "voice"
    EMAIL = "email"
    CHAT = "chat"
    WHATSAPP = "whatsapp"

    @property
    def uses_phone(self) -> bool:
        return self in (Channel.VOICE, Channel.WHATSAPP)


class Direction(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


CHAT_SESSIONS_KEY = "chat_session_ids"


@dataclass(slots=True)
class Profile:
    id: str
    owner_id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    last_interaction_channel: Channel | None = None
    last_seen: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Profile":
        channel = row.get("last_interaction_channel")
        return cls(
            id=str(row["id"]),
            owner_id=row["owner_id"],
            name=row.get("name"),
            email=row.get("email"),
            phone=row.get("phone"),
            last_interaction_channel=Channel(channel) if channel else None,
            last_seen=row.get("last_seen"),
            metadata=dict(row.get("metadata") or {}),
        )

    @property
    def chat_session_ids(self) -> list[str]:
        return list(self.metadata.get(CHAT_SESSIONS_KEY, []))

    def missing_fields(self, details: "ContactDetails") -> dict[str, str]:
        """Extracted values for fields this profile does not hold yet."""
        updates = {}
        if details.email and not self.email:
            updates["email"] = details.email
        if details.phone and not self.phone:
            updates["phone"] = details.phone
        if details.name and not self.name:
            updates["name"] = details.name
        return updates

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "last_interaction_channel": (
                self.last_interaction_channel.value if self.last_interaction_channel else None
            ),
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "metadata": self.metadata,
        }


@dataclass(slots=True, frozen=True)
class ContactDetails:
    """Identifying fields pulled out of free-form message text."""

    email: str | None = None
    phone: str | None = None
    name: str | None = None

    def is_empty(self) -> bool:
        return not (self.email or self.phone or self.name)


@dataclass(slots=True)
class Interaction:
    profile_id: str
    channel: Channel
    direction: Direction
    content: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Interaction":
        return cls(
            id=str(row["id"]),
            profile_id=str(row["profile_id"]),
            channel=Channel(row["channel"]),
            direction=Direction(row["direction"]),
            content=row["content"],
            created_at=row["created_at"],
            metadata=dict(row.get("metadata") or {}),
        )

    def as_chat_message(self) -> dict[str, str]:
        """Conversation-context form: inbound is the user, outbound the assistant."""
        role = "user" if self.direction == Direction.INBOUND else "assistant"
        return {"role": role, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "profile_id": self.profile_id,
            "channel": self.channel.value,
            "direction": self.direction.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }
