# app/models/domain/message_domain.py
"""
Normalized message shapes shared by every transport.

Mailbox polling and gateway webhooks both produce InboundMessage, which is
what the ingestion gate and the persisted ingested_messages table work with.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from app.models.domain.profile_domain import Channel

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")
_BARE_ADDRESS = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")


def extract_address(value: str | None) -> str:
    """Pull the bare, lowercased address out of a header value like 'Name <a@b.com>'."""
    if not value:
        return ""
    match = _ANGLE_ADDRESS.search(value)
    if match:
        return match.group(1).strip().lower()
    match = _BARE_ADDRESS.search(value)
    if match:
        return match.group(0).lower()
    return value.strip().lower()


def address_domain(address: str) -> str:
    return address.rsplit("@", 1)[1] if "@" in address else ""


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    RECEIVED = "received"
    LOOP_SUPPRESSED = "loop_suppressed"
    REPLIED = "replied"
    FAILED = "failed"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


@dataclass(slots=True)
class InboundMessage:
    """One inbound message as seen by the ingestion gate."""

    owner_id: str
    transport: Channel
    sender: str
    body: str
    received_at: datetime
    recipient: str = ""
    subject: str = ""
    message_id: str | None = None
    in_reply_to: str | None = None
    media_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    # Transport-side handle (e.g. Gmail message id); not persisted
    provider_ref: str | None = None
    id: str | None = None
    is_replied: bool = False
    status: DeliveryStatus = DeliveryStatus.RECEIVED

    @property
    def sender_address(self) -> str:
        if self.transport == Channel.EMAIL:
            return extract_address(self.sender)
        return self.sender

    @property
    def recipient_address(self) -> str:
        if self.transport == Channel.EMAIL:
            return extract_address(self.recipient)
        return self.recipient

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "InboundMessage":
        return cls(
            id=str(row["id"]),
            owner_id=row["owner_id"],
            transport=Channel(row["transport"]),
            message_id=row.get("message_id"),
            sender=row["sender"],
            recipient=row.get("recipient") or "",
            subject=row.get("subject") or "",
            body=row.get("body") or "",
            received_at=row["received_at"],
            status=DeliveryStatus(row.get("status") or DeliveryStatus.RECEIVED),
            is_replied=bool(row.get("is_replied")),
            in_reply_to=row.get("in_reply_to"),
            media_url=row.get("media_url"),
        )


@dataclass(slots=True, frozen=True)
class DeliveryStatusUpdate:
    """A gateway callback reporting the fate of an outbound message."""

    external_id: str
    status: DeliveryStatus
    recipient: str | None = None
    timestamp: datetime | None = None
    error: str | None = None


@dataclass(slots=True)
class WebhookBatch:
    """Everything a single gateway webhook delivery carried."""

    messages: list[InboundMessage] = field(default_factory=list)
    status_updates: list[DeliveryStatusUpdate] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.messages and not self.status_updates


@dataclass(slots=True, frozen=True)
class OutgoingEmail:
    """A reply ready to be handed to the mailbox transport."""

    to: str
    subject: str
    body: str
    in_reply_to: str | None = None
    thread_id: str | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class OutboundMessage:
    """
    A reply owed to a contact.

    Saved as pending before the first send attempt so a retry resends the
    same text instead of running the conversation turn again.
    """

    owner_id: str
    transport: Channel
    recipient: str
    body: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    inbound_record_id: str | None = None
    meeting_id: str | None = None
    external_id: str | None = None
    error: str | None = None
    id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "OutboundMessage":
        return cls(
            id=str(row["id"]),
            owner_id=row["owner_id"],
            transport=Channel(row["transport"]),
            recipient=row["recipient"],
            body=row["body"],
            status=DeliveryStatus(row["status"]),
            inbound_record_id=str(row["inbound_record_id"]) if row.get("inbound_record_id") else None,
            meeting_id=str(row["meeting_id"]) if row.get("meeting_id") else None,
            external_id=row.get("external_id"),
            error=row.get("error"),
        )
