# app/services/ingestion/deduplicator.py
"""
Duplicate detection for inbound messages.

A transport message id is authoritative when present. Without one, a message
from the same sender with the same subject within the window counts as seen.
"""

from datetime import timedelta
from enum import StrEnum

from app.models.domain.message_domain import InboundMessage
from app.models.domain.profile_domain import Channel
from app.repositories.message_repository import IngestedMessageRepository


class DuplicateReason(StrEnum):
    MESSAGE_ID = "duplicate_message_id"
    FUZZY = "duplicate_fuzzy"


class MessageDeduplicator:
    def __init__(self, messages: IngestedMessageRepository, window: timedelta = timedelta(minutes=5)):
        self.messages = messages
        self.window = window

    async def find_duplicate(self, message: InboundMessage) -> DuplicateReason | None:
        if message.message_id:
            if await self.messages.exists_message_id(message.owner_id, message.message_id):
                return DuplicateReason.MESSAGE_ID
            return None

        if await self.messages.has_recent_duplicate(
            message.owner_id,
            message.transport,
            message.sender,
            message.subject,
            message.received_at,
            self.window,
            # Chat-style transports have no subject, so the body stands in for it
            body=None if message.transport == Channel.EMAIL else message.body,
        ):
            return DuplicateReason.FUZZY
        return None
