# app/services/ingestion/ingestion_gate.py
"""
Ingestion gate: the single entry point for inbound messages from polling and webhooks.

accept() stores the message and returns True when it should be answered.
Duplicates are dropped; email loops are stored as already handled so they
are never picked up again. Both are normal outcomes, logged with a
`decision` key rather than as errors.
"""

from app.infrastructure.activity import ActivityLogger, ActivityStatus
from app.infrastructure.observability.logging import log_ingestion_decision
from app.models.domain.message_domain import DeliveryStatus, InboundMessage
from app.models.domain.profile_domain import Channel
from app.repositories.message_repository import AccountRepository, IngestedMessageRepository
from app.services.ingestion.deduplicator import MessageDeduplicator
from app.services.ingestion.loop_guard import LoopGuard


class IngestionGate:
    def __init__(
        self,
        messages: IngestedMessageRepository,
        accounts: AccountRepository,
        deduplicator: MessageDeduplicator,
        loop_guard: LoopGuard,
        activity: ActivityLogger,
    ):
        self.messages = messages
        self.accounts = accounts
        self.deduplicator = deduplicator
        self.loop_guard = loop_guard
        self.activity = activity

    async def accept(self, message: InboundMessage) -> bool:
        """
        Decide whether an inbound message enters the reply pipeline.

        Args:
            message: Normalized inbound message; its `id` is set when stored

        Returns:
            True if stored and should be answered, False if discarded or parked
        """
        duplicate = await self.deduplicator.find_duplicate(message)
        if duplicate:
            log_ingestion_decision(
                duplicate.value,
                message.owner_id,
                transport=message.transport.value,
                message_id=message.message_id,
            )
            return False

        if message.transport == Channel.EMAIL:
            system_addresses = await self.accounts.outbound_addresses(message.owner_id)
            reason = self.loop_guard.check(message, system_addresses)
            if reason:
                await self._park_loop(message, reason)
                return False

        stored = await self.messages.insert(message)
        if stored is None:
            # Lost an insert race against an identical message id
            log_ingestion_decision("duplicate_message_id", message.owner_id, message_id=message.message_id)
            return False

        message.id = stored.id
        log_ingestion_decision(
            "accepted", message.owner_id, transport=message.transport.value, record_id=stored.id
        )
        return True

    async def _park_loop(self, message: InboundMessage, reason: str) -> None:
        message.is_replied = True
        message.status = DeliveryStatus.LOOP_SUPPRESSED
        stored = await self.messages.insert(message)
        if stored:
            message.id = stored.id

        log_ingestion_decision(
            "loop_suppressed", message.owner_id, reason=reason, sender=message.sender_address
        )
        await self.activity.log(
            "EmailLoopPrevented",
            ActivityStatus.INFO,
            owner_id=message.owner_id,
            details={
                "reason": reason,
                "sender": message.sender_address,
                "recipient": message.recipient_address,
                "subject": message.subject,
            },
        )
