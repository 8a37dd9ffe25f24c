# app/services/pipeline/channel_delivery.py
"""
Channel delivery: run the conversation turn for stored inbound messages and
send the reply back over the transport they arrived on.
"""

from dataclasses import dataclass
from typing import Any

from app.infrastructure.activity import ActivityLogger, ActivityStatus
from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import MailAccount
from app.models.domain.message_domain import DeliveryStatus, InboundMessage, OutboundMessage, WebhookBatch
from app.models.domain.profile_domain import Channel
from app.repositories.message_repository import (
    AccountRepository,
    IngestedMessageRepository,
    OutboundMessageRepository,
)
from app.services.ingestion.ingestion_gate import IngestionGate
from app.services.ledger.interaction_ledger import preview
from app.services.mail.mailbox import MailSender, MessageSendError
from app.services.messaging.whatsapp_client import WhatsAppClient
from app.services.pipeline.interaction_pipeline import InteractionPipeline

logger = get_logger(__name__)


@dataclass(slots=True)
class ReplyStats:
    replied: int = 0
    failed: int = 0
    deferred: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"replied": self.replied, "failed": self.failed, "deferred": self.deferred}


class EmailReplyProcessor:
    """Answers accepted, not-yet-replied emails of one mail account."""

    def __init__(
        self,
        pipeline: InteractionPipeline,
        messages: IngestedMessageRepository,
        outbound: OutboundMessageRepository,
        sender: MailSender,
        activity: ActivityLogger,
        batch_size: int = 50,
    ):
        self.pipeline = pipeline
        self.messages = messages
        self.outbound = outbound
        self.sender = sender
        self.activity = activity
        self.batch_size = batch_size

    async def process_account(self, account: MailAccount) -> ReplyStats:
        stats = ReplyStats()
        pending = await self.messages.list_unreplied(account.owner_id, Channel.EMAIL, self.batch_size)

        for message in pending:
            try:
                await self._reply(account, message)
                stats.replied += 1
            except MessageSendError as e:
                if e.recoverable:
                    stats.deferred += 1
                else:
                    await self.messages.mark_handled(message.id, DeliveryStatus.FAILED)
                    stats.failed += 1
                await self.activity.log(
                    "AutoReplyFailed",
                    ActivityStatus.ERROR,
                    owner_id=account.owner_id,
                    details={"record_id": message.id, "recipient": e.recipient, "error": str(e)},
                )
            except Exception as e:
                # Left unreplied so the next tick retries it
                stats.deferred += 1
                logger.error(
                    "Email processing failed",
                    owner_id=account.owner_id,
                    record_id=message.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self.activity.log(
                    "EmailProcessingError",
                    ActivityStatus.ERROR,
                    owner_id=account.owner_id,
                    details={"record_id": message.id, "error": str(e)},
                )

        if pending:
            logger.info("Email replies processed", owner_id=account.owner_id, **stats.to_dict())
        return stats

    async def _reply(self, account: MailAccount, message: InboundMessage) -> None:
        draft = await self.outbound.get_for_inbound(message.id)
        resent = draft is not None
        if draft is None:
            turn = await self.pipeline.handle_email(message)
            draft = await self.outbound.save_pending(
                OutboundMessage(
                    owner_id=account.owner_id,
                    transport=Channel.EMAIL,
                    recipient=message.sender_address,
                    body=turn.reply,
                    inbound_record_id=message.id,
                    meeting_id=turn.metadata.get("meeting_id"),
                )
            )
        elif draft.status == DeliveryStatus.SENT:
            # Sent on an earlier tick that stopped before marking the inbound row
            await self.messages.mark_handled(message.id, DeliveryStatus.REPLIED)
            return
        else:
            logger.info(
                "Resending saved reply", owner_id=account.owner_id, record_id=message.id, outbound_id=draft.id
            )

        try:
            external_id = await self.sender.send_reply(account, message, draft.body)
        except MessageSendError as e:
            if not e.recoverable:
                await self.outbound.mark_failed(draft.id, str(e))
            raise

        await self.outbound.mark_sent(draft.id, external_id)
        await self.messages.mark_handled(message.id, DeliveryStatus.REPLIED)
        await self.activity.log(
            "AutoReplyGenerated",
            ActivityStatus.SUCCESS,
            owner_id=account.owner_id,
            details={
                "record_id": message.id,
                "outbound_id": draft.id,
                "recipient": draft.recipient,
                "meeting_id": draft.meeting_id,
                "resent": resent,
                "preview": preview(draft.body),
            },
        )


class WhatsAppDelivery:
    """Handles one normalized WhatsApp webhook delivery end to end."""

    def __init__(
        self,
        pipeline: InteractionPipeline,
        gate: IngestionGate,
        messages: IngestedMessageRepository,
        outbound: OutboundMessageRepository,
        accounts: AccountRepository,
        client: WhatsAppClient,
    ):
        self.pipeline = pipeline
        self.gate = gate
        self.messages = messages
        self.outbound = outbound
        self.accounts = accounts
        self.client = client

    async def process(self, owner_id: str, batch: WebhookBatch) -> dict[str, Any]:
        """
        Apply status updates, then answer each accepted message.

        Returns:
            Counts of what the delivery carried and what was done with it
        """
        summary = {"messages": len(batch.messages), "accepted": 0, "replied": 0, "status_updates": 0}

        for update in batch.status_updates:
            if await self.outbound.update_status(Channel.WHATSAPP, update.external_id, update.status, update.error):
                summary["status_updates"] += 1
            else:
                logger.info("Status update for unknown outbound message", external_id=update.external_id)

        for message in batch.messages:
            if not await self.gate.accept(message):
                continue
            summary["accepted"] += 1
            if await self._reply(owner_id, message):
                summary["replied"] += 1

        return summary

    async def _reply(self, owner_id: str, message: InboundMessage) -> bool:
        account = await self.accounts.get_whatsapp_account(owner_id)
        if account is None:
            logger.warning("No WhatsApp account configured; message left unanswered", owner_id=owner_id)
            await self.messages.mark_handled(message.id, DeliveryStatus.FAILED)
            return False

        turn = await self.pipeline.handle(
            owner_id,
            Channel.WHATSAPP,
            message.sender,
            message.body,
            inbound_metadata={"message_id": message.message_id, "media_url": message.media_url},
        )

        try:
            external_id = await self.client.send_text(account, message.sender, turn.reply)
        except MessageSendError as e:
            await self.outbound.record(
                owner_id, Channel.WHATSAPP, message.sender, turn.reply, None, DeliveryStatus.FAILED, str(e)
            )
            return False

        await self.outbound.record(owner_id, Channel.WHATSAPP, message.sender, turn.reply, external_id)
        await self.messages.mark_handled(message.id, DeliveryStatus.REPLIED)
        return True
