"""
Tests for per-transport reply delivery.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from app.models.domain.message_domain import (
    DeliveryStatus,
    DeliveryStatusUpdate,
    InboundMessage,
    WebhookBatch,
)
from app.models.domain.profile_domain import Channel, Profile
from app.services.calendar.meeting_scheduler import MeetingScheduler
from app.services.identity.identity_resolver import IdentityResolver
from app.services.ingestion.deduplicator import MessageDeduplicator
from app.services.ingestion.ingestion_gate import IngestionGate
from app.services.ingestion.loop_guard import LoopGuard
from app.services.ledger.interaction_ledger import InteractionLedger
from app.services.mail.mailbox import MessageSendError
from app.services.pipeline.channel_delivery import EmailReplyProcessor, WhatsAppDelivery
from app.services.pipeline.interaction_pipeline import InteractionPipeline, TurnResult
from app.services.scheduling.scheduling_extractor import SchedulingExtractor
from tests.fakes import FIXED_NOW, FakeIntegrationRepository, FakeResponder, fixed_clock, make_email


@pytest.fixture
def pipeline():
    mock = AsyncMock()
    turn = TurnResult(reply="Happy to help!", profile=Profile(id="p-1", owner_id="acct-1"))
    mock.handle.return_value = turn
    mock.handle_email.return_value = turn
    return mock


@pytest.fixture
def sender():
    mock = AsyncMock()
    mock.send_reply.return_value = "sent-1"
    return mock


@pytest.fixture
def processor(pipeline, ingested_repo, outbound_repo, sender, activity):
    return EmailReplyProcessor(pipeline, ingested_repo, outbound_repo, sender, activity)


class TestEmailReplyProcessor:
    @pytest.mark.asyncio
    async def test_replies_and_marks_handled(self, processor, ingested_repo, outbound_repo, mail_account, activity):
        stored = await ingested_repo.insert(make_email())

        stats = await processor.process_account(mail_account)

        assert stats.to_dict() == {"replied": 1, "failed": 0, "deferred": 0}
        assert ingested_repo.handled[stored.id] == DeliveryStatus.REPLIED
        assert outbound_repo.records[0]["recipient"] == "ana@example.com"
        assert outbound_repo.records[0]["external_id"] == "sent-1"
        assert activity.types() == ["AutoReplyGenerated"]

    @pytest.mark.asyncio
    async def test_replied_messages_are_not_answered_twice(self, processor, ingested_repo, mail_account, sender):
        await ingested_repo.insert(make_email())

        await processor.process_account(mail_account)
        await processor.process_account(mail_account)

        assert sender.send_reply.await_count == 1

    @pytest.mark.asyncio
    async def test_recoverable_send_failure_is_deferred(self, processor, ingested_repo, mail_account, sender, activity):
        stored = await ingested_repo.insert(make_email())
        sender.send_reply.side_effect = MessageSendError("rate limited", recipient="ana@example.com")

        stats = await processor.process_account(mail_account)

        assert stats.deferred == 1
        assert stored.id not in ingested_repo.handled
        assert activity.types() == ["AutoReplyFailed"]

    @pytest.mark.asyncio
    async def test_permanent_send_failure_is_marked_failed(
        self, processor, ingested_repo, outbound_repo, mail_account, sender
    ):
        stored = await ingested_repo.insert(make_email())
        sender.send_reply.side_effect = MessageSendError("invalid recipient", recoverable=False)

        stats = await processor.process_account(mail_account)

        assert stats.failed == 1
        assert ingested_repo.handled[stored.id] == DeliveryStatus.FAILED
        assert outbound_repo.records[0]["status"] == DeliveryStatus.FAILED
        assert outbound_repo.records[0]["error"] == "invalid recipient"

    @pytest.mark.asyncio
    async def test_reply_sent_before_a_crash_is_not_sent_again(
        self, processor, ingested_repo, outbound_repo, mail_account, sender, pipeline
    ):
        stored = await ingested_repo.insert(make_email())
        outbound_repo.records.append(
            {
                "id": "out-1",
                "owner_id": "acct-1",
                "transport": Channel.EMAIL,
                "recipient": "ana@example.com",
                "body": "Happy to help!",
                "status": DeliveryStatus.SENT,
                "inbound_record_id": stored.id,
                "meeting_id": None,
                "external_id": "sent-0",
                "error": None,
            }
        )

        stats = await processor.process_account(mail_account)

        assert stats.replied == 1
        assert ingested_repo.handled[stored.id] == DeliveryStatus.REPLIED
        sender.send_reply.assert_not_awaited()
        pipeline.handle_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_leaves_message_for_retry(self, processor, ingested_repo, mail_account, pipeline, activity):
        await ingested_repo.insert(make_email())
        pipeline.handle_email.side_effect = RuntimeError("database unavailable")

        stats = await processor.process_account(mail_account)

        assert stats.deferred == 1
        assert len(await ingested_repo.list_unreplied("acct-1")) == 1
        assert activity.types() == ["EmailProcessingError"]


BOOKING_REPLY = (
    "Of course, let me book that for you.\n"
    '{"is_scheduling_request": true, "date_time": "2025-03-05T11:00:00", "email": "", '
    '"subject": "Pricing call", "duration_minutes": 30}'
)


@pytest.fixture
def responder():
    return FakeResponder(reply=BOOKING_REPLY)


@pytest.fixture
def booking_pipeline(profile_repo, interaction_repo, meeting_repo, activity, calendar, tokens, integration, responder):
    return InteractionPipeline(
        resolver=IdentityResolver(profile_repo, activity, clock=fixed_clock),
        ledger=InteractionLedger(interaction_repo, clock=fixed_clock),
        extractor=SchedulingExtractor(timezone="UTC", clock=fixed_clock),
        scheduler=MeetingScheduler(
            calendar,
            tokens,
            FakeIntegrationRepository(integration),
            meeting_repo,
            activity,
            timezone="UTC",
            clock=fixed_clock,
        ),
        responder=responder,
        timezone="UTC",
        clock=fixed_clock,
    )


class TestEmailReplyRetry:
    @pytest.mark.asyncio
    async def test_retry_resends_saved_reply_without_booking_again(
        self,
        booking_pipeline,
        ingested_repo,
        outbound_repo,
        interaction_repo,
        meeting_repo,
        calendar,
        responder,
        sender,
        activity,
        mail_account,
    ):
        stored = await ingested_repo.insert(make_email(body="Can we talk on Wednesday at 11?"))
        sender.send_reply.side_effect = [MessageSendError("rate limited", recipient="ana@example.com"), "sent-2"]
        processor = EmailReplyProcessor(booking_pipeline, ingested_repo, outbound_repo, sender, activity)

        first = await processor.process_account(mail_account)
        second = await processor.process_account(mail_account)

        assert first.deferred == 1
        assert second.replied == 1
        assert len(responder.calls) == 1
        assert len(calendar.created) == 1
        assert len(meeting_repo.rows) == 1
        assert len(interaction_repo.rows) == 2

        first_body = sender.send_reply.await_args_list[0].args[2]
        assert sender.send_reply.await_args_list[1].args[2] == first_body
        assert "https://meet.google.com/abc-defg-hij" in first_body

        assert len(outbound_repo.records) == 1
        assert outbound_repo.records[0]["status"] == DeliveryStatus.SENT
        assert outbound_repo.records[0]["external_id"] == "sent-2"
        assert outbound_repo.records[0]["meeting_id"] == next(iter(meeting_repo.rows))
        assert ingested_repo.handled[stored.id] == DeliveryStatus.REPLIED


@pytest.fixture
def whatsapp_client():
    mock = AsyncMock()
    mock.send_text.return_value = "wamid.out.1"
    return mock


@pytest.fixture
def delivery(pipeline, ingested_repo, outbound_repo, account_repo, activity, whatsapp_client):
    gate = IngestionGate(ingested_repo, account_repo, MessageDeduplicator(ingested_repo), LoopGuard(), activity)
    return WhatsAppDelivery(pipeline, gate, ingested_repo, outbound_repo, account_repo, whatsapp_client)


def _inbound(message_id="wamid.in.1"):
    return InboundMessage(
        owner_id="acct-1",
        transport=Channel.WHATSAPP,
        sender="15551234567",
        body="Do you take walk-ins?",
        message_id=message_id,
        received_at=FIXED_NOW - timedelta(seconds=30),
    )


class TestWhatsAppDelivery:
    @pytest.mark.asyncio
    async def test_message_is_answered(self, delivery, whatsapp_client, outbound_repo, ingested_repo, whatsapp_account):
        summary = await delivery.process("acct-1", WebhookBatch(messages=[_inbound()]))

        assert summary == {"messages": 1, "accepted": 1, "replied": 1, "status_updates": 0}
        whatsapp_client.send_text.assert_awaited_once_with(whatsapp_account, "15551234567", "Happy to help!")
        assert outbound_repo.records[0]["external_id"] == "wamid.out.1"
        assert list(ingested_repo.handled.values()) == [DeliveryStatus.REPLIED]

    @pytest.mark.asyncio
    async def test_redelivered_webhook_is_answered_once(self, delivery, whatsapp_client):
        await delivery.process("acct-1", WebhookBatch(messages=[_inbound()]))
        summary = await delivery.process("acct-1", WebhookBatch(messages=[_inbound()]))

        assert summary["accepted"] == 0
        assert whatsapp_client.send_text.await_count == 1

    @pytest.mark.asyncio
    async def test_status_updates_apply_to_outbound_records(self, delivery, outbound_repo):
        await outbound_repo.record("acct-1", Channel.WHATSAPP, "15551234567", "Hi", "wamid.out.1")
        batch = WebhookBatch(
            status_updates=[
                DeliveryStatusUpdate(external_id="wamid.out.1", status=DeliveryStatus.READ),
                DeliveryStatusUpdate(external_id="wamid.unknown", status=DeliveryStatus.DELIVERED),
            ]
        )

        summary = await delivery.process("acct-1", batch)

        assert summary["status_updates"] == 1
        assert outbound_repo.records[0]["status"] == DeliveryStatus.READ

    @pytest.mark.asyncio
    async def test_send_failure_is_recorded(self, delivery, whatsapp_client, outbound_repo, ingested_repo):
        whatsapp_client.send_text.side_effect = MessageSendError("outside 24h window", recoverable=False)

        summary = await delivery.process("acct-1", WebhookBatch(messages=[_inbound()]))

        assert summary["replied"] == 0
        assert outbound_repo.records[0]["status"] == DeliveryStatus.FAILED
        assert outbound_repo.records[0]["error"] == "outside 24h window"
        assert ingested_repo.handled == {}

    @pytest.mark.asyncio
    async def test_missing_account_skips_turn_and_send(
        self, delivery, account_repo, whatsapp_client, pipeline, ingested_repo, outbound_repo
    ):
        account_repo.whatsapp_account = None

        summary = await delivery.process("acct-1", WebhookBatch(messages=[_inbound()]))

        assert summary["accepted"] == 1
        assert summary["replied"] == 0
        pipeline.handle.assert_not_awaited()
        whatsapp_client.send_text.assert_not_awaited()
        assert outbound_repo.records == []
        assert list(ingested_repo.handled.values()) == [DeliveryStatus.FAILED]
