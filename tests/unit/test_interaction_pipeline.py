"""
Tests for the cross-channel conversation turn.
"""

from datetime import UTC, datetime

import pytest

from app.models.domain.meeting_domain import SchedulingErrorCode
from app.models.domain.profile_domain import Channel, Direction
from app.services.calendar.meeting_scheduler import MeetingScheduler
from app.services.identity.identity_resolver import IdentityResolver
from app.services.ledger.interaction_ledger import InteractionLedger
from app.services.pipeline.interaction_pipeline import EMAIL_REQUIRED, InteractionPipeline
from app.services.scheduling.reply_messages import EMAIL_REQUIRED_MESSAGE, render_failure
from app.services.scheduling.scheduling_extractor import SchedulingExtractor
from tests.fakes import FakeIntegrationRepository, FakeResponder, fixed_clock, make_email

BOOKING_REPLY = (
    "Of course, let me book that for you.\n"
    '{"is_scheduling_request": true, "date_time": "2025-03-05T11:00:00", "email": "", '
    '"subject": "Pricing call", "duration_minutes": 30, "description": "Discuss plans"}'
)


@pytest.fixture
def responder():
    return FakeResponder()


@pytest.fixture
def integrations(integration):
    return FakeIntegrationRepository(integration)


@pytest.fixture
def pipeline(profile_repo, interaction_repo, meeting_repo, activity, calendar, tokens, integrations, responder):
    return InteractionPipeline(
        resolver=IdentityResolver(profile_repo, activity, clock=fixed_clock),
        ledger=InteractionLedger(interaction_repo, clock=fixed_clock),
        extractor=SchedulingExtractor(timezone="UTC", clock=fixed_clock),
        scheduler=MeetingScheduler(
            calendar, tokens, integrations, meeting_repo, activity, timezone="UTC", clock=fixed_clock
        ),
        responder=responder,
        timezone="UTC",
        business_name="Acme Dental",
        assistant_name="Jamie",
        clock=fixed_clock,
    )


@pytest.mark.asyncio
async def test_plain_turn_records_both_directions(pipeline, interaction_repo, responder):
    result = await pipeline.handle("acct-1", Channel.CHAT, "session-1", "What are your opening hours?")

    assert result.reply == responder.reply
    assert result.scheduling_requested is False
    assert [(row.direction, row.content) for row in interaction_repo.rows] == [
        (Direction.INBOUND, "What are your opening hours?"),
        (Direction.OUTBOUND, responder.reply),
    ]
    assert interaction_repo.rows[1].metadata["ai_generated"] is True
    assert "Acme Dental" in responder.calls[0]["system_prompt"]


@pytest.mark.asyncio
async def test_history_carries_over_to_next_turn(pipeline, responder):
    await pipeline.handle("acct-1", Channel.WHATSAPP, "15551234567", "Hi")
    await pipeline.handle("acct-1", Channel.WHATSAPP, "15551234567", "Are you open Saturday?")

    assert responder.calls[0]["history"] == []
    assert responder.calls[1]["history"] == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": responder.reply},
    ]


@pytest.mark.asyncio
async def test_booking_rewrites_reply(pipeline, responder, calendar, meeting_repo, interaction_repo):
    responder.reply = BOOKING_REPLY

    result = await pipeline.handle(
        "acct-1", Channel.EMAIL, "Ana Lima <ana@example.com>", "Can we talk tomorrow at 3pm?"
    )

    assert result.scheduling_requested is True
    assert result.meeting.success is True
    assert "https://meet.google.com/abc-defg-hij" in result.reply
    assert "is_scheduling_request" not in result.reply
    assert calendar.created[0]["attendees"] == ["ana@example.com"]
    assert calendar.created[0]["summary"] == "Pricing call"
    assert calendar.created[0]["start_time"] == datetime(2025, 3, 5, 11, 0, tzinfo=UTC)
    assert len(meeting_repo.rows) == 1
    outbound = interaction_repo.rows[-1]
    assert outbound.content == result.reply
    assert outbound.metadata["event_id"] == "evt-1"


@pytest.mark.asyncio
async def test_booking_without_any_email_asks_for_it(pipeline, responder, calendar, interaction_repo):
    responder.reply = BOOKING_REPLY

    result = await pipeline.handle("acct-1", Channel.WHATSAPP, "15551234567", "Book me a call tomorrow")

    assert result.reply == EMAIL_REQUIRED_MESSAGE
    assert result.meeting is None
    assert calendar.created == []
    assert interaction_repo.rows[-1].metadata["scheduling_error"] == EMAIL_REQUIRED


@pytest.mark.asyncio
async def test_attendee_email_enriches_phone_only_profile(pipeline, responder, profile_repo):
    responder.reply = BOOKING_REPLY.replace('"email": ""', '"email": "ana@example.com"')

    result = await pipeline.handle("acct-1", Channel.VOICE, "15551234567", "Let's meet tomorrow")

    assert result.meeting.success is True
    stored = profile_repo.rows[result.profile.id]
    assert stored.email == "ana@example.com"
    assert stored.phone == "15551234567"


@pytest.mark.asyncio
async def test_calendar_failure_reply_comes_from_result(pipeline, responder, tokens):
    responder.reply = BOOKING_REPLY
    tokens.configured = False

    result = await pipeline.handle("acct-1", Channel.EMAIL, "ana@example.com", "Can we meet?")

    assert result.reply == render_failure(SchedulingErrorCode.CALENDAR_NOT_CONFIGURED)
    assert result.to_dict()["meeting"]["error_code"] == "CALENDAR_NOT_CONFIGURED"


@pytest.mark.asyncio
async def test_declined_scheduling_object_is_hidden(pipeline, responder):
    responder.reply = 'We are open 9 to 5.\n{"is_scheduling_request": false}'

    result = await pipeline.handle("acct-1", Channel.CHAT, "session-1", "When are you open?")

    assert result.reply == "We are open 9 to 5."
    assert result.scheduling_requested is False


@pytest.mark.asyncio
async def test_ledger_outage_does_not_block_reply(pipeline, interaction_repo, responder):
    interaction_repo.fail_inserts = True
    interaction_repo.fail_reads = True

    result = await pipeline.handle("acct-1", Channel.CHAT, "session-1", "hello")

    assert result.reply == responder.reply


@pytest.mark.asyncio
async def test_email_turn_includes_subject(pipeline, responder, profile_repo):
    result = await pipeline.handle_email(make_email())

    assert responder.calls[0]["message"].startswith("Subject: Pricing question")
    assert profile_repo.rows[result.profile.id].email == "ana@example.com"
    assert profile_repo.rows[result.profile.id].last_interaction_channel == Channel.EMAIL
