"""
Tests for meeting booking, cancellation and availability.
"""

from datetime import UTC, date, datetime, timedelta

import pytest

from app.models.domain.calendar_domain import BusyInterval
from app.models.domain.meeting_domain import MeetingRequest, MeetingStatus, SchedulingErrorCode
from app.services.calendar.google_client import GoogleCalendarError
from app.services.calendar.meeting_scheduler import MeetingScheduler, SchedulingError
from tests.fakes import FakeIntegrationRepository, fixed_clock

START = datetime(2025, 3, 4, 15, 0, tzinfo=UTC)


def _request(date_time="2025-03-04T15:00:00", **overrides):
    fields = {
        "attendee_email": "ana@example.com",
        "subject": "Intro call",
        "date_time": date_time,
        "duration_minutes": 30,
        "description": "Pricing discussion",
    }
    fields.update(overrides)
    return MeetingRequest(**fields)


def _busy(start_offset_minutes, end_offset_minutes):
    return BusyInterval(
        start=START + timedelta(minutes=start_offset_minutes),
        end=START + timedelta(minutes=end_offset_minutes),
    )


@pytest.fixture
def integrations(integration):
    return FakeIntegrationRepository(integration)


@pytest.fixture
def scheduler(calendar, tokens, integrations, meeting_repo, activity):
    return MeetingScheduler(
        calendar=calendar,
        tokens=tokens,
        integrations=integrations,
        meetings=meeting_repo,
        activity=activity,
        timezone="UTC",
        clock=fixed_clock,
    )


class TestSchedule:
    @pytest.mark.asyncio
    async def test_books_free_slot(self, scheduler, calendar, meeting_repo, activity):
        result = await scheduler.schedule("acct-1", _request())

        assert result.success is True
        assert result.event_id == "evt-1"
        assert result.join_link == "https://meet.google.com/abc-defg-hij"
        assert "https://meet.google.com/abc-defg-hij" in result.message
        assert calendar.created[0]["start_time"] == START
        assert calendar.created[0]["end_time"] == START + timedelta(minutes=30)
        assert calendar.created[0]["attendees"] == ["ana@example.com"]
        assert len(meeting_repo.rows) == 1
        assert activity.types() == ["MeetingScheduled"]

    @pytest.mark.asyncio
    async def test_event_without_conference_has_empty_join_link(self, scheduler, calendar):
        calendar.event_data = {"id": "evt-2"}

        result = await scheduler.schedule("acct-1", _request())

        assert result.success is True
        assert result.join_link == ""
        assert "calendar invitation" in result.message

    @pytest.mark.asyncio
    async def test_overlapping_event_is_a_conflict(self, scheduler, calendar, meeting_repo):
        calendar.busy = [_busy(10, 40)]

        result = await scheduler.schedule("acct-1", _request())

        assert result.success is False
        assert result.error_code == SchedulingErrorCode.TIME_CONFLICT
        assert calendar.created == []
        assert meeting_repo.rows == {}

    @pytest.mark.asyncio
    async def test_event_inside_padding_is_a_conflict(self, scheduler, calendar):
        calendar.busy = [_busy(-30, -3)]

        result = await scheduler.schedule("acct-1", _request())

        assert result.error_code == SchedulingErrorCode.TIME_CONFLICT

    @pytest.mark.asyncio
    async def test_event_ending_at_padding_edge_is_not_a_conflict(self, scheduler, calendar):
        calendar.busy = [_busy(-30, -5), _busy(35, 60)]

        result = await scheduler.schedule("acct-1", _request())

        assert result.success is True

    @pytest.mark.asyncio
    async def test_missing_integration(self, calendar, tokens, meeting_repo, activity):
        scheduler = MeetingScheduler(
            calendar, tokens, FakeIntegrationRepository(None), meeting_repo, activity, clock=fixed_clock
        )

        result = await scheduler.schedule("acct-1", _request())

        assert result.error_code == SchedulingErrorCode.CALENDAR_NOT_CONFIGURED
        assert activity.of_type("MeetingSchedulingFailed")[0]["details"]["error_code"] == "CALENDAR_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_unconfigured_oauth_client(self, scheduler, tokens):
        tokens.configured = False

        result = await scheduler.schedule("acct-1", _request())

        assert result.error_code == SchedulingErrorCode.CALENDAR_NOT_CONFIGURED
        assert tokens.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["next tuesday", "", "2025-03-04"])
    async def test_invalid_date(self, scheduler, calendar, value):
        result = await scheduler.schedule("acct-1", _request(date_time=value))

        assert result.error_code == SchedulingErrorCode.INVALID_DATE_FORMAT
        assert calendar.created == []

    @pytest.mark.asyncio
    async def test_past_date(self, scheduler):
        result = await scheduler.schedule("acct-1", _request(date_time="2025-03-01T10:00:00"))

        assert result.error_code == SchedulingErrorCode.PAST_DATE

    @pytest.mark.asyncio
    async def test_provider_failure_is_reported_without_provider_text(self, scheduler, calendar, activity):
        calendar.error = GoogleCalendarError("Calendar API free_busy failed: backendError")

        result = await scheduler.schedule("acct-1", _request())

        assert result.error_code == SchedulingErrorCode.CALENDAR_API_ERROR
        assert "backendError" not in result.message
        assert "backendError" in result.detail
        assert activity.of_type("MeetingSchedulingFailed")[0]["status"] == "error"

    @pytest.mark.asyncio
    async def test_meeting_store_failure_keeps_booking(self, scheduler, meeting_repo):
        async def broken_insert(meeting):
            raise RuntimeError("database unavailable")

        meeting_repo.insert = broken_insert

        result = await scheduler.schedule("acct-1", _request())

        assert result.success is True
        assert result.event_id == "evt-1"


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_deletes_event(self, scheduler, calendar, meeting_repo, activity):
        booked = await scheduler.schedule("acct-1", _request())

        cancelled = await scheduler.cancel("acct-1", booked.meeting.id)

        assert cancelled.status == MeetingStatus.CANCELLED
        assert calendar.deleted == ["evt-1"]
        assert "MeetingCancelled" in activity.types()

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, scheduler, calendar):
        booked = await scheduler.schedule("acct-1", _request())

        await scheduler.cancel("acct-1", booked.meeting.id)
        await scheduler.cancel("acct-1", booked.meeting.id)

        assert calendar.deleted == ["evt-1"]

    @pytest.mark.asyncio
    async def test_cancel_unknown_meeting(self, scheduler):
        with pytest.raises(SchedulingError) as exc_info:
            await scheduler.cancel("acct-1", "missing")

        assert exc_info.value.error_code == "MEETING_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_cancel_provider_failure(self, scheduler, calendar):
        booked = await scheduler.schedule("acct-1", _request())
        calendar.error = GoogleCalendarError("boom")

        with pytest.raises(SchedulingError) as exc_info:
            await scheduler.cancel("acct-1", booked.meeting.id)

        assert exc_info.value.error_code == SchedulingErrorCode.CALENDAR_API_ERROR
        assert exc_info.value.recoverable is True


class TestAvailableSlots:
    @pytest.mark.asyncio
    async def test_busy_block_removes_slots(self, scheduler, calendar):
        calendar.busy = [
            BusyInterval(
                start=datetime(2025, 3, 4, 10, 0, tzinfo=UTC),
                end=datetime(2025, 3, 4, 11, 0, tzinfo=UTC),
            )
        ]

        slots = await scheduler.available_slots("acct-1", date(2025, 3, 4))

        hours = [(slot.hour, slot.minute) for slot in slots]
        assert (9, 30) in hours
        assert (10, 0) not in hours
        assert (10, 30) not in hours
        assert (11, 0) in hours
        assert hours[-1] == (16, 30)
        assert len(slots) == 14

    @pytest.mark.asyncio
    async def test_past_slots_are_skipped(self, scheduler):
        slots = await scheduler.available_slots("acct-1", date(2025, 3, 3))

        assert slots[0] == datetime(2025, 3, 3, 12, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_requires_calendar(self, scheduler, tokens):
        tokens.configured = False

        with pytest.raises(SchedulingError) as exc_info:
            await scheduler.available_slots("acct-1", date(2025, 3, 4))

        assert exc_info.value.error_code == SchedulingErrorCode.CALENDAR_NOT_CONFIGURED
