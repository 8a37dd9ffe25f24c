"""
Meeting scheduler: validate a booking request against calendar availability
and book it, or return a typed failure.

Every outcome ends up either as a Meeting row or as a system activity event.
Callers render user-facing text from MeetingResult, never from provider errors.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.infrastructure.activity import ActivityLogger, ActivityStatus
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import BusyInterval
from app.models.domain.meeting_domain import (
    CalendarIntegration,
    Meeting,
    MeetingRequest,
    MeetingResult,
    MeetingStatus,
    SchedulingErrorCode,
)
from app.repositories.meeting_repository import CalendarIntegrationRepository, MeetingRepository
from app.services.calendar.google_client import GoogleCalendarService
from app.services.google_oauth_service import GoogleTokenService
from app.services.scheduling.datetime_policy import parse_meeting_datetime
from app.services.scheduling.reply_messages import render_failure, render_success

logger = get_logger(__name__)

SLOT_STEP = timedelta(minutes=30)


class SchedulingError(Exception):
    """Raised by scheduler operations that do not return a MeetingResult."""

    def __init__(
        self,
        message: str,
        error_code: SchedulingErrorCode | str,
        owner_id: str | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.owner_id = owner_id
        self.recoverable = recoverable


class MeetingScheduler:
    """Books meetings on the owning account's calendar."""

    def __init__(
        self,
        calendar: GoogleCalendarService,
        tokens: GoogleTokenService,
        integrations: CalendarIntegrationRepository,
        meetings: MeetingRepository,
        activity: ActivityLogger,
        timezone: str = "UTC",
        conflict_padding: timedelta = timedelta(minutes=5),
        provider_timeout: float = 30.0,
        business_hours: tuple[time, time] = (time(9, 0), time(17, 0)),
        clock: Callable[[], datetime] | None = None,
    ):
        self.calendar = calendar
        self.tokens = tokens
        self.integrations = integrations
        self.meetings = meetings
        self.activity = activity
        self.tz = ZoneInfo(timezone)
        self.conflict_padding = conflict_padding
        self.provider_timeout = provider_timeout
        self.business_hours = business_hours
        self._clock = clock or (lambda: datetime.now(UTC))

    async def _access_token(self, integration: CalendarIntegration) -> str:
        return await asyncio.wait_for(
            self.tokens.get_access_token(integration.refresh_token), timeout=self.provider_timeout
        )

    async def _busy_intervals(
        self, integration: CalendarIntegration, access_token: str, start: datetime, end: datetime
    ) -> list[BusyInterval]:
        return await asyncio.wait_for(
            self.calendar.query_free_busy(access_token, start, end, calendar_id=integration.calendar_id),
            timeout=self.provider_timeout,
        )

    async def _fail(
        self,
        owner_id: str,
        request: MeetingRequest,
        error_code: SchedulingErrorCode,
        detail: str | None = None,
    ) -> MeetingResult:
        await self.activity.log(
            "MeetingSchedulingFailed",
            ActivityStatus.ERROR if error_code == SchedulingErrorCode.CALENDAR_API_ERROR else ActivityStatus.WARNING,
            owner_id=owner_id,
            details={
                "error_code": error_code.value,
                "attendee_email": request.attendee_email,
                "date_time": request.date_time,
                "detail": detail,
            },
        )
        return MeetingResult(
            success=False,
            message=render_failure(error_code),
            error_code=error_code,
            detail=detail,
        )

    async def schedule(self, owner_id: str, request: MeetingRequest) -> MeetingResult:
        """
        Validate and book a meeting.

        Args:
            owner_id: Owning account whose calendar receives the event
            request: Attendee, subject, ISO date-time, duration and description

        Returns:
            MeetingResult: success with the Meeting, or a typed failure
        """
        integration = await self.integrations.get_active(owner_id)
        if integration is None or not self.tokens.is_configured():
            return await self._fail(owner_id, request, SchedulingErrorCode.CALENDAR_NOT_CONFIGURED)

        start = parse_meeting_datetime(request.date_time, self.tz)
        if start is None:
            return await self._fail(owner_id, request, SchedulingErrorCode.INVALID_DATE_FORMAT)

        if start < self._clock():
            return await self._fail(owner_id, request, SchedulingErrorCode.PAST_DATE)

        end = start + timedelta(minutes=request.duration_minutes)
        window_start, window_end = start - self.conflict_padding, end + self.conflict_padding

        try:
            access_token = await self._access_token(integration)
            busy = await self._busy_intervals(integration, access_token, window_start, window_end)

            conflicts = [interval for interval in busy if interval.overlaps(window_start, window_end)]
            if conflicts:
                logger.info(
                    "Meeting conflicts with existing events",
                    owner_id=owner_id,
                    start_time=start.isoformat(),
                    conflict_count=len(conflicts),
                )
                return await self._fail(owner_id, request, SchedulingErrorCode.TIME_CONFLICT)

            event = await asyncio.wait_for(
                self.calendar.create_event(
                    access_token,
                    summary=request.subject,
                    start_time=start,
                    end_time=end,
                    calendar_id=integration.calendar_id,
                    description=request.description,
                    timezone_str=integration.timezone or str(self.tz),
                    attendees=[request.attendee_email],
                ),
                timeout=self.provider_timeout,
            )
        except Exception as e:
            logger.error(
                "Calendar provider failure while scheduling",
                owner_id=owner_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._fail(
                owner_id, request, SchedulingErrorCode.CALENDAR_API_ERROR, detail=f"{type(e).__name__}: {e}"
            )

        meeting = Meeting(
            owner_id=owner_id,
            profile_id=request.profile_id,
            attendee_email=request.attendee_email,
            subject=request.subject,
            start_time=start,
            end_time=end,
            external_event_id=event.id,
            join_link=event.join_link(),
            description=request.description,
        )
        try:
            meeting = await self.meetings.insert(meeting)
        except Exception as e:
            # The event exists on the calendar; keep the booking and flag the bookkeeping gap
            logger.error("Failed to store meeting record", owner_id=owner_id, event_id=event.id, error=str(e))

        await self.activity.log(
            "MeetingScheduled",
            ActivityStatus.SUCCESS,
            owner_id=owner_id,
            details={
                "meeting_id": meeting.id,
                "event_id": event.id,
                "attendee_email": request.attendee_email,
                "start_time": start.isoformat(),
                "has_join_link": bool(meeting.join_link),
            },
        )

        return MeetingResult(
            success=True,
            message=render_success(start, meeting.join_link, self.tz),
            meeting=meeting,
        )

    async def cancel(self, owner_id: str, meeting_id: str) -> Meeting:
        """
        Cancel a meeting: delete the calendar event and mark the record cancelled.

        Raises:
            SchedulingError: If the meeting is unknown or the calendar call fails
        """
        meeting = await self.meetings.get(owner_id, meeting_id)
        if meeting is None:
            raise SchedulingError("Meeting not found", error_code="MEETING_NOT_FOUND", owner_id=owner_id)
        if meeting.status == MeetingStatus.CANCELLED:
            return meeting

        integration = await self.integrations.get_active(owner_id)
        if meeting.external_event_id:
            if integration is None:
                raise SchedulingError(
                    "Calendar not configured",
                    error_code=SchedulingErrorCode.CALENDAR_NOT_CONFIGURED,
                    owner_id=owner_id,
                )
            try:
                access_token = await self._access_token(integration)
                await asyncio.wait_for(
                    self.calendar.delete_event(
                        access_token, meeting.external_event_id, calendar_id=integration.calendar_id
                    ),
                    timeout=self.provider_timeout,
                )
            except Exception as e:
                logger.error("Failed to delete calendar event", meeting_id=meeting_id, error=str(e))
                raise SchedulingError(
                    "Calendar provider failure",
                    error_code=SchedulingErrorCode.CALENDAR_API_ERROR,
                    owner_id=owner_id,
                    recoverable=True,
                ) from e

        cancelled = await self.meetings.set_status(meeting_id, MeetingStatus.CANCELLED) or meeting
        await self.activity.log(
            "MeetingCancelled",
            ActivityStatus.INFO,
            owner_id=owner_id,
            details={"meeting_id": meeting_id, "event_id": meeting.external_event_id},
        )
        return cancelled

    async def available_slots(
        self, owner_id: str, day: date, duration_minutes: int = 30
    ) -> list[datetime]:
        """
        Free start times within business hours on `day`.

        Raises:
            SchedulingError: If the calendar is not configured or the provider fails
        """
        integration = await self.integrations.get_active(owner_id)
        if integration is None or not self.tokens.is_configured():
            raise SchedulingError(
                "Calendar not configured",
                error_code=SchedulingErrorCode.CALENDAR_NOT_CONFIGURED,
                owner_id=owner_id,
            )

        opens = datetime.combine(day, self.business_hours[0], tzinfo=self.tz)
        closes = datetime.combine(day, self.business_hours[1], tzinfo=self.tz)
        duration = timedelta(minutes=duration_minutes)

        try:
            access_token = await self._access_token(integration)
            busy = await self._busy_intervals(integration, access_token, opens, closes)
        except Exception as e:
            raise SchedulingError(
                "Calendar provider failure",
                error_code=SchedulingErrorCode.CALENDAR_API_ERROR,
                owner_id=owner_id,
                recoverable=True,
            ) from e

        now = self._clock()
        slots = []
        slot = opens
        while slot + duration <= closes:
            if slot >= now and not any(interval.overlaps(slot, slot + duration) for interval in busy):
                slots.append(slot)
            slot += SLOT_STEP
        return slots
