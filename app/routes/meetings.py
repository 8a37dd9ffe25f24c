# app/routes/meetings.py
"""
Meeting API Routes
Booking, cancellation and availability on the owning account's calendar.

Booking failures are normal responses (success=false plus a typed error
code), not HTTP errors.
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.infrastructure.observability.logging import get_logger
from app.models.api.meeting_request import ScheduleMeetingRequest
from app.models.api.meeting_response import (
    AvailabilityResponse,
    MeetingResponse,
    ScheduleMeetingResponse,
)
from app.models.domain.meeting_domain import Meeting, MeetingRequest, SchedulingErrorCode
from app.routes.dependencies import get_account_id, get_container
from app.services.calendar.meeting_scheduler import SchedulingError
from app.services.container import ServiceContainer

logger = get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])

_ERROR_STATUS = {
    "MEETING_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    SchedulingErrorCode.CALENDAR_NOT_CONFIGURED.value: status.HTTP_409_CONFLICT,
    SchedulingErrorCode.CALENDAR_API_ERROR.value: status.HTTP_502_BAD_GATEWAY,
}


def _meeting_response(meeting: Meeting) -> MeetingResponse:
    return MeetingResponse(**meeting.to_dict())


def _http_error(error: SchedulingError) -> HTTPException:
    code = str(getattr(error.error_code, "value", error.error_code))
    return HTTPException(
        status_code=_ERROR_STATUS.get(code, status.HTTP_400_BAD_REQUEST),
        detail={"error_code": code, "message": str(error)},
    )


@router.post("", response_model=ScheduleMeetingResponse)
async def schedule_meeting(
    body: ScheduleMeetingRequest,
    account_id: str = Depends(get_account_id),
    container: ServiceContainer = Depends(get_container),
):
    """Book a meeting; returns a typed failure instead of an HTTP error."""
    result = await container.scheduler.schedule(
        account_id,
        MeetingRequest(
            attendee_email=body.attendee_email.lower(),
            subject=body.subject,
            date_time=body.date_time,
            duration_minutes=body.duration_minutes,
            description=body.description,
            profile_id=body.profile_id,
        ),
    )
    return ScheduleMeetingResponse(
        success=result.success,
        message=result.message,
        event_id=result.event_id,
        join_link=result.join_link,
        error_code=result.error_code.value if result.error_code else None,
        meeting=_meeting_response(result.meeting) if result.meeting else None,
    )


@router.post("/{meeting_id}/cancel", response_model=MeetingResponse)
async def cancel_meeting(
    meeting_id: str,
    account_id: str = Depends(get_account_id),
    container: ServiceContainer = Depends(get_container),
):
    """Cancel a meeting; the record is kept with status cancelled."""
    try:
        meeting = await container.scheduler.cancel(account_id, meeting_id)
    except SchedulingError as e:
        logger.warning("Meeting cancellation failed", meeting_id=meeting_id, error_code=str(e.error_code))
        raise _http_error(e) from e
    return _meeting_response(meeting)


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    day: date = Query(..., description="Day to check (YYYY-MM-DD)"),
    duration_minutes: int = Query(default=30, ge=5, le=480),
    account_id: str = Depends(get_account_id),
    container: ServiceContainer = Depends(get_container),
):
    """Free start times within business hours."""
    try:
        slots = await container.scheduler.available_slots(account_id, day, duration_minutes)
    except SchedulingError as e:
        raise _http_error(e) from e
    return AvailabilityResponse(day=day, duration_minutes=duration_minutes, slots=slots)
