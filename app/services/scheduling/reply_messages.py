# app/services/scheduling/reply_messages.py
"""
User-facing text for scheduling outcomes.

Rendered only from the typed result; provider error text never reaches a contact.
"""

from datetime import datetime, tzinfo

from app.models.domain.meeting_domain import SchedulingErrorCode

EMAIL_REQUIRED_MESSAGE = (
    "I'd be happy to schedule a meeting for you, but I'll need your email address first. "
    "Could you please provide it?"
)

FAILURE_MESSAGES = {
    SchedulingErrorCode.CALENDAR_NOT_CONFIGURED: (
        "I'm sorry, I can't book meetings right now because our calendar isn't connected yet. "
        "Someone from our team will follow up with you to find a time."
    ),
    SchedulingErrorCode.INVALID_DATE_FORMAT: (
        "I couldn't quite understand the date and time you'd like. "
        "Could you tell me the day and time again, for example 'March 4 at 3pm'?"
    ),
    SchedulingErrorCode.PAST_DATE: (
        "That time has already passed. Could you suggest a time in the future?"
    ),
    SchedulingErrorCode.TIME_CONFLICT: (
        "Unfortunately that time is already taken. Could you suggest another time that works for you?"
    ),
    SchedulingErrorCode.CALENDAR_API_ERROR: (
        "I wasn't able to book the meeting because of a problem with our calendar. "
        "Please try again shortly, or let me know another time that suits you."
    ),
}


def format_meeting_time(start: datetime, tz: tzinfo) -> str:
    """e.g. 'Tuesday, March 4 at 3:00 PM'."""
    local = start.astimezone(tz)
    hour = local.strftime("%I").lstrip("0") or "12"
    return f"{local.strftime('%A, %B')} {local.day} at {hour}:{local.strftime('%M %p')}"


def render_success(start: datetime, join_link: str, tz: tzinfo) -> str:
    message = f"I've scheduled your meeting for {format_meeting_time(start, tz)}."
    if join_link:
        message += f" You can join with this link: {join_link}"
    else:
        message += " You'll receive a calendar invitation with the details shortly."
    return message


def render_failure(error_code: SchedulingErrorCode) -> str:
    return FAILURE_MESSAGES[error_code]
