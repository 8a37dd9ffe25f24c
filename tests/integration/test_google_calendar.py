import re
from datetime import UTC, datetime

import pytest

from app.models.domain.meeting_domain import MeetingRequest, SchedulingErrorCode
from app.services import google_oauth_service
from app.services.calendar.google_client import GoogleCalendarError, GoogleCalendarService
from app.services.calendar.meeting_scheduler import MeetingScheduler
from app.services.google_oauth_service import GoogleOAuthError, GoogleTokenService
from tests.fakes import FakeIntegrationRepository, fixed_clock

TOKEN_URL = "https://oauth2.googleapis.com/token"
FREEBUSY_URL = "https://www.googleapis.com/calendar/v3/freeBusy"
EVENTS_URL = re.compile(r"https://www\.googleapis\.com/calendar/v3/calendars/primary/events\?.*")
EVENT_URL = re.compile(r"https://www\.googleapis\.com/calendar/v3/calendars/primary/events/evt-1\?.*")

START = datetime(2025, 3, 4, 15, 0, tzinfo=UTC)
END = datetime(2025, 3, 4, 15, 30, tzinfo=UTC)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(google_oauth_service, "BACKOFF_FACTOR", 0)


@pytest.fixture
async def calendar_service():
    service = GoogleCalendarService(backoff_factor=0)
    yield service
    await service.close()


@pytest.mark.asyncio
async def test_access_token_is_cached(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=TOKEN_URL,
        json={"access_token": "ya29.token", "expires_in": 3600, "token_type": "Bearer"},
    )
    tokens = GoogleTokenService("client-id", "client-secret")

    first = await tokens.get_access_token("refresh-1")
    second = await tokens.get_access_token("refresh-1")

    assert first == second == "ya29.token"
    request = httpx_mock.get_request()
    assert b"grant_type=refresh_token" in request.content
    assert b"refresh_token=refresh-1" in request.content


@pytest.mark.asyncio
async def test_token_refresh_rejected(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=TOKEN_URL,
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Token has been expired or revoked."},
    )

    with pytest.raises(GoogleOAuthError) as exc_info:
        await GoogleTokenService("client-id", "client-secret").get_access_token("refresh-1")

    assert exc_info.value.error_code == "invalid_grant"


@pytest.mark.asyncio
async def test_unconfigured_client_never_calls_google():
    with pytest.raises(GoogleOAuthError) as exc_info:
        await GoogleTokenService("", "").get_access_token("refresh-1")

    assert exc_info.value.error_code == "not_configured"


@pytest.mark.asyncio
async def test_free_busy_intervals(httpx_mock, calendar_service):
    httpx_mock.add_response(
        method="POST",
        url=FREEBUSY_URL,
        json={
            "calendars": {
                "primary": {"busy": [{"start": "2025-03-04T15:10:00Z", "end": "2025-03-04T15:40:00Z"}]}
            }
        },
    )

    busy = await calendar_service.query_free_busy("token", START, END)

    assert len(busy) == 1
    assert busy[0].start == datetime(2025, 3, 4, 15, 10, tzinfo=UTC)
    request = httpx_mock.get_request()
    assert request.headers["Authorization"] == "Bearer token"


@pytest.mark.asyncio
async def test_free_busy_retries_transient_status(httpx_mock, calendar_service):
    httpx_mock.add_response(method="POST", url=FREEBUSY_URL, status_code=503)
    httpx_mock.add_response(method="POST", url=FREEBUSY_URL, json={"calendars": {"primary": {"busy": []}}})

    assert await calendar_service.query_free_busy("token", START, END) == []
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_free_busy_calendar_errors(httpx_mock, calendar_service):
    httpx_mock.add_response(
        method="POST",
        url=FREEBUSY_URL,
        json={"calendars": {"primary": {"errors": [{"domain": "global", "reason": "notFound"}]}}},
    )

    with pytest.raises(GoogleCalendarError) as exc_info:
        await calendar_service.query_free_busy("token", START, END)

    assert exc_info.value.error_code == "notFound"


@pytest.mark.asyncio
async def test_create_event_requests_conference(httpx_mock, calendar_service):
    httpx_mock.add_response(
        method="POST",
        url=EVENTS_URL,
        json={
            "id": "evt-1",
            "start": {"dateTime": "2025-03-04T15:00:00Z"},
            "end": {"dateTime": "2025-03-04T15:30:00Z"},
            "conferenceData": {
                "entryPoints": [
                    {"entryPointType": "phone", "uri": "tel:+1-555-0100"},
                    {"entryPointType": "video", "uri": "https://meet.google.com/xyz-abcd-efg"},
                ]
            },
        },
    )

    event = await calendar_service.create_event(
        "token", "Intro call", START, END, attendees=["ana@example.com"]
    )

    assert event.id == "evt-1"
    assert event.join_link() == "https://meet.google.com/xyz-abcd-efg"
    request = httpx_mock.get_request()
    assert request.url.params["conferenceDataVersion"] == "1"
    assert request.url.params["sendUpdates"] == "all"


@pytest.mark.asyncio
async def test_create_event_error_mapping(httpx_mock, calendar_service):
    httpx_mock.add_response(
        method="POST",
        url=EVENTS_URL,
        status_code=403,
        json={"error": {"code": 403, "message": "Insufficient Permission"}},
    )

    with pytest.raises(GoogleCalendarError) as exc_info:
        await calendar_service.create_event("token", "Intro call", START, END)

    assert exc_info.value.status_code == 403
    assert "Insufficient Permission" in str(exc_info.value)


@pytest.mark.asyncio
async def test_delete_event_already_gone(httpx_mock, calendar_service):
    httpx_mock.add_response(method="DELETE", url=EVENT_URL, status_code=410)

    assert await calendar_service.delete_event("token", "evt-1") is True


@pytest.mark.asyncio
async def test_scheduler_books_through_google(httpx_mock, calendar_service, integration, meeting_repo, activity):
    httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"access_token": "ya29.token", "expires_in": 3600})
    httpx_mock.add_response(method="POST", url=FREEBUSY_URL, json={"calendars": {"primary": {"busy": []}}})
    httpx_mock.add_response(
        method="POST",
        url=EVENTS_URL,
        json={"id": "evt-9", "hangoutLink": "https://meet.google.com/aaa-bbbb-ccc"},
    )
    scheduler = MeetingScheduler(
        calendar_service,
        GoogleTokenService("client-id", "client-secret"),
        FakeIntegrationRepository(integration),
        meeting_repo,
        activity,
        clock=fixed_clock,
    )

    result = await scheduler.schedule(
        "acct-1",
        MeetingRequest(attendee_email="ana@example.com", subject="Intro call", date_time="2025-03-04T15:00:00Z"),
    )

    assert result.success is True
    assert result.join_link == "https://meet.google.com/aaa-bbbb-ccc"


@pytest.mark.asyncio
async def test_scheduler_reports_provider_outage(httpx_mock, calendar_service, integration, meeting_repo, activity):
    httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"access_token": "ya29.token", "expires_in": 3600})
    for _ in range(3):
        httpx_mock.add_response(method="POST", url=FREEBUSY_URL, status_code=500)
    scheduler = MeetingScheduler(
        calendar_service,
        GoogleTokenService("client-id", "client-secret"),
        FakeIntegrationRepository(integration),
        meeting_repo,
        activity,
        clock=fixed_clock,
    )

    result = await scheduler.schedule(
        "acct-1",
        MeetingRequest(attendee_email="ana@example.com", subject="Intro call", date_time="2025-03-04T15:00:00Z"),
    )

    assert result.success is False
    assert result.error_code == SchedulingErrorCode.CALENDAR_API_ERROR
