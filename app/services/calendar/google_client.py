"""
Google Calendar API client.
Low-level freebusy queries and event insert/delete used by the meeting scheduler.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any

import httpx

from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import BusyInterval, CalendarEvent, parse_google_datetime

logger = get_logger(__name__)

# Google Calendar API configuration
CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleCalendarError(Exception):
    """Custom exception for Google Calendar API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class GoogleCalendarService:
    """
    Service for Google Calendar API operations.

    Handles availability checks and event creation/deletion with retry on
    transient HTTP statuses.
    """

    def __init__(self, timeout: float = REQUEST_TIMEOUT, backoff_factor: float = BACKOFF_FACTOR):
        self.backoff_factor = backoff_factor
        self._client = self._create_client(timeout)

    def _create_client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = self.backoff_factor * (2 ** (attempt - 1))
                    logger.debug(
                        "Calendar API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise GoogleCalendarError(f"Calendar API unreachable: {e}") from e
                backoff = self.backoff_factor * (2 ** (attempt - 1))
                logger.debug(
                    "Calendar API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise GoogleCalendarError("Calendar API retry loop exhausted")

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate Calendar API response.

        Raises:
            GoogleCalendarError: If response contains errors
        """
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Calendar API {operation} response", error=str(e))
                raise GoogleCalendarError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            error_data = {}

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_message = error_info.get("message", f"HTTP {response.status_code}")

        logger.error(
            f"Calendar API {operation} failed",
            status_code=response.status_code,
            error_message=error_message,
        )
        raise GoogleCalendarError(
            f"Calendar API {operation} failed: {error_message}",
            error_code=str(error_info.get("code", response.status_code)),
            status_code=response.status_code,
            response_data=error_data,
        )

    async def query_free_busy(
        self,
        access_token: str,
        start_time: datetime,
        end_time: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
    ) -> list[BusyInterval]:
        """
        Busy intervals for one calendar within [start_time, end_time].

        Raises:
            GoogleCalendarError: If the freebusy query fails
        """
        url = f"{CALENDAR_API_BASE_URL}/freeBusy"
        query_data = {
            "timeMin": start_time.isoformat(),
            "timeMax": end_time.isoformat(),
            "items": [{"id": calendar_id}],
        }

        response = await self._request_with_retry(
            "POST", url, headers=self._get_auth_headers(access_token), json=query_data
        )
        data = self._handle_api_response(response, "free_busy")

        calendar = data.get("calendars", {}).get(calendar_id, {})
        if calendar.get("errors"):
            raise GoogleCalendarError(
                "Freebusy query returned calendar errors",
                error_code=str(calendar["errors"][0].get("reason", "unknown")),
                response_data=data,
            )

        intervals = []
        for period in calendar.get("busy", []):
            start = parse_google_datetime(period.get("start"))
            end = parse_google_datetime(period.get("end"))
            if start and end:
                intervals.append(BusyInterval(start=start, end=end))

        logger.info(
            "Freebusy query completed",
            calendar_id=calendar_id,
            busy_periods_count=len(intervals),
        )
        return intervals

    async def create_event(
        self,
        access_token: str,
        summary: str,
        start_time: datetime,
        end_time: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
        description: str = "",
        timezone_str: str = "UTC",
        attendees: list[str] | None = None,
        with_conference: bool = True,
    ) -> CalendarEvent:
        """
        Create a calendar event, optionally requesting a Meet conference.

        Args:
            access_token: Valid OAuth access token
            summary: Event title
            start_time: Event start time
            end_time: Event end time
            calendar_id: Calendar ID (default: primary)
            description: Event description
            timezone_str: Timezone for the event
            attendees: Attendee email addresses (invitations are sent)
            with_conference: Ask Google to attach a Meet link

        Returns:
            CalendarEvent: Created event

        Raises:
            GoogleCalendarError: If creating the event fails
        """
        url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
        params: dict[str, Any] = {"sendUpdates": "all"}

        event_data: dict[str, Any] = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start_time.isoformat(), "timeZone": timezone_str},
            "end": {"dateTime": end_time.isoformat(), "timeZone": timezone_str},
        }
        if attendees:
            event_data["attendees"] = [{"email": email} for email in attendees]
        if with_conference:
            params["conferenceDataVersion"] = 1
            event_data["conferenceData"] = {
                "createRequest": {
                    "requestId": uuid.uuid4().hex,
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            }

        logger.info(
            "Creating calendar event",
            summary=summary,
            start_time=start_time.isoformat(),
            calendar_id=calendar_id,
        )

        response = await self._request_with_retry(
            "POST", url, headers=self._get_auth_headers(access_token), params=params, json=event_data
        )
        event = CalendarEvent(self._handle_api_response(response, "create_event"))

        logger.info("Event created successfully", event_id=event.id)
        return event

    async def delete_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> bool:
        """
        Delete a calendar event, notifying attendees.

        Returns:
            True if deleted (or already gone)

        Raises:
            GoogleCalendarError: If deleting event fails
        """
        url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events/{event_id}"
        response = await self._request_with_retry(
            "DELETE",
            url,
            headers=self._get_auth_headers(access_token),
            params={"sendUpdates": "all"},
        )

        if response.status_code in (204, 410):
            logger.info("Event deleted", event_id=event_id, status_code=response.status_code)
            return True

        self._handle_api_response(response, "delete_event")
        return True
