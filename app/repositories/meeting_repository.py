# app/repositories/meeting_repository.py
"""
Meeting records and the calendar integration lookup used when booking.
"""

from app.db.helpers import fetch_one, is_uuid, with_db_retry
from app.models.domain.meeting_domain import CalendarIntegration, Meeting, MeetingStatus


class MeetingRepository:
    """Postgres-backed meeting storage."""

    async def insert(self, meeting: Meeting) -> Meeting:
        row = await fetch_one(
            """
            INSERT INTO meetings (
                owner_id, profile_id, attendee_email, subject, start_time, end_time,
                status, external_event_id, join_link, description
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                meeting.owner_id,
                meeting.profile_id,
                meeting.attendee_email,
                meeting.subject,
                meeting.start_time,
                meeting.end_time,
                meeting.status.value,
                meeting.external_event_id,
                meeting.join_link,
                meeting.description,
            ),
        )
        return Meeting.from_row(row)

    async def get(self, owner_id: str, meeting_id: str) -> Meeting | None:
        if not is_uuid(meeting_id):
            return None
        row = await fetch_one(
            "SELECT * FROM meetings WHERE owner_id = %s AND id = %s",
            (owner_id, meeting_id),
        )
        return Meeting.from_row(row) if row else None

    async def set_status(self, meeting_id: str, status: MeetingStatus) -> Meeting | None:
        row = await fetch_one(
            "UPDATE meetings SET status = %s, updated_at = NOW() WHERE id = %s RETURNING *",
            (status.value, meeting_id),
        )
        return Meeting.from_row(row) if row else None


class CalendarIntegrationRepository:
    """Per-account calendar credentials."""

    @with_db_retry(max_retries=2)
    async def get_active(self, owner_id: str) -> CalendarIntegration | None:
        row = await fetch_one(
            """
            SELECT owner_id, calendar_id, refresh_token, is_active, timezone
            FROM calendar_integrations
            WHERE owner_id = %s AND is_active = true
            """,
            (owner_id,),
        )
        if not row or not row.get("refresh_token"):
            return None
        return CalendarIntegration(
            owner_id=row["owner_id"],
            refresh_token=row["refresh_token"],
            calendar_id=row.get("calendar_id") or "primary",
            is_active=row["is_active"],
            timezone=row.get("timezone"),
        )
