"""
ActivityLogger - operator-facing record of pipeline outcomes.

Scheduler ticks, loop suppressions, auto-replies and scheduling results are
written here so operators can alert on them. Critical events (repeated sync
failures) carry their own status so they can be filtered separately from
ordinary errors.

Usage:
    await activity_logger.log(
        owner_id=owner_id,
        event_type="EmailLoopPrevented",
        status=ActivityStatus.INFO,
        details={"sender": sender, "reason": "sender_equals_recipient"},
    )

Design Principles:
- Write to structured logs first, then the database
- Never fail the caller if the database write fails
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ActivityStatus(StrEnum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_LOG_METHODS = {
    ActivityStatus.SUCCESS: "info",
    ActivityStatus.INFO: "info",
    ActivityStatus.WARNING: "warning",
    ActivityStatus.ERROR: "error",
    ActivityStatus.CRITICAL: "critical",
}


class ActivityLogger:
    """Writes system activity events to structlog and the system_activity table."""

    async def log(
        self,
        event_type: str,
        status: ActivityStatus = ActivityStatus.INFO,
        owner_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """
        Record a system activity event.

        Args:
            event_type: Event name (e.g. "ScheduledEmailSync")
            status: Severity of the event
            owner_id: Owning account, when the event is account-scoped
            details: JSON-serializable context

        Returns:
            True if persisted, False if the database write failed (never raises)
        """
        details = details or {}
        log_method = getattr(logger, _LOG_METHODS[status])
        log_method(
            "System activity",
            activity_event=event_type,
            activity_status=status.value,
            owner_id=owner_id,
            **details,
        )

        try:
            await execute_query(
                """
                INSERT INTO system_activity (owner_id, event_type, status, details, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (owner_id, event_type, status.value, Jsonb(details), datetime.now(UTC)),
            )
            return True

        except Exception as e:
            logger.error(
                "Failed to write system activity to database",
                error=str(e),
                error_type=type(e).__name__,
                activity_event=event_type,
                owner_id=owner_id,
            )
            return False
