# app/models/domain/scheduling_domain.py
"""
Scheduling signal types produced by the extractor.
"""

from dataclasses import dataclass
from datetime import datetime

DEFAULT_DURATION_MINUTES = 30


@dataclass(slots=True, frozen=True)
class SchedulingSignal:
    is_scheduling: bool
    date_time: datetime
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    subject: str | None = None
    attendee_email: str | None = None
    description: str | None = None
    raw_date_time: str | None = None
    source: str = "json"


@dataclass(slots=True, frozen=True)
class Parsed:
    signal: SchedulingSignal


@dataclass(slots=True, frozen=True)
class Unparseable:
    raw_text: str
    reason: str = ""


ParseOutcome = Parsed | Unparseable
