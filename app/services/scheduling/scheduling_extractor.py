# app/services/scheduling/scheduling_extractor.py
"""
Scheduling intent extraction from generated reply text.

The responder is prompted to embed a JSON object such as

    {"is_scheduling_request": true, "date_time": "2025-03-04T15:00:00",
     "email": "ana@example.com", "subject": "Intro call", "duration_minutes": 30}

in its reply. The object is frequently malformed, so parsing runs an ordered
list of strategies: strict JSON first, then per-field patterns. Each strategy
returns Parsed or Unparseable; the first Parsed wins.
"""

import json
import re
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import (
    DEFAULT_DURATION_MINUTES,
    ParseOutcome,
    Parsed,
    SchedulingSignal,
    Unparseable,
)
from app.services.scheduling.datetime_policy import resolve_meeting_start

logger = get_logger(__name__)

SCHEDULING_KEYWORDS = (
    "schedule",
    "meeting",
    "appointment",
    "calendar",
    "book",
    "meet",
    "talk",
    "call",
    "zoom",
    "teams",
    "google meet",
)
FLAG_KEYS = ("is_scheduling_request", "schedule_meeting")
SCHEDULING_INTENTS = ("schedule_meeting", "scheduling", "book_meeting")
MIN_CLASSIFIER_CONFIDENCE = 0.7
_PAYLOAD_KEYS = {*FLAG_KEYS, "intent", "date_time", "dateTime"}

_FLAG_PATTERN = re.compile(r'"?(?:is_scheduling_request|schedule_meeting)"?\s*:\s*true\b', re.IGNORECASE)
_INTENT_PATTERN = re.compile(
    r'"?intent"?\s*:\s*"(?:schedule_meeting|scheduling|book_meeting)"', re.IGNORECASE
)
_CONFIDENCE_PATTERN = re.compile(r'"?confidence"?\s*:\s*"?(\d+(?:\.\d+)?)', re.IGNORECASE)

# String values may contain JSON escapes such as \" or \n
_JSON_STRING = r'"((?:[^"\\]|\\.)*)"'
_DATE_TIME_FIELD = re.compile(r'date_?time"?\s*:\s*' + _JSON_STRING, re.IGNORECASE)
_EMAIL_FIELD = re.compile(r'(?:attendee_)?email"?\s*:\s*' + _JSON_STRING, re.IGNORECASE)
_SUBJECT_FIELD = re.compile(r'subject"?\s*:\s*' + _JSON_STRING, re.IGNORECASE)
_DURATION_FIELD = re.compile(r'duration(?:_minutes)?"?\s*:\s*"?(\d+)', re.IGNORECASE)
_DESCRIPTION_FIELD = re.compile(r'description"?\s*:\s*' + _JSON_STRING, re.IGNORECASE)


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _duration(value: Any) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return DEFAULT_DURATION_MINUTES
    return minutes if minutes > 0 else DEFAULT_DURATION_MINUTES


def _email(value: Any) -> str | None:
    cleaned = _clean(value)
    return cleaned.lower() if cleaned and "@" in cleaned else None


class ParseStrategy(Protocol):
    name: str

    def parse(self, text: str, now: datetime, tz: tzinfo) -> ParseOutcome: ...


def _unescape(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except json.JSONDecodeError:
        return raw


def _has_true_flag(payload: dict) -> bool:
    return any(payload.get(key) is True for key in FLAG_KEYS)


def _payload_objects(text: str) -> list[tuple[dict, int, int]]:
    """Every decodable object that looks like a scheduling payload, with its span."""
    decoder = json.JSONDecoder()
    found = []
    position = text.find("{")
    while position != -1:
        try:
            candidate, end = decoder.raw_decode(text, position)
        except json.JSONDecodeError:
            candidate = None
        if isinstance(candidate, dict) and _PAYLOAD_KEYS.intersection(candidate):
            found.append((candidate, position, end))
            position = text.find("{", end)
        else:
            position = text.find("{", position + 1)
    return found


def _find_payload(text: str) -> tuple[dict, int, int] | None:
    """The first object with a true scheduling flag, else the first payload-like object."""
    objects = _payload_objects(text)
    if not objects:
        return None
    return next((found for found in objects if _has_true_flag(found[0])), objects[0])


def strip_payload(text: str) -> str:
    """Reply text with every embedded scheduling object removed."""
    objects = _payload_objects(text)
    if not objects:
        return text

    parts = []
    cursor = 0
    for _, start, end in objects:
        parts.append(text[cursor:start].strip())
        cursor = end
    parts.append(text[cursor:].strip())
    return "\n".join(part for part in parts if part)


class StrictJsonStrategy:
    """Decode the first well-formed JSON object embedded in the text."""

    name = "json"

    def parse(self, text: str, now: datetime, tz: tzinfo) -> ParseOutcome:
        found = _find_payload(text)
        if found is None:
            return Unparseable(raw_text=text, reason="no well-formed object")

        payload = found[0]
        is_scheduling = _has_true_flag(payload) or (
            str(payload.get("intent", "")).lower() in SCHEDULING_INTENTS
        )
        raw_date_time = _clean(payload.get("date_time") or payload.get("dateTime"))

        return Parsed(
            SchedulingSignal(
                is_scheduling=is_scheduling,
                date_time=resolve_meeting_start(raw_date_time, now, tz),
                duration_minutes=_duration(payload.get("duration_minutes", payload.get("duration"))),
                subject=_clean(payload.get("subject")),
                attendee_email=_email(payload.get("email") or payload.get("attendee_email")),
                description=_clean(payload.get("description")),
                raw_date_time=raw_date_time,
                source=self.name,
            )
        )


class FieldPatternStrategy:
    """Pull each field out with its own pattern; missing fields take defaults."""

    name = "fields"

    def _field(self, pattern: re.Pattern, text: str) -> str | None:
        match = pattern.search(text)
        return _clean(_unescape(match.group(1))) if match else None

    def parse(self, text: str, now: datetime, tz: tzinfo) -> ParseOutcome:
        raw_date_time = self._field(_DATE_TIME_FIELD, text)
        return Parsed(
            SchedulingSignal(
                is_scheduling=True,
                date_time=resolve_meeting_start(raw_date_time, now, tz),
                duration_minutes=_duration(self._field(_DURATION_FIELD, text)),
                subject=self._field(_SUBJECT_FIELD, text),
                attendee_email=_email(self._field(_EMAIL_FIELD, text)),
                description=self._field(_DESCRIPTION_FIELD, text),
                raw_date_time=raw_date_time,
                source=self.name,
            )
        )


class SchedulingExtractor:
    """Detects and parses scheduling requests embedded in generated text."""

    def __init__(
        self,
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
        strategies: list[ParseStrategy] | None = None,
    ):
        self.tz = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(UTC))
        self.strategies = strategies or [StrictJsonStrategy(), FieldPatternStrategy()]

    def has_scheduling_marker(self, text: str, inbound_message: str = "") -> bool:
        """
        True when the text explicitly flags a scheduling request, or carries a
        confident scheduling classification alongside scheduling vocabulary.
        """
        if _FLAG_PATTERN.search(text):
            return True

        if not _INTENT_PATTERN.search(text):
            return False
        confidence = _CONFIDENCE_PATTERN.search(text)
        if not confidence or float(confidence.group(1)) < MIN_CLASSIFIER_CONFIDENCE:
            return False

        vocabulary = f"{text} {inbound_message}".lower()
        return any(keyword in vocabulary for keyword in SCHEDULING_KEYWORDS)

    def parse(self, text: str) -> ParseOutcome:
        """Run the strategies in order and return the first Parsed outcome."""
        now = self._clock()
        outcome: ParseOutcome = Unparseable(raw_text=text, reason="no strategies")
        for strategy in self.strategies:
            outcome = strategy.parse(text, now, self.tz)
            if isinstance(outcome, Parsed):
                return outcome
            logger.debug("Scheduling parse strategy failed", strategy=strategy.name, reason=outcome.reason)
        return outcome

    def extract(self, generated_text: str | None, inbound_message: str = "") -> SchedulingSignal | None:
        """
        Extract a scheduling signal from generated text.

        Args:
            generated_text: Reply produced by the responder
            inbound_message: The message being answered, used for keyword matching

        Returns:
            SchedulingSignal, or None when there is no clear scheduling request
        """
        if not generated_text or not self.has_scheduling_marker(generated_text, inbound_message):
            return None

        outcome = self.parse(generated_text)
        if isinstance(outcome, Unparseable):
            logger.warning("Scheduling marker present but payload unparseable", reason=outcome.reason)
            return None

        signal = outcome.signal
        if not signal.is_scheduling:
            return None

        logger.info(
            "Scheduling request extracted",
            source=signal.source,
            date_time=signal.date_time.isoformat(),
            duration_minutes=signal.duration_minutes,
        )
        return signal
