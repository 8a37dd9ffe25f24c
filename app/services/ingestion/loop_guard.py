# app/services/ingestion/loop_guard.py
"""
Reply-loop detection for email.

Each heuristic is a named predicate over a LoopCheck; the guard reports the
name of the first predicate that matches. New heuristics are added by
appending to the predicate list.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from app.models.domain.message_domain import InboundMessage, address_domain

AUTO_REPLY_PHRASES = (
    "ai receptionist",
    "this is an automated response",
    "auto-response",
    "auto-generated",
    "automated reply",
)
REPLY_SUBJECT_PREFIXES = ("re:",)
AUTO_RESPONDER_HEADER = "x-auto-responder"


@dataclass(slots=True, frozen=True)
class LoopCheck:
    """A message reduced to what the loop heuristics look at."""

    sender: str
    recipient: str
    subject: str
    body: str
    headers: dict[str, str]
    system_addresses: frozenset[str]

    @classmethod
    def from_message(cls, message: InboundMessage, system_addresses: Iterable[str]) -> "LoopCheck":
        return cls(
            sender=message.sender_address,
            recipient=message.recipient_address,
            subject=message.subject or "",
            body=message.body or "",
            headers={key.lower(): value for key, value in message.headers.items()},
            system_addresses=frozenset(address.lower() for address in system_addresses),
        )


LoopPredicate = Callable[[LoopCheck], bool]


def has_auto_reply_marker(check: LoopCheck) -> bool:
    subject = check.subject.strip().lower()
    if subject.startswith(REPLY_SUBJECT_PREFIXES):
        return True
    body = check.body.lower()
    return any(phrase in body for phrase in AUTO_REPLY_PHRASES)


def system_to_system(check: LoopCheck) -> bool:
    return check.sender in check.system_addresses and check.recipient in check.system_addresses


def sender_is_system_address(check: LoopCheck) -> bool:
    return check.sender in check.system_addresses


def sender_equals_recipient(check: LoopCheck) -> bool:
    return bool(check.sender) and check.sender == check.recipient


def same_domain_auto_reply(check: LoopCheck) -> bool:
    sender_domain = address_domain(check.sender)
    return (
        bool(sender_domain)
        and sender_domain == address_domain(check.recipient)
        and has_auto_reply_marker(check)
    )


def auto_submitted_header(check: LoopCheck) -> bool:
    """RFC 3834 Auto-Submitted, or our own responder header."""
    auto_submitted = check.headers.get("auto-submitted", "").strip().lower()
    if auto_submitted and auto_submitted != "no":
        return True
    return check.headers.get(AUTO_RESPONDER_HEADER, "").strip().lower() == "true"


DEFAULT_PREDICATES: list[tuple[str, LoopPredicate]] = [
    ("system_to_system", system_to_system),
    ("sender_is_system_address", sender_is_system_address),
    ("sender_equals_recipient", sender_equals_recipient),
    ("same_domain_auto_reply", same_domain_auto_reply),
    ("auto_submitted_header", auto_submitted_header),
]


class LoopGuard:
    """Evaluates the loop predicates in order."""

    def __init__(self, predicates: list[tuple[str, LoopPredicate]] | None = None):
        self.predicates = list(predicates or DEFAULT_PREDICATES)

    def check(self, message: InboundMessage, system_addresses: Iterable[str]) -> str | None:
        """
        Returns:
            Name of the first matching predicate, or None if the message is safe to answer
        """
        loop_check = LoopCheck.from_message(message, system_addresses)
        for name, predicate in self.predicates:
            if predicate(loop_check):
                return name
        return None
