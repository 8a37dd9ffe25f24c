# app/services/identity/contact_extraction.py
"""
Pattern-based extraction of identifying details from message text.
"""

import re

import phonenumbers

from app.config import settings
from app.models.domain.profile_domain import ContactDetails

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_PATTERN = re.compile(r"(?<!\w)(?:\+\d{1,3}[-\s]?)?\(?\d{3}\)?[-\s]?\d{3}[-\s]?\d{4}\b")
NAME_PATTERN = re.compile(
    r"\b(?:my name is|i am|i'm|this is)\s+([A-Z][a-z]+(?:\s[A-Z][a-z]+){1,3})\b",
    re.IGNORECASE,
)
_NAME_WORD = re.compile(r"[A-Z][a-z]+")


def normalize_email(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().lower()
    return cleaned or None


def normalize_phone(value: str | None, region: str | None = None) -> str | None:
    """
    Normalize a phone number to E.164 digits without the leading '+'.

    Numbers written without a country code are read in `region`, which
    defaults to DEFAULT_PHONE_REGION. Text that phonenumbers cannot parse
    as a possible number keeps its bare digits.
    """
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    if not digits:
        return None

    try:
        parsed = phonenumbers.parse(value, region or settings.DEFAULT_PHONE_REGION)
    except phonenumbers.NumberParseException:
        return digits
    if not phonenumbers.is_possible_number(parsed):
        return digits
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164).lstrip("+")


def _extract_name(text: str) -> str | None:
    for match in NAME_PATTERN.finditer(text):
        # The phrase is case-insensitive but the name itself must be capitalized,
        # so keep only the leading run of capitalized words
        name_words = []
        for word in match.group(1).split():
            if not _NAME_WORD.fullmatch(word):
                break
            name_words.append(word)
        if len(name_words) >= 2:
            return " ".join(name_words)
    return None


def extract_contact_details(text: str | None) -> ContactDetails:
    """
    Extract email, phone and self-introduced name from free-form text.

    Args:
        text: Raw message content

    Returns:
        ContactDetails with normalized values (any may be None)
    """
    if not text:
        return ContactDetails()

    email_match = EMAIL_PATTERN.search(text)
    phone_match = PHONE_PATTERN.search(text)

    return ContactDetails(
        email=normalize_email(email_match.group(0)) if email_match else None,
        phone=normalize_phone(phone_match.group(0)) if phone_match else None,
        name=_extract_name(text),
    )
