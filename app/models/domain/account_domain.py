# app/models/domain/account_domain.py
"""
Transport credentials attached to an owning account.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True, frozen=True)
class MailAccount:
    id: str
    owner_id: str
    address: str
    refresh_token: str
    is_active: bool = True
    last_synced_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class WhatsAppAccount:
    owner_id: str
    phone_number_id: str
    access_token: str
    is_active: bool = True
