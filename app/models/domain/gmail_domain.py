# app/models/domain/gmail_domain.py
"""
Gmail Domain Models
Parses Gmail API message resources into the normalized inbound shape.
"""

import base64
from datetime import UTC, datetime

from app.models.domain.message_domain import InboundMessage
from app.models.domain.profile_domain import Channel


class GmailMessage:
    """Domain model for a Gmail API message resource."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.thread_id = data.get("threadId")
        self.label_ids = data.get("labelIds", [])
        self.snippet = data.get("snippet", "")
        self.internal_date = data.get("internalDate")
        self.payload = data.get("payload", {})
        self.raw_data = data

        self._parse_headers()
        self._parse_body()

    def _parse_headers(self):
        headers = self.payload.get("headers", [])
        self.headers = {h["name"].lower(): h["value"] for h in headers}

        self.subject = self.headers.get("subject", "")
        self.sender = self.headers.get("from", "")
        self.recipient = self.headers.get("to", "")
        self.message_id = self.headers.get("message-id") or None
        self.in_reply_to = self.headers.get("in-reply-to") or None

    def _parse_body(self):
        self.body_text = ""
        self.body_html = ""

        if not self.payload:
            return

        if self.payload.get("body", {}).get("data"):
            self.body_text = self._decode_base64_data(self.payload["body"]["data"])
        elif self.payload.get("parts"):
            self._parse_multipart_body(self.payload["parts"])

    def _parse_multipart_body(self, parts: list):
        for part in parts:
            mime_type = part.get("mimeType", "")
            body_data = part.get("body", {}).get("data")

            if mime_type == "text/plain" and body_data and not self.body_text:
                self.body_text = self._decode_base64_data(body_data)
            elif mime_type == "text/html" and body_data and not self.body_html:
                self.body_html = self._decode_base64_data(body_data)
            elif mime_type.startswith("multipart/"):
                self._parse_multipart_body(part.get("parts", []))

    def _decode_base64_data(self, data: str) -> str:
        """Decode base64 URL-safe encoded data."""
        try:
            decoded_bytes = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
            return decoded_bytes.decode("utf-8", errors="ignore")
        except (ValueError, TypeError):
            return ""

    def is_unread(self) -> bool:
        return "UNREAD" in self.label_ids

    def get_received_datetime(self) -> datetime:
        """Received time from internalDate (epoch milliseconds), else now."""
        if self.internal_date:
            try:
                return datetime.fromtimestamp(int(self.internal_date) / 1000, tz=UTC)
            except (ValueError, OSError):
                pass
        return datetime.now(UTC)

    def to_inbound_message(self, owner_id: str) -> InboundMessage:
        """Normalize into the transport-independent inbound shape."""
        return InboundMessage(
            owner_id=owner_id,
            transport=Channel.EMAIL,
            # Prefer the RFC 5322 Message-ID; fall back to Gmail's own id
            message_id=self.message_id or self.id,
            sender=self.sender,
            recipient=self.recipient,
            subject=self.subject,
            body=self.body_text or self.snippet,
            received_at=self.get_received_datetime(),
            in_reply_to=self.in_reply_to,
            headers=self.headers,
            provider_ref=self.id,
        )
