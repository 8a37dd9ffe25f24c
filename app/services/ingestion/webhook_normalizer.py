# app/services/ingestion/webhook_normalizer.py
"""
Normalization of message-gateway webhooks into InboundMessage / DeliveryStatusUpdate.

Supported deliveries:
- Cloud API: {"entry": [{"changes": [{"value": {"messages": [...], "statuses": [...]}}]}]}
- Gateway flat: {"from": ..., "message": ..., "media_url": ..., "timestamp": ...}
- Gateway nested: {"data": {"phone": ..., "message": ...}}
- Gateway form-encoded: {"data[wid]": ..., "data[message]": ..., "data[attachment]": ...}
"""

import re
from datetime import UTC, datetime
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.models.domain.message_domain import (
    DeliveryStatus,
    DeliveryStatusUpdate,
    InboundMessage,
    WebhookBatch,
)
from app.models.domain.profile_domain import Channel
from app.services.identity.contact_extraction import normalize_phone

logger = get_logger(__name__)

MEDIA_PLACEHOLDERS = {
    "image": "[Image]",
    "video": "[Video]",
    "audio": "[Audio]",
    "voice": "[Audio]",
    "document": "[Document]",
    "sticker": "[Sticker]",
}
STATUS_VALUES = {
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "failed": DeliveryStatus.FAILED,
}

_KEY_PARTS = re.compile(r"[^\[\]]+")


def unflatten_form_keys(payload: dict[str, Any]) -> dict[str, Any]:
    """Turn {"data[from]": "x"} into {"data": {"from": "x"}}; other keys pass through."""
    result: dict[str, Any] = {}
    for key, value in payload.items():
        parts = _KEY_PARTS.findall(key) if "[" in key else [key]
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
    return result


def parse_timestamp(value: Any) -> datetime | None:
    """Unix seconds (or milliseconds), numeric strings, or ISO 8601."""
    if value in (None, ""):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    if number > 1e12:
        number /= 1000
    try:
        return datetime.fromtimestamp(number, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _first(source: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def _international_phone(value: Any) -> str | None:
    # WhatsApp numbers always carry the country code, with or without the "+"
    if value is None:
        return None
    return normalize_phone("+" + str(value).strip().lstrip("+"))


def _clean_sender(value: Any) -> str | None:
    if value is None:
        return None
    # Web-client ids look like 15551234567@c.us
    return _international_phone(str(value).split("@", 1)[0])


def is_cloud_api_payload(payload: dict[str, Any]) -> bool:
    return isinstance(payload.get("entry"), list)


def gateway_account_ref(payload: dict[str, Any]) -> str | None:
    """The business phone number id a Cloud API delivery was addressed to."""
    if not is_cloud_api_payload(payload):
        return None
    for entry in payload["entry"]:
        for change in entry.get("changes", []):
            phone_number_id = (change.get("value", {}).get("metadata") or {}).get("phone_number_id")
            if phone_number_id:
                return str(phone_number_id)
    return None


class WebhookNormalizer:
    """Converts any supported webhook shape into a WebhookBatch."""

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(UTC))

    def normalize(self, payload: dict[str, Any], owner_id: str) -> WebhookBatch:
        if is_cloud_api_payload(payload):
            return self._normalize_cloud_api(payload, owner_id)
        return self._normalize_gateway(unflatten_form_keys(payload), owner_id)

    # ------------------------------------------------------------------
    # Cloud API
    # ------------------------------------------------------------------

    def _normalize_cloud_api(self, payload: dict[str, Any], owner_id: str) -> WebhookBatch:
        batch = WebhookBatch()
        for entry in payload.get("entry", []):
            for change in entry.get("changes", []):
                value = change.get("value", {})
                business_number = (value.get("metadata") or {}).get("display_phone_number", "")

                for raw in value.get("messages", []):
                    message = self._cloud_message(raw, owner_id, business_number)
                    if message:
                        batch.messages.append(message)

                for raw in value.get("statuses", []):
                    update = self._cloud_status(raw)
                    if update:
                        batch.status_updates.append(update)
        return batch

    def _cloud_message(
        self, raw: dict[str, Any], owner_id: str, business_number: str
    ) -> InboundMessage | None:
        sender = _clean_sender(raw.get("from"))
        if not sender:
            return None

        message_type = raw.get("type", "text")
        media_url = None
        if message_type == "text":
            body = (raw.get("text") or {}).get("body", "")
        elif message_type in MEDIA_PLACEHOLDERS:
            media = raw.get(message_type) or {}
            placeholder = MEDIA_PLACEHOLDERS[message_type]
            caption = media.get("caption")
            body = f"{placeholder} {caption}" if caption else placeholder
            media_url = media.get("link") or (f"media:{media['id']}" if media.get("id") else None)
        else:
            logger.info("Unsupported WhatsApp message type ignored", message_type=message_type)
            return None

        return InboundMessage(
            owner_id=owner_id,
            transport=Channel.WHATSAPP,
            message_id=raw.get("id"),
            sender=sender,
            recipient=_international_phone(business_number) or "",
            body=body,
            media_url=media_url,
            received_at=parse_timestamp(raw.get("timestamp")) or self._clock(),
        )

    def _cloud_status(self, raw: dict[str, Any]) -> DeliveryStatusUpdate | None:
        status = STATUS_VALUES.get(str(raw.get("status", "")).lower())
        if status is None or not raw.get("id"):
            return None
        errors = raw.get("errors") or []
        return DeliveryStatusUpdate(
            external_id=raw["id"],
            status=status,
            recipient=_clean_sender(raw.get("recipient_id")),
            timestamp=parse_timestamp(raw.get("timestamp")),
            error=(errors[0].get("title") or errors[0].get("message")) if errors else None,
        )

    # ------------------------------------------------------------------
    # Gateway shapes (flat, nested, form-encoded)
    # ------------------------------------------------------------------

    def _normalize_gateway(self, payload: dict[str, Any], owner_id: str) -> WebhookBatch:
        body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        batch = WebhookBatch()

        external_id = _first(body, "id", "message_id", "messageId")
        status = STATUS_VALUES.get(str(_first(body, "status") or "").lower())
        text = _first(body, "message", "text", "body")

        if status and external_id and text is None:
            batch.status_updates.append(
                DeliveryStatusUpdate(
                    external_id=str(external_id),
                    status=status,
                    recipient=_clean_sender(_first(body, "phone", "recipient", "to")),
                    timestamp=parse_timestamp(_first(body, "timestamp")),
                    error=_first(body, "error", "reason"),
                )
            )
            return batch

        sender = _clean_sender(_first(body, "from", "phone", "wid", "sender"))
        media_url = _first(body, "media_url", "attachment", "media")
        if not sender or (text is None and media_url is None):
            logger.info("Webhook carried no usable message", keys=sorted(body))
            return batch

        batch.messages.append(
            InboundMessage(
                owner_id=owner_id,
                transport=Channel.WHATSAPP,
                message_id=str(external_id) if external_id else None,
                sender=sender,
                body=str(text) if text is not None else "[Media]",
                media_url=str(media_url) if media_url else None,
                received_at=parse_timestamp(_first(body, "timestamp")) or self._clock(),
            )
        )
        return batch
