# app/services/messaging/whatsapp_client.py
"""
WhatsApp Cloud API client for outbound text messages.
"""

import asyncio

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import WhatsAppAccount
from app.services.mail.mailbox import MessageSendError

logger = get_logger(__name__)

REQUEST_TIMEOUT = 15  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 1
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class WhatsAppClient:
    """Sends text messages through the Cloud API and returns the external message id."""

    def __init__(self, api_base: str | None = None, timeout: float = REQUEST_TIMEOUT):
        self.api_base = (api_base or settings.WHATSAPP_API_BASE).rstrip("/")
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        await self._client.aclose()

    async def _post_with_retry(self, url: str, payload: dict, headers: dict) -> httpx.Response:
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.post(url, json=payload, headers=headers)
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise MessageSendError(f"WhatsApp API unreachable: {e}") from e
                await asyncio.sleep(BACKOFF_FACTOR * attempt)
                continue

            if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                logger.debug("WhatsApp API retrying", attempt=attempt, status_code=response.status_code)
                await asyncio.sleep(BACKOFF_FACTOR * attempt)
                continue
            return response
        raise MessageSendError("WhatsApp API retry loop exhausted")

    async def send_text(self, account: WhatsAppAccount, to: str, body: str) -> str:
        """
        Send a text message.

        Args:
            account: Business account credentials
            to: Recipient phone number, digits only
            body: Message text

        Returns:
            str: External message id assigned by the gateway

        Raises:
            MessageSendError: If the gateway rejects the message
        """
        url = f"{self.api_base}/{account.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": True, "body": body},
        }
        headers = {
            "Authorization": f"Bearer {account.access_token}",
            "Content-Type": "application/json",
        }

        response = await self._post_with_retry(url, payload, headers)
        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            error = (data.get("error") or {}).get("message", "unknown error")
            logger.error("WhatsApp send failed", status_code=response.status_code, error=error)
            raise MessageSendError(
                f"WhatsApp send failed (HTTP {response.status_code}): {error}",
                recipient=to,
                recoverable=response.status_code >= 500,
            )

        messages = data.get("messages") or []
        if not messages or not messages[0].get("id"):
            raise MessageSendError("WhatsApp response missing message id", recipient=to)

        external_id = messages[0]["id"]
        logger.info("WhatsApp message sent", to=to, external_id=external_id)
        return external_id
