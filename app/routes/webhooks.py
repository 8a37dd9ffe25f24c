# app/routes/webhooks.py
"""
Message-gateway webhooks.

GET answers the subscription handshake; POST accepts JSON or form-encoded
deliveries (inbound messages and delivery status updates).
"""

import json
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.api.channel_response import WebhookAckResponse
from app.routes.dependencies import get_account_id, get_container
from app.services.container import ServiceContainer
from app.services.ingestion.webhook_normalizer import gateway_account_ref

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.get("/whatsapp", response_class=PlainTextResponse)
async def verify_whatsapp_webhook(
    mode: str | None = Query(default=None, alias="hub.mode"),
    verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
):
    """Echo the challenge when the verify token matches."""
    expected = settings.WHATSAPP_VERIFY_TOKEN
    if mode == "subscribe" and expected and verify_token == expected and challenge is not None:
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(challenge)

    logger.warning("WhatsApp webhook verification rejected", mode=mode)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


async def _read_payload(request: Request) -> dict:
    raw = await request.body()
    content_type = request.headers.get("content-type", "")
    try:
        if "application/x-www-form-urlencoded" in content_type:
            return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
        payload = json.loads(raw or b"{}")
    except (UnicodeDecodeError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed payload") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payload must be an object")
    return payload


@router.post("/whatsapp", response_model=WebhookAckResponse)
async def receive_whatsapp_webhook(
    request: Request,
    account_id: str = Depends(get_account_id),
    container: ServiceContainer = Depends(get_container),
):
    """Normalize a delivery, apply status updates and answer new messages."""
    payload = await _read_payload(request)

    owner_id = account_id
    phone_number_id = gateway_account_ref(payload)
    if phone_number_id:
        owner_id = await container.accounts.find_owner_by_phone_number_id(phone_number_id) or account_id

    batch = container.normalizer.normalize(payload, owner_id)
    if batch.is_empty():
        return WebhookAckResponse()

    try:
        summary = await container.whatsapp.process(owner_id, batch)
    except Exception as e:
        logger.error("WhatsApp webhook processing failed", owner_id=owner_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process webhook"
        ) from e
    return WebhookAckResponse(**summary)
