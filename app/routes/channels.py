# app/routes/channels.py
"""
Channel API Routes
Live-chat and voice-transcript entry points into the conversation pipeline.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.infrastructure.observability.logging import get_logger
from app.models.api.channel_request import ChatMessageRequest, VoiceTranscriptRequest
from app.models.api.channel_response import MeetingOutcomeResponse, TurnResponse
from app.models.domain.profile_domain import Channel
from app.routes.dependencies import get_account_id, get_container
from app.services.container import ServiceContainer
from app.services.pipeline.interaction_pipeline import TurnResult

logger = get_logger(__name__)

router = APIRouter(prefix="/channels", tags=["channels"])


def _turn_response(result: TurnResult) -> TurnResponse:
    meeting = None
    if result.meeting:
        meeting = MeetingOutcomeResponse(
            success=result.meeting.success,
            message=result.meeting.message,
            event_id=result.meeting.event_id,
            join_link=result.meeting.join_link,
            error_code=result.meeting.error_code.value if result.meeting.error_code else None,
        )
    return TurnResponse(
        reply=result.reply,
        profile_id=result.profile.id,
        scheduling_requested=result.scheduling_requested,
        meeting=meeting,
    )


@router.post("/chat/messages", response_model=TurnResponse)
async def post_chat_message(
    body: ChatMessageRequest,
    account_id: str = Depends(get_account_id),
    container: ServiceContainer = Depends(get_container),
):
    """Answer a live-chat message."""
    try:
        result = await container.pipeline.handle(
            account_id,
            Channel.CHAT,
            body.session_id,
            body.message,
            explicit_profile_id=body.profile_id,
        )
    except Exception as e:
        logger.error("Chat message processing failed", account_id=account_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process message"
        ) from e
    return _turn_response(result)


@router.post("/voice/transcripts", response_model=TurnResponse)
async def post_voice_transcript(
    body: VoiceTranscriptRequest,
    account_id: str = Depends(get_account_id),
    container: ServiceContainer = Depends(get_container),
):
    """Answer one transcribed caller utterance; the reply is spoken by the bridge."""
    try:
        result = await container.pipeline.handle(
            account_id,
            Channel.VOICE,
            body.caller_phone,
            body.transcript,
            explicit_profile_id=body.profile_id,
            inbound_metadata={"call_id": body.call_id} if body.call_id else None,
        )
    except Exception as e:
        logger.error("Voice transcript processing failed", account_id=account_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process transcript"
        ) from e
    return _turn_response(result)
