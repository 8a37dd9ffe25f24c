# app/services/pipeline/interaction_pipeline.py
"""
The cross-channel conversation turn.

resolve profile -> load history -> record inbound -> generate -> extract
scheduling intent -> (book meeting, rewrite reply) -> record outbound -> touch.

Every channel transport calls handle(); only delivery differs per channel.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from app.infrastructure.observability.logging import get_logger
from app.models.domain.meeting_domain import MeetingRequest, MeetingResult
from app.models.domain.message_domain import InboundMessage
from app.models.domain.profile_domain import Channel, ContactDetails, Direction, Profile
from app.models.domain.scheduling_domain import SchedulingSignal
from app.services.calendar.meeting_scheduler import MeetingScheduler
from app.services.identity.identity_resolver import IdentityResolver
from app.services.ledger.interaction_ledger import InteractionLedger
from app.services.responder.openai_responder import OpenAIResponder
from app.services.responder.prompts import build_system_prompt
from app.services.scheduling.reply_messages import EMAIL_REQUIRED_MESSAGE
from app.services.scheduling.scheduling_extractor import SchedulingExtractor, strip_payload

logger = get_logger(__name__)

EMAIL_REQUIRED = "EMAIL_REQUIRED"


@dataclass(slots=True)
class TurnResult:
    """Outcome of one conversation turn."""

    reply: str
    profile: Profile
    scheduling_requested: bool = False
    meeting: MeetingResult | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        meeting = self.meeting
        return {
            "reply": self.reply,
            "profile_id": self.profile.id,
            "scheduling_requested": self.scheduling_requested,
            "meeting": {
                "success": meeting.success,
                "message": meeting.message,
                "event_id": meeting.event_id,
                "join_link": meeting.join_link,
                "error_code": meeting.error_code.value if meeting.error_code else None,
            }
            if meeting
            else None,
        }


class InteractionPipeline:
    def __init__(
        self,
        resolver: IdentityResolver,
        ledger: InteractionLedger,
        extractor: SchedulingExtractor,
        scheduler: MeetingScheduler,
        responder: OpenAIResponder,
        timezone: str = "UTC",
        history_limit: int = 10,
        business_name: str = "our company",
        assistant_name: str = "Jamie",
        clock: Callable[[], datetime] | None = None,
    ):
        self.resolver = resolver
        self.ledger = ledger
        self.extractor = extractor
        self.scheduler = scheduler
        self.responder = responder
        self.tz = ZoneInfo(timezone)
        self.history_limit = history_limit
        self.business_name = business_name
        self.assistant_name = assistant_name
        self._clock = clock or (lambda: datetime.now(UTC))

    async def handle(
        self,
        owner_id: str,
        channel: Channel,
        contact_identifier: str,
        content: str,
        *,
        explicit_profile_id: str | None = None,
        subject: str | None = None,
        inbound_metadata: dict[str, Any] | None = None,
    ) -> TurnResult:
        """
        Run one conversation turn.

        Args:
            owner_id: Owning account
            channel: Channel the message arrived on
            contact_identifier: Channel-native identifier of the contact
            content: Message text
            explicit_profile_id: Profile id already known to the caller
            subject: Email subject, used as the default meeting subject
            inbound_metadata: Extra metadata stored with the inbound interaction

        Returns:
            TurnResult with the reply to deliver
        """
        profile = await self.resolver.resolve(
            owner_id, channel, contact_identifier, content, explicit_profile_id
        )
        history = await self.ledger.conversation_context(profile.id, self.history_limit, channel=channel)

        await self.ledger.record(
            profile.id,
            channel,
            Direction.INBOUND,
            content,
            {"contact_identifier": contact_identifier, **(inbound_metadata or {})},
        )

        system_prompt = build_system_prompt(
            channel, profile, self._clock().astimezone(self.tz), self.business_name, self.assistant_name
        )
        generated = await self.responder.generate(system_prompt, history, content)

        # The contact never sees the embedded scheduling object
        result = TurnResult(reply=strip_payload(generated) or generated, profile=profile)
        signal = self.extractor.extract(generated, inbound_message=content)
        if signal:
            await self._schedule(owner_id, channel, signal, result, subject)

        await self.ledger.record(
            profile.id,
            channel,
            Direction.OUTBOUND,
            result.reply,
            {"ai_generated": True, "contact_identifier": contact_identifier, **result.metadata},
        )
        await self.resolver.touch(result.profile, channel)

        logger.info(
            "Conversation turn completed",
            owner_id=owner_id,
            profile_id=profile.id,
            channel=channel.value,
            history_turns=len(history),
            scheduling_requested=result.scheduling_requested,
        )
        return result

    async def handle_email(self, message: InboundMessage) -> TurnResult:
        """Turn for a stored inbound email."""
        return await self.handle(
            message.owner_id,
            Channel.EMAIL,
            message.sender,
            f"Subject: {message.subject}\n\n{message.body}" if message.subject else message.body,
            subject=message.subject,
            inbound_metadata={"message_id": message.message_id, "subject": message.subject},
        )

    async def _schedule(
        self,
        owner_id: str,
        channel: Channel,
        signal: SchedulingSignal,
        result: TurnResult,
        subject: str | None,
    ) -> None:
        result.scheduling_requested = True
        profile = result.profile

        attendee_email = signal.attendee_email or profile.email
        if not attendee_email:
            result.reply = EMAIL_REQUIRED_MESSAGE
            result.metadata["scheduling_error"] = EMAIL_REQUIRED
            return

        if not profile.email:
            result.profile = await self.resolver.enrich(profile, ContactDetails(email=attendee_email))

        request = MeetingRequest(
            attendee_email=attendee_email,
            subject=signal.subject or subject or f"Meeting with {profile.name or attendee_email}",
            date_time=signal.date_time.isoformat(),
            duration_minutes=signal.duration_minutes,
            description=signal.description or f"Meeting scheduled via {channel.value}.",
            profile_id=profile.id,
        )
        meeting_result = await self.scheduler.schedule(owner_id, request)

        result.meeting = meeting_result
        result.reply = meeting_result.message
        if meeting_result.success and meeting_result.meeting:
            result.metadata["meeting_id"] = meeting_result.meeting.id
            result.metadata["event_id"] = meeting_result.event_id
        elif meeting_result.error_code:
            result.metadata["scheduling_error"] = meeting_result.error_code.value
