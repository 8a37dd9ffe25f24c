# app/services/ledger/interaction_ledger.py
"""
Interaction ledger: append-only message history per profile.

Recording never raises into the reply flow. History is bounded by a session
window anchored at the contact's last interaction unless the caller asks for
cross-session history.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import Channel, Direction, Interaction
from app.repositories.interaction_repository import InteractionRepository

logger = get_logger(__name__)

OUTBOUND_PREVIEW_LENGTH = 100


def preview(content: str, length: int = OUTBOUND_PREVIEW_LENGTH) -> str:
    return content if len(content) <= length else content[:length] + "..."


class InteractionLedger:
    """Records inbound/outbound interactions and rebuilds conversation context."""

    def __init__(
        self,
        interactions: InteractionRepository,
        session_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] | None = None,
    ):
        self.interactions = interactions
        self.session_window = session_window
        self._clock = clock or (lambda: datetime.now(UTC))

    async def record(
        self,
        profile_id: str,
        channel: Channel,
        direction: Direction,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Interaction | None:
        """
        Append an interaction.

        Returns:
            The stored Interaction, or None if storage failed (logged, never raised)
        """
        interaction = Interaction(
            profile_id=profile_id,
            channel=channel,
            direction=direction,
            content=content,
            created_at=self._clock(),
            metadata=metadata or {},
        )
        try:
            return await self.interactions.insert(interaction)
        except Exception as e:
            logger.warning(
                "Failed to record interaction",
                profile_id=profile_id,
                channel=channel.value,
                direction=direction.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def recent_history(
        self,
        profile_id: str,
        limit: int = 10,
        *,
        channel: Channel | None = None,
        cross_session: bool = False,
    ) -> list[Interaction]:
        """
        Recent interactions for use as conversation context, oldest first.

        Args:
            profile_id: Profile whose history to load
            limit: Maximum number of interactions
            channel: Restrict to one channel (also anchors the session window)
            cross_session: Include interactions older than the session window

        Returns:
            Chronologically ascending list of interactions
        """
        since = None
        if not cross_session:
            last_contact = await self.interactions.last_contact_at(profile_id, channel)
            if last_contact is None:
                return []
            since = last_contact - self.session_window

        return await self.interactions.list_recent(profile_id, limit, channel=channel, since=since)

    async def conversation_context(
        self, profile_id: str, limit: int = 10, *, channel: Channel | None = None
    ) -> list[dict[str, str]]:
        """History as role/content pairs; an unreadable ledger yields no context."""
        try:
            history = await self.recent_history(profile_id, limit, channel=channel)
        except Exception as e:
            logger.warning("Failed to load conversation history", profile_id=profile_id, error=str(e))
            return []
        return [interaction.as_chat_message() for interaction in history]
