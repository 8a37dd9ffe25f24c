# app/repositories/interaction_repository.py
"""
Append-only interaction storage.
"""

from datetime import datetime

from psycopg.types.json import Jsonb

from app.db.helpers import fetch_all, fetch_one, fetch_val
from app.models.domain.profile_domain import Channel, Interaction


class InteractionRepository:
    """Postgres-backed interaction ledger storage."""

    async def insert(self, interaction: Interaction) -> Interaction:
        row = await fetch_one(
            """
            INSERT INTO interactions (profile_id, channel, direction, content, metadata, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                interaction.profile_id,
                interaction.channel.value,
                interaction.direction.value,
                interaction.content,
                Jsonb(interaction.metadata),
                interaction.created_at,
            ),
        )
        return Interaction.from_row(row)

    async def last_contact_at(self, profile_id: str, channel: Channel | None = None) -> datetime | None:
        if channel is None:
            return await fetch_val(
                "SELECT MAX(created_at) FROM interactions WHERE profile_id = %s",
                (profile_id,),
            )
        return await fetch_val(
            "SELECT MAX(created_at) FROM interactions WHERE profile_id = %s AND channel = %s",
            (profile_id, channel.value),
        )

    async def list_recent(
        self,
        profile_id: str,
        limit: int,
        *,
        channel: Channel | None = None,
        since: datetime | None = None,
    ) -> list[Interaction]:
        """Newest `limit` interactions, returned oldest first."""
        conditions = ["profile_id = %s"]
        params: list = [profile_id]
        if channel is not None:
            conditions.append("channel = %s")
            params.append(channel.value)
        if since is not None:
            conditions.append("created_at >= %s")
            params.append(since)
        params.append(limit)

        rows = await fetch_all(
            f"""
            SELECT * FROM (
                SELECT * FROM interactions
                WHERE {" AND ".join(conditions)}
                ORDER BY created_at DESC
                LIMIT %s
            ) recent
            ORDER BY created_at ASC
            """,
            tuple(params),
        )
        return [Interaction.from_row(row) for row in rows]
