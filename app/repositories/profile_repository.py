# app/repositories/profile_repository.py
"""
Persistence for contact profiles.

Email and phone are unique per owning account (partial unique indexes), so
find-or-create is an INSERT ... ON CONFLICT DO NOTHING followed by a
re-query when the insert lost the race.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_one, is_uuid, with_db_retry
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import CHAT_SESSIONS_KEY, Channel, Profile

logger = get_logger(__name__)

_FILLABLE_FIELDS = ("name", "email", "phone")


class ProfileRepository:
    """Postgres-backed profile storage."""

    @with_db_retry(max_retries=2)
    async def get(self, profile_id: str) -> Profile | None:
        if not is_uuid(profile_id):
            return None
        row = await fetch_one("SELECT * FROM profiles WHERE id = %s", (profile_id,))
        return Profile.from_row(row) if row else None

    async def find_by_email(self, owner_id: str, email: str) -> Profile | None:
        row = await fetch_one(
            "SELECT * FROM profiles WHERE owner_id = %s AND email = %s",
            (owner_id, email),
        )
        return Profile.from_row(row) if row else None

    async def find_by_phone(self, owner_id: str, phone: str) -> Profile | None:
        row = await fetch_one(
            "SELECT * FROM profiles WHERE owner_id = %s AND phone = %s",
            (owner_id, phone),
        )
        return Profile.from_row(row) if row else None

    async def find_by_chat_identifier(self, owner_id: str, identifier: str) -> Profile | None:
        row = await fetch_one(
            f"""
            SELECT * FROM profiles
            WHERE owner_id = %s AND metadata -> '{CHAT_SESSIONS_KEY}' ? %s
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (owner_id, identifier),
        )
        return Profile.from_row(row) if row else None

    async def create(
        self,
        owner_id: str,
        *,
        name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        channel: Channel | None = None,
        seen_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Profile | None:
        """
        Insert a new profile.

        Returns:
            The created Profile, or None when another profile already holds
            the email or phone (the caller re-queries).
        """
        row = await fetch_one(
            """
            INSERT INTO profiles (
                owner_id, name, email, phone, last_interaction_channel, last_seen, metadata
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            RETURNING *
            """,
            (
                owner_id,
                name,
                email,
                phone,
                channel.value if channel else None,
                seen_at,
                Jsonb(metadata or {}),
            ),
        )
        if row is None:
            logger.info("Profile insert lost uniqueness race", owner_id=owner_id)
            return None
        return Profile.from_row(row)

    async def fill_missing(self, profile_id: str, fields: dict[str, str]) -> Profile | None:
        """
        Set fields only where the stored value is NULL.

        COALESCE keeps this safe against a concurrent writer that filled the
        same field between our read and this update.
        """
        updates = {key: value for key, value in fields.items() if key in _FILLABLE_FIELDS}
        if not updates:
            return await self.get(profile_id)

        assignments = ", ".join(f"{key} = COALESCE({key}, %s)" for key in updates)
        row = await fetch_one(
            f"""
            UPDATE profiles
            SET {assignments}, updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (*updates.values(), profile_id),
        )
        return Profile.from_row(row) if row else None

    async def overwrite_fields(self, profile_id: str, fields: dict[str, str | None]) -> Profile | None:
        """Unconditional update, reserved for verified edits."""
        updates = {key: value for key, value in fields.items() if key in _FILLABLE_FIELDS}
        if not updates:
            return await self.get(profile_id)

        assignments = ", ".join(f"{key} = %s" for key in updates)
        row = await fetch_one(
            f"UPDATE profiles SET {assignments}, updated_at = NOW() WHERE id = %s RETURNING *",
            (*updates.values(), profile_id),
        )
        return Profile.from_row(row) if row else None

    async def add_chat_identifier(self, profile_id: str, identifier: str) -> None:
        await execute_query(
            f"""
            UPDATE profiles
            SET metadata = jsonb_set(
                    metadata,
                    '{{{CHAT_SESSIONS_KEY}}}',
                    COALESCE(metadata -> '{CHAT_SESSIONS_KEY}', '[]'::jsonb) || to_jsonb(%s::text)
                ),
                updated_at = NOW()
            WHERE id = %s
              AND NOT COALESCE(metadata -> '{CHAT_SESSIONS_KEY}', '[]'::jsonb) ? %s
            """,
            (identifier, profile_id, identifier),
        )

    async def touch(self, profile_id: str, channel: Channel, seen_at: datetime) -> None:
        await execute_query(
            """
            UPDATE profiles
            SET last_interaction_channel = %s,
                last_seen = GREATEST(COALESCE(last_seen, %s), %s),
                updated_at = NOW()
            WHERE id = %s
            """,
            (channel.value, seen_at, seen_at, profile_id),
        )

    async def apply_merge(self, source_id: str, merged: Profile) -> Profile:
        """
        Fold the source profile into `merged` (the surviving target) atomically.

        Interactions and meetings are reassigned first and the source row is
        deleted before the target takes over its email/phone, so the unique
        indexes never see both rows holding the same value.
        """
        async with db_pool.transaction() as conn:
            await execute_query(
                "UPDATE interactions SET profile_id = %s WHERE profile_id = %s",
                (merged.id, source_id),
                connection=conn,
            )
            await execute_query(
                "UPDATE meetings SET profile_id = %s WHERE profile_id = %s",
                (merged.id, source_id),
                connection=conn,
            )
            await execute_query("DELETE FROM profiles WHERE id = %s", (source_id,), connection=conn)
            row = await fetch_one(
                """
                UPDATE profiles
                SET name = %s, email = %s, phone = %s, last_interaction_channel = %s,
                    last_seen = %s, metadata = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (
                    merged.name,
                    merged.email,
                    merged.phone,
                    merged.last_interaction_channel.value if merged.last_interaction_channel else None,
                    merged.last_seen,
                    Jsonb(merged.metadata),
                    merged.id,
                ),
                connection=conn,
            )

        return Profile.from_row(row)
