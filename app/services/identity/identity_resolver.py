# app/services/identity/identity_resolver.py
"""
Identity resolution: map a channel contact identifier to a durable Profile.

Lookup precedence is explicit id, then an email found in the message, then a
phone found in the message, then the channel's own identifier (phone for
voice/WhatsApp, address for email, session id for chat). Extracted details
only ever fill empty fields.
"""

from collections.abc import Callable
from datetime import UTC, datetime

from app.db.helpers import UniqueViolationError
from app.infrastructure.activity import ActivityLogger, ActivityStatus
from app.infrastructure.observability.logging import get_logger
from app.models.domain.message_domain import extract_address
from app.models.domain.profile_domain import CHAT_SESSIONS_KEY, Channel, ContactDetails, Profile
from app.repositories.profile_repository import ProfileRepository
from app.services.identity.contact_extraction import (
    extract_contact_details,
    normalize_email,
    normalize_phone,
)

logger = get_logger(__name__)

ALTERNATE_EMAILS_KEY = "alternate_emails"
ALTERNATE_PHONES_KEY = "alternate_phones"


class ProfileNotFoundError(Exception):
    """Raised when an operation targets a profile that does not exist."""

    def __init__(self, profile_id: str):
        super().__init__(f"Profile {profile_id} not found")
        self.profile_id = profile_id
        self.error_code = "PROFILE_NOT_FOUND"


def _union(first: list, second: list) -> list:
    return list(dict.fromkeys([*first, *second]))


def combine_profiles(source: Profile, target: Profile) -> Profile:
    """
    Compute the surviving profile of a merge without touching storage.

    Target wins on metadata key conflicts and on populated fields; source
    values fill only empty target fields. Where both hold a different
    email or phone, the source value is kept under an alternate_* key.
    """
    metadata = {**source.metadata, **target.metadata}
    metadata[CHAT_SESSIONS_KEY] = _union(target.chat_session_ids, source.chat_session_ids)
    if not metadata[CHAT_SESSIONS_KEY]:
        del metadata[CHAT_SESSIONS_KEY]

    if source.email and target.email and source.email != target.email:
        metadata[ALTERNATE_EMAILS_KEY] = _union(metadata.get(ALTERNATE_EMAILS_KEY, []), [source.email])
    if source.phone and target.phone and source.phone != target.phone:
        metadata[ALTERNATE_PHONES_KEY] = _union(metadata.get(ALTERNATE_PHONES_KEY, []), [source.phone])

    last_seen = target.last_seen
    channel = target.last_interaction_channel
    if source.last_seen and (last_seen is None or source.last_seen > last_seen):
        last_seen = source.last_seen
        channel = source.last_interaction_channel or channel

    return Profile(
        id=target.id,
        owner_id=target.owner_id,
        name=target.name or source.name,
        email=target.email or source.email,
        phone=target.phone or source.phone,
        last_interaction_channel=channel,
        last_seen=last_seen,
        metadata=metadata,
    )


class IdentityResolver:
    """
    Resolves, enriches and merges contact profiles.

    Constructed once at startup with its repository; the resolver itself
    holds no per-contact state.
    """

    def __init__(
        self,
        profiles: ProfileRepository,
        activity: ActivityLogger,
        clock: Callable[[], datetime] | None = None,
    ):
        self.profiles = profiles
        self.activity = activity
        self._clock = clock or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self,
        owner_id: str,
        channel: Channel,
        contact_identifier: str,
        message_content: str = "",
        explicit_profile_id: str | None = None,
    ) -> Profile:
        """
        Find or create the profile behind an inbound message.

        Args:
            owner_id: Owning account
            channel: Channel the message arrived on
            contact_identifier: Channel-native identifier (phone, address, session id)
            message_content: Raw message text to mine for identifying details
            explicit_profile_id: Profile id supplied by the caller, if any

        Returns:
            The resolved Profile, enriched with any newly extracted fields
        """
        details = extract_contact_details(message_content)
        seed = self._seed_details(channel, contact_identifier, details)

        profile = await self._lookup(owner_id, channel, contact_identifier, details, explicit_profile_id)

        if profile is None:
            profile = await self._create(owner_id, channel, contact_identifier, seed)
            logger.info(
                "Profile created",
                profile_id=profile.id,
                owner_id=owner_id,
                channel=channel.value,
            )
            return profile

        profile = await self._fill_missing(profile, seed)
        if channel == Channel.CHAT and contact_identifier not in profile.chat_session_ids:
            await self.profiles.add_chat_identifier(profile.id, contact_identifier)
            profile.metadata[CHAT_SESSIONS_KEY] = [*profile.chat_session_ids, contact_identifier]

        return profile

    def _native_identifier(self, channel: Channel, contact_identifier: str) -> str | None:
        if channel.uses_phone:
            return normalize_phone(contact_identifier)
        if channel == Channel.EMAIL:
            return normalize_email(extract_address(contact_identifier))
        return contact_identifier.strip() or None

    def _seed_details(
        self, channel: Channel, contact_identifier: str, details: ContactDetails
    ) -> ContactDetails:
        """Fields a new profile starts with: the channel identifier plus extracted details."""
        native = self._native_identifier(channel, contact_identifier)
        email = native if channel == Channel.EMAIL else details.email
        phone = native if channel.uses_phone else details.phone
        return ContactDetails(email=email or details.email, phone=phone or details.phone, name=details.name)

    async def _lookup(
        self,
        owner_id: str,
        channel: Channel,
        contact_identifier: str,
        details: ContactDetails,
        explicit_profile_id: str | None,
    ) -> Profile | None:
        if explicit_profile_id:
            profile = await self.profiles.get(explicit_profile_id)
            if profile and profile.owner_id == owner_id:
                return profile
            logger.warning(
                "Explicit profile id not found, falling back to identifiers",
                profile_id=explicit_profile_id,
                owner_id=owner_id,
            )

        if details.email:
            profile = await self.profiles.find_by_email(owner_id, details.email)
            if profile:
                return profile

        if details.phone:
            profile = await self.profiles.find_by_phone(owner_id, details.phone)
            if profile:
                return profile

        native = self._native_identifier(channel, contact_identifier)
        if not native:
            return None
        if channel.uses_phone:
            return await self.profiles.find_by_phone(owner_id, native)
        if channel == Channel.EMAIL:
            return await self.profiles.find_by_email(owner_id, native)
        return await self.profiles.find_by_chat_identifier(owner_id, native)

    async def _create(
        self, owner_id: str, channel: Channel, contact_identifier: str, seed: ContactDetails
    ) -> Profile:
        metadata = {}
        if channel == Channel.CHAT and contact_identifier.strip():
            metadata[CHAT_SESSIONS_KEY] = [contact_identifier.strip()]

        created = await self.profiles.create(
            owner_id,
            name=seed.name,
            email=seed.email,
            phone=seed.phone,
            channel=channel,
            seen_at=self._clock(),
            metadata=metadata,
        )
        if created:
            return created

        # A concurrent writer already holds this email or phone
        existing = None
        if seed.email:
            existing = await self.profiles.find_by_email(owner_id, seed.email)
        if existing is None and seed.phone:
            existing = await self.profiles.find_by_phone(owner_id, seed.phone)
        if existing:
            logger.info("Profile creation collided, using existing profile", profile_id=existing.id)
            return await self._fill_missing(existing, seed)

        # The conflicting row vanished (merged away); create without the unique fields
        logger.warning("Profile conflict could not be re-resolved, creating without identifiers")
        created = await self.profiles.create(
            owner_id, name=seed.name, channel=channel, seen_at=self._clock(), metadata=metadata
        )
        if created is None:
            raise RuntimeError("Profile creation failed without unique fields")
        return created

    async def enrich(self, profile: Profile, details: ContactDetails) -> Profile:
        """Fill empty fields of `profile` from `details`; populated fields are left alone."""
        return await self._fill_missing(profile, details)

    async def _fill_missing(self, profile: Profile, details: ContactDetails) -> Profile:
        updates = profile.missing_fields(details)
        if not updates:
            return profile

        try:
            updated = await self.profiles.fill_missing(profile.id, updates)
        except UniqueViolationError:
            updated = await self._fill_fields_individually(profile, updates)

        if updated is None:
            return profile

        logger.info("Profile enriched", profile_id=profile.id, fields=sorted(updates))
        return updated

    async def _fill_fields_individually(self, profile: Profile, updates: dict[str, str]) -> Profile:
        current = profile
        for field_name, value in updates.items():
            try:
                current = await self.profiles.fill_missing(profile.id, {field_name: value}) or current
            except UniqueViolationError:
                # Another profile holds this value; leave both alone and flag for merge
                await self.activity.log(
                    "ProfileMergeCandidate",
                    ActivityStatus.WARNING,
                    owner_id=profile.owner_id,
                    details={"profile_id": profile.id, "field": field_name},
                )
        return current

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def touch(self, profile: Profile, channel: Channel) -> None:
        """Record that the contact was just active on `channel`."""
        await self.profiles.touch(profile.id, channel, self._clock())

    async def update_verified(self, profile_id: str, fields: dict[str, str | None]) -> Profile:
        """
        Overwrite profile fields from a verified source (an operator edit).

        Raises:
            ProfileNotFoundError: If the profile does not exist
        """
        normalized = dict(fields)
        if "email" in normalized:
            normalized["email"] = normalize_email(normalized["email"])
        if "phone" in normalized:
            normalized["phone"] = normalize_phone(normalized["phone"])

        updated = await self.profiles.overwrite_fields(profile_id, normalized)
        if updated is None:
            raise ProfileNotFoundError(profile_id)
        return updated

    async def get(self, profile_id: str) -> Profile:
        profile = await self.profiles.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def merge(self, source_id: str, target_id: str) -> Profile:
        """
        Merge the source profile into the target.

        Retrying with the same arguments is safe: once the source is gone
        the call returns the target unchanged.

        Raises:
            ValueError: If source and target are the same profile
            ProfileNotFoundError: If the target does not exist
        """
        if source_id == target_id:
            raise ValueError("Cannot merge a profile into itself")

        target = await self.profiles.get(target_id)
        if target is None:
            raise ProfileNotFoundError(target_id)

        source = await self.profiles.get(source_id)
        if source is None:
            logger.info("Merge source already removed", source_id=source_id, target_id=target_id)
            return target

        merged = await self.profiles.apply_merge(source_id, combine_profiles(source, target))

        await self.activity.log(
            "ProfileMerged",
            ActivityStatus.SUCCESS,
            owner_id=target.owner_id,
            details={"source_id": source_id, "target_id": target_id},
        )
        return merged
