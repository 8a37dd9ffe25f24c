# app/routes/profiles.py
"""
Profile API Routes
Read profiles and their conversation history; merge duplicates.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.infrastructure.observability.logging import get_logger
from app.models.api.profile_request import MergeProfilesRequest
from app.models.api.profile_response import HistoryResponse, InteractionResponse, ProfileResponse
from app.models.domain.profile_domain import Channel, Profile
from app.routes.dependencies import get_account_id, get_container
from app.services.container import ServiceContainer
from app.services.identity.identity_resolver import ProfileNotFoundError

logger = get_logger(__name__)

router = APIRouter(prefix="/profiles", tags=["profiles"])


async def _owned_profile(container: ServiceContainer, profile_id: str, account_id: str) -> Profile:
    try:
        profile = await container.resolver.get(profile_id)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found") from e
    if profile.owner_id != account_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return profile


@router.get("/{profile_id}", response_model=ProfileResponse)
async def get_profile(
    profile_id: str,
    account_id: str = Depends(get_account_id),
    container: ServiceContainer = Depends(get_container),
):
    profile = await _owned_profile(container, profile_id, account_id)
    return ProfileResponse(**profile.to_dict())


@router.get("/{profile_id}/history", response_model=HistoryResponse)
async def get_profile_history(
    profile_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    channel: Channel | None = Query(default=None),
    cross_session: bool = Query(default=False, description="Include interactions before the session window"),
    account_id: str = Depends(get_account_id),
    container: ServiceContainer = Depends(get_container),
):
    """Conversation history, oldest first."""
    await _owned_profile(container, profile_id, account_id)
    history = await container.ledger.recent_history(
        profile_id, limit, channel=channel, cross_session=cross_session
    )
    return HistoryResponse(
        profile_id=profile_id,
        cross_session=cross_session,
        interactions=[InteractionResponse(**interaction.to_dict()) for interaction in history],
    )


@router.post("/merge", response_model=ProfileResponse)
async def merge_profiles(
    body: MergeProfilesRequest,
    account_id: str = Depends(get_account_id),
    container: ServiceContainer = Depends(get_container),
):
    """Merge source into target; retrying after success returns the target unchanged."""
    await _owned_profile(container, body.target_id, account_id)
    try:
        source = await container.resolver.get(body.source_id)
    except ProfileNotFoundError:
        source = None
    if source is not None and source.owner_id != account_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")

    try:
        merged = await container.resolver.merge(body.source_id, body.target_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found") from e

    logger.info("Profiles merged via API", source_id=body.source_id, target_id=body.target_id)
    return ProfileResponse(**merged.to_dict())
