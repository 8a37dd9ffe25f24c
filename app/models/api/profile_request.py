# app/models/api/profile_request.py
"""
Profile API request models.
"""

from pydantic import BaseModel, Field


class MergeProfilesRequest(BaseModel):
    """Merge the source profile into the target; the source is deleted."""

    source_id: str = Field(..., min_length=1, description="Profile to merge away")
    target_id: str = Field(..., min_length=1, description="Surviving profile")
