"""
Pydantic schemas for playback resume records.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


class ResumeRecord(BaseModel):
    """Where playback of a text stopped, and which text it was."""
    model_config = ConfigDict(from_attributes=True)

    text_fingerprint: str = Field(..., min_length=1)
    chunk_index: int = Field(0, ge=0)
    elapsed_seconds: float = Field(0.0, ge=0.0)


class PlaybackStateResponse(ResumeRecord):
    """Schema for a synced playback state."""
    resume_key: str
    updated_at: Optional[datetime] = None


class PlaybackStateListResponse(BaseModel):
    """Schema for the caller's synced playback states, newest first."""
    states: List[PlaybackStateResponse]
    total: int
    limit: int
    offset: int
