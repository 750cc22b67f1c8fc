"""
Pydantic schemas for generation API operations.

The same models are used by the server to render responses and by the
remote client to parse them.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict

from ttscache.models.job import GenerationJob, JobState


NOT_FOUND = 'not_found'


class SubmitRequest(BaseModel):
    """Schema for a generation request. Text limits are enforced by the service."""
    text: str = Field(..., description='The text to synthesize')
    voice: str = Field(..., description='Provider voice name')
    model: str = Field(..., description='Provider model name')
    format: str = Field('mp3', description='Audio format: mp3, opus, aac, flac or wav')
    speed: float = Field(1.0, description='Speaking speed, 0.25 to 4.0')


class JobSummary(BaseModel):
    """Schema for the submit response."""
    id: str
    fingerprint: str
    state: str
    url: Optional[str] = None
    expires_at: datetime

    @classmethod
    def from_job(cls, job: GenerationJob) -> 'JobSummary':
        return cls(
            id=job.id,
            fingerprint=job.fingerprint,
            state=job.state,
            url=f'/files/{job.id}' if job.state == JobState.ready.value else None,
            expires_at=job.expires_at,
        )


class JobStatusResponse(BaseModel):
    """Schema for status by fingerprint; ``state`` is ``not_found`` when no job matches."""
    state: str
    id: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Optional[GenerationJob]) -> 'JobStatusResponse':
        if job is None:
            return cls(state=NOT_FOUND)
        return cls(state=job.state, id=job.id, expires_at=job.expires_at)


class JobResponse(BaseModel):
    """Schema for a job in listings."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    fingerprint: str
    voice: str
    model: str
    format: str
    speed: float
    state: str
    artifact_size: Optional[int]
    created_at: datetime
    expires_at: datetime
    completed_at: Optional[datetime]
    error_message: Optional[str]
    duration_ms: Optional[int]
    chunk_count: Optional[int]


class JobListResponse(BaseModel):
    """Schema for paginated job list response."""
    jobs: List[JobResponse]
    total: int
    limit: int
    offset: int


class DeletedJobsResponse(BaseModel):
    """Ids of expired jobs whose local copies clients may drop."""
    deleted_files: List[str]


class DeleteResponse(BaseModel):
    deleted: bool


class UsageResponse(BaseModel):
    """Per-owner usage figures."""
    files_count: int
    storage_used_mb: float
    generated_today: int
