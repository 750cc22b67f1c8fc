"""
Pydantic schemas for API request/response validation.
"""
from ttscache.schemas.job import (
    NOT_FOUND,
    SubmitRequest,
    JobSummary,
    JobStatusResponse,
    JobResponse,
    JobListResponse,
    DeletedJobsResponse,
    DeleteResponse,
    UsageResponse,
)
from ttscache.schemas.playback import ResumeRecord, PlaybackStateResponse

__all__ = [
    'NOT_FOUND',
    'SubmitRequest',
    'JobSummary',
    'JobStatusResponse',
    'JobResponse',
    'JobListResponse',
    'DeletedJobsResponse',
    'DeleteResponse',
    'UsageResponse',
    'ResumeRecord',
    'PlaybackStateResponse',
]
