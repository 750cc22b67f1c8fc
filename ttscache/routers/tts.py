"""
Generation endpoints: submit, status by fingerprint, delete and listings.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ttscache.dependencies import Caller, get_caller, get_generation_service
from ttscache.errors import ValidationError
from ttscache.fingerprint import is_fingerprint
from ttscache.schemas.job import (
    SubmitRequest,
    JobSummary,
    JobStatusResponse,
    JobResponse,
    JobListResponse,
    DeletedJobsResponse,
    DeleteResponse,
    UsageResponse,
)
from ttscache.services.generation_service import GenerationService


router = APIRouter(prefix='/tts', tags=['tts'])


@router.post('/generate', response_model=JobSummary)
async def generate(
    request: SubmitRequest,
    caller: Caller = Depends(get_caller),
    service: GenerationService = Depends(get_generation_service),
) -> JobSummary:
    """
    Submit text for generation.

    Returns immediately. An identical earlier request from the same caller
    that is still generating or already ready is returned as is.
    """
    job = await service.submit(
        credential=caller.credential,
        text=request.text,
        voice=request.voice,
        model=request.model,
        format=request.format,
        speed=request.speed,
    )
    return JobSummary.from_job(job)


@router.get('/status/{fingerprint}', response_model=JobStatusResponse, response_model_exclude_none=True)
async def get_status(
    fingerprint: str,
    caller: Caller = Depends(get_caller),
    service: GenerationService = Depends(get_generation_service),
) -> JobStatusResponse:
    """
    Get the state of the caller's latest job for a fingerprint.

    Returns ``not_found`` rather than 404 when there is no such job.
    """
    if not is_fingerprint(fingerprint):
        raise ValidationError('Fingerprint must be 64 hexadecimal characters')
    job = await service.status_by_fingerprint(caller.owner, fingerprint)
    return JobStatusResponse.from_job(job)


@router.get('/jobs', response_model=JobListResponse)
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(get_caller),
    service: GenerationService = Depends(get_generation_service),
) -> JobListResponse:
    """
    List the caller's jobs with pagination.

    Returns non-expired jobs ordered by creation time (newest first).
    """
    jobs, total = await service.list_jobs(caller.owner, limit=limit, offset=offset)
    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get('/expired', response_model=DeletedJobsResponse)
async def list_expired(
    since: Optional[datetime] = Query(default=None),
    caller: Caller = Depends(get_caller),
    service: GenerationService = Depends(get_generation_service),
) -> DeletedJobsResponse:
    """Ids of the caller's expired jobs, for pruning local copies."""
    if since is not None and since.tzinfo is not None:
        since = since.replace(tzinfo=None) - since.utcoffset()
    return DeletedJobsResponse(deleted_files=await service.expired_since(caller.owner, since))


@router.get('/usage', response_model=UsageResponse)
async def get_usage(
    caller: Caller = Depends(get_caller),
    service: GenerationService = Depends(get_generation_service),
) -> UsageResponse:
    """Files count, storage used and jobs created today for the caller."""
    usage = await service.usage(caller.owner)
    return UsageResponse(
        files_count=usage.files_count,
        storage_used_mb=round(usage.storage_used_bytes / (1024 * 1024), 2),
        generated_today=usage.generated_today,
    )


@router.delete('/{job_id}', response_model=DeleteResponse)
async def delete_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
    service: GenerationService = Depends(get_generation_service),
) -> DeleteResponse:
    """
    Delete a job (soft delete: marked expired, artifact removed).

    Deleting an already deleted job succeeds.
    """
    await service.delete(caller.owner, job_id)
    return DeleteResponse(deleted=True)
