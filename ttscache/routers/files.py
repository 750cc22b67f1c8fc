"""
Artifact download endpoint.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ttscache.dependencies import Caller, get_caller, get_generation_service
from ttscache.services.generation_service import GenerationService


router = APIRouter(prefix='/files', tags=['files'])


@router.get('/{job_id}')
async def download_file(
    job_id: str,
    caller: Caller = Depends(get_caller),
    service: GenerationService = Depends(get_generation_service),
):
    """
    Stream the audio file for a ready job.

    Returns audio file with Content-Type derived from the job format.

    Raises:
        404: Job not found, not the caller's, not ready, or file missing
    """
    artifact = await service.download(caller.owner, job_id)
    return FileResponse(
        path=artifact.path,
        media_type=artifact.media_type,
        filename=artifact.filename,
        headers={'Cache-Control': 'private, max-age=3600'},
    )
