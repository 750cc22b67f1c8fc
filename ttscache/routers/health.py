"""
Health check endpoint.
"""
from datetime import datetime
from pydantic import BaseModel
from fastapi import APIRouter, Depends

from ttscache.config import APP_VERSION
from ttscache.dependencies import get_generation_service
from ttscache.models.job import utcnow
from ttscache.services.generation_service import GenerationService


router = APIRouter(tags=['health'])


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    version: str
    timestamp: datetime
    worker_running: bool
    active_jobs: int


@router.get('/health', response_model=HealthResponse)
async def health_check(service: GenerationService = Depends(get_generation_service)) -> HealthResponse:
    """
    Check server health status.

    Fast response - no database queries.
    """
    return HealthResponse(
        status='ok',
        version=APP_VERSION,
        timestamp=utcnow(),
        worker_running=service.worker.is_running,
        active_jobs=service.worker.active_jobs,
    )
