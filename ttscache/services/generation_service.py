"""
Retrieval API operations: submit, status by fingerprint, download and delete.
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy import exc as sa_exc

from ttscache.config import CONTENT_TYPES, MAX_TEXT_LENGTH, MIN_SPEED, MAX_SPEED
from ttscache.errors import IntegrityError, NotFoundError, ValidationError
from ttscache.fingerprint import fingerprint as compute_fingerprint
from ttscache.models.job import GenerationJob, JobState
from ttscache.services.generation_store import GenerationStore, OwnerUsage
from ttscache.services.generation_worker import GenerationWorker
from ttscache.services.storage import ArtifactStorage
from ttscache.services.synthesizer import CredentialValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Artifact:
    """A ready artifact located on disk."""
    job_id: str
    path: Path
    media_type: str
    filename: str
    size: int


class GenerationService:
    """
    Deduplicating front door to the generation cache.

    Constructed once per process and handed to request handlers through a
    FastAPI dependency, so tests can substitute the store, storage,
    worker and credential validator.
    """

    def __init__(
        self,
        store: GenerationStore,
        storage: ArtifactStorage,
        worker: GenerationWorker,
        credentials: CredentialValidator,
        max_text_length: int = MAX_TEXT_LENGTH,
    ):
        self.store = store
        self.storage = storage
        self.worker = worker
        self.credentials = credentials
        self.max_text_length = max_text_length
        self._locks: 'weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]' = weakref.WeakValueDictionary()

    async def authenticate(self, credential: str) -> str:
        """Resolve a caller credential to an owner identity."""
        return await self.credentials.resolve_owner(credential)

    def validate_request(self, text: str, voice: str, model: str, format: str, speed: float):
        """
        Reject malformed requests before any work starts.

        Raises:
            ValidationError: If any field is out of bounds
        """
        if not text or not text.strip():
            raise ValidationError('Text is required')
        if len(text) > self.max_text_length:
            raise ValidationError(
                f'Text too long: {len(text)} characters (maximum {self.max_text_length})'
            )
        if not voice or not voice.strip():
            raise ValidationError('Voice is required')
        if not model or not model.strip():
            raise ValidationError('Model is required')
        if format not in CONTENT_TYPES:
            raise ValidationError(
                f'Unsupported format: {format} (expected one of {", ".join(CONTENT_TYPES)})'
            )
        if not MIN_SPEED <= speed <= MAX_SPEED:
            raise ValidationError(f'Speed must be between {MIN_SPEED} and {MAX_SPEED}, got {speed}')

    def _lock_for(self, owner: str, fingerprint: str) -> asyncio.Lock:
        key = (owner, fingerprint)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def submit(
        self,
        credential: str,
        text: str,
        voice: str,
        model: str,
        format: str = 'mp3',
        speed: float = 1.0,
    ) -> GenerationJob:
        """
        Submit a generation request, applying the dedup rule.

        The credential is checked first and decides the owner. An existing
        ready or generating job for the same (owner, fingerprint) is returned
        unchanged. Otherwise a new job is created and queued; this call never
        waits for generation.

        Raises:
            UpstreamAuthError: If the provider rejects the credential
            ValidationError: If the request is malformed
        """
        owner = await self.authenticate(credential)
        self.validate_request(text, voice, model, format, speed)
        fp = compute_fingerprint(text, voice, model, format, speed)

        async with self._lock_for(owner, fp):
            existing = await self.store.find_latest(owner, fp)
            if existing and existing.state in (JobState.ready.value, JobState.generating.value):
                logger.info('Reusing %s job %s for hash %s', existing.state, existing.id, fp[:8])
                return existing

            try:
                job = await self.store.create(owner, fp, text, voice, model, format, speed)
            except sa_exc.IntegrityError:
                # Another process won the insert; the unique index is the backstop
                winner = await self.store.find_active(owner, fp)
                if winner is None:
                    raise
                logger.info('Concurrent submission for hash %s resolved to job %s', fp[:8], winner.id)
                return winner

        logger.info('Starting generation for job %s (%d characters)', job.id, len(text))
        await self.worker.enqueue(job.id, credential)
        return job

    async def status_by_fingerprint(self, owner: str, fingerprint: str) -> Optional[GenerationJob]:
        """Latest non-expired job of this owner for a fingerprint, or None."""
        return await self.store.find_latest(owner, fingerprint)

    async def download(self, owner: str, job_id: str) -> Artifact:
        """
        Locate the artifact of a ready job.

        Raises:
            NotFoundError: If the job is not the owner's, not ready, or its
                artifact is missing from storage
        """
        job = await self.store.get_owned(owner, job_id)
        if not job:
            raise NotFoundError('File not found')

        if job.state != JobState.ready.value or not job.artifact_name:
            raise NotFoundError('File not ready for download')

        if not await self.storage.exists(job.artifact_name):
            error = IntegrityError(
                f'Artifact {job.artifact_name} missing from storage for ready job {job.id}'
            )
            logger.error('Integrity error: %s', error)
            raise NotFoundError('File not found') from error

        path = self.storage.path_for(job.artifact_name)
        return Artifact(
            job_id=job.id,
            path=path,
            media_type=CONTENT_TYPES.get(job.format, 'application/octet-stream'),
            filename=job.artifact_name,
            size=job.artifact_size or path.stat().st_size,
        )

    async def delete(self, owner: str, job_id: str) -> None:
        """Soft-delete a job: mark it expired and reclaim its artifact. Idempotent."""
        job = await self.store.get_owned(owner, job_id)
        if not job:
            raise NotFoundError('File not found')

        if await self.store.mark_expired(job.id):
            logger.info('Job %s deleted by owner', job.id)
        if job.artifact_name:
            try:
                await self.storage.delete(job.artifact_name)
            except OSError as e:
                # Expired jobs are never swept again; the file stays until removed by hand
                logger.error('Failed to delete artifact %s for job %s: %s', job.artifact_name, job.id, e)

    async def list_jobs(self, owner: str, limit: int = 50, offset: int = 0) -> Tuple[List[GenerationJob], int]:
        return await self.store.list_for_owner(owner, limit=limit, offset=offset)

    async def expired_since(self, owner: str, since: Optional[datetime] = None) -> List[str]:
        return await self.store.expired_ids(owner, since)

    async def usage(self, owner: str) -> OwnerUsage:
        return await self.store.usage(owner)
