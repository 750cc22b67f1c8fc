"""
Background generation worker.
"""
import asyncio
import logging
import time
from typing import Optional, Set, Tuple

from ttscache.chunker import split_text
from ttscache.config import SERVER_CHUNK_LENGTH, INTER_CHUNK_DELAY
from ttscache.errors import GenerationError
from ttscache.models.job import GenerationJob, JobState
from ttscache.services.generation_store import GenerationStore
from ttscache.services.storage import ArtifactStorage
from ttscache.services.synthesizer import Synthesizer

logger = logging.getLogger(__name__)


def artifact_name_for(job: GenerationJob) -> str:
    """Artifact names derive from the job id, never from the text."""
    return f'{job.id}.{job.format}'


class GenerationWorker:
    """
    Background generation using an asyncio.Queue dispatcher.

    Each dequeued job runs as its own task, so independent jobs proceed
    concurrently while the chunks of one job are synthesized in order.
    The owner's credential travels with the queue entry and is never stored.
    """

    def __init__(
        self,
        store: GenerationStore,
        storage: ArtifactStorage,
        synthesizer: Synthesizer,
        max_chunk_length: int = SERVER_CHUNK_LENGTH,
        inter_chunk_delay: float = INTER_CHUNK_DELAY,
    ):
        self.store = store
        self.storage = storage
        self.synthesizer = synthesizer
        self.max_chunk_length = max_chunk_length
        self.inter_chunk_delay = inter_chunk_delay
        self._queue: asyncio.Queue[Tuple[str, str]] = asyncio.Queue()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._jobs: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_jobs(self) -> int:
        """Number of jobs currently generating in this process."""
        return len(self._jobs)

    async def start(self):
        """Start the background dispatcher."""
        self._running = True
        self._task = asyncio.create_task(self._dispatch_loop())

    async def stop(self):
        """Stop the dispatcher and cancel in-flight jobs.

        Cancelled jobs stay ``generating`` until the stuck-job sweep reaps them.
        """
        self._running = False
        if self._task:
            # Put a sentinel to wake up the queue if waiting
            await self._queue.put(('', ''))
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

        for task in list(self._jobs):
            task.cancel()
        if self._jobs:
            await asyncio.gather(*self._jobs, return_exceptions=True)

    async def enqueue(self, job_id: str, credential: str):
        """Queue a job for generation with the owner's provider credential."""
        await self._queue.put((job_id, credential))

    async def _dispatch_loop(self):
        """Main loop - consumes job ids and spawns one task per job."""
        while self._running:
            try:
                # Wait for a job with timeout to allow checking _running flag
                try:
                    job_id, credential = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                # Check for sentinel value
                if not job_id:
                    continue

                task = asyncio.create_task(self._run_job(job_id, credential))
                self._jobs.add(task)
                task.add_done_callback(self._jobs.discard)
                self._queue.task_done()

            except Exception:
                # Log but don't crash the loop
                logger.exception('Error in generation dispatch loop')

    async def _run_job(self, job_id: str, credential: str):
        try:
            await self.process_job(job_id, credential)
        except asyncio.CancelledError:
            logger.warning('Generation of job %s cancelled', job_id)
            raise
        except Exception:
            logger.exception('Unexpected error processing job %s', job_id)

    async def synthesize_chunks(self, job: GenerationJob, credential: str) -> bytes:
        """
        Synthesize every chunk of a job in order and concatenate the audio.

        Raises:
            GenerationError: On the first chunk that fails
        """
        chunks = split_text(job.text, self.max_chunk_length)
        if not chunks:
            raise GenerationError('Nothing to synthesize', job_id=job.id)

        logger.info('Processing %d chunks for job %s', len(chunks), job.id)
        buffers = []
        for index, chunk in enumerate(chunks):
            logger.debug('Processing chunk %d/%d for job %s', index + 1, len(chunks), job.id)
            try:
                audio = await self.synthesizer.synthesize(
                    text=chunk,
                    voice=job.voice,
                    model=job.model,
                    format=job.format,
                    speed=job.speed,
                    credential=credential,
                )
            except Exception as e:
                raise GenerationError(
                    f'Chunk {index + 1}/{len(chunks)} failed: {e}',
                    job_id=job.id,
                    original_error=e,
                ) from e
            buffers.append(audio)

            # Small delay between chunks to respect provider rate limits
            if index < len(chunks) - 1 and self.inter_chunk_delay > 0:
                await asyncio.sleep(self.inter_chunk_delay)

        # Streamable formats concatenate at the byte level
        return b''.join(buffers)

    async def process_job(self, job_id: str, credential: str):
        """Generate the artifact for a single job and record the outcome."""
        job = await self.store.get(job_id)

        if not job:
            logger.warning('Job %s not found', job_id)
            return

        if job.state != JobState.generating.value:
            logger.warning('Job %s is not generating (state: %s)', job_id, job.state)
            return

        start_time = time.time()
        chunk_count = len(split_text(job.text, self.max_chunk_length))
        try:
            audio = await self.synthesize_chunks(job, credential)

            name = artifact_name_for(job)
            try:
                size = await self.storage.write(name, audio)
            except OSError as e:
                raise GenerationError(f'Artifact write failed: {e}', job_id=job.id, original_error=e) from e

        except GenerationError as e:
            duration_ms = int((time.time() - start_time) * 1000)
            await self.store.mark_failed(job.id, str(e), duration_ms=duration_ms, chunk_count=chunk_count)
            logger.error('Job %s failed: %s', job.id, e)
            return

        duration_ms = int((time.time() - start_time) * 1000)
        if await self.store.mark_ready(job.id, name, size, duration_ms=duration_ms, chunk_count=chunk_count):
            logger.info('Job %s ready: %s (%d bytes, %d chunks)', job.id, name, size, chunk_count)
        else:
            # Reaped or expired while generating; the artifact has no owner
            logger.warning('Job %s left generating before completion, discarding artifact', job.id)
            await self.storage.delete(name)
