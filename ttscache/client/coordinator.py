"""
Client chunk synchronisation.

Makes every chunk of a text available in the local chunk cache, submitting
and polling the remote cache for the ones that are missing.
"""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ttscache.chunker import split_text
from ttscache.client.chunk_cache import ChunkCache
from ttscache.client.remote import RetrievalClient
from ttscache.config import CLIENT_CHUNK_LENGTH, POLL_INTERVAL, POLL_TIMEOUT
from ttscache.errors import GenerationError, PollTimeoutError, SyncCancelledError, ValidationError
from ttscache.fingerprint import fingerprint
from ttscache.models.job import JobState
from ttscache.schemas.job import NOT_FOUND

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class CancellationToken:
    """Cooperative cancellation shared between a caller and a sync in progress."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelledError('Chunk sync cancelled')

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises:
            SyncCancelledError: If the token is cancelled before or during the wait
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()


@dataclass
class _PendingChunk:
    index: int
    text: str
    key: str


class SyncCoordinator:
    """
    Fetches the audio for a text chunk by chunk.

    Chunks already in the local cache are never requested again. Missing
    chunks are submitted together, then polled as one batch until all are
    ready, one fails, or the poll ceiling is reached.
    """

    def __init__(
        self,
        client: RetrievalClient,
        cache: ChunkCache,
        voice: str,
        model: str,
        format: str = 'mp3',
        speed: float = 1.0,
        chunk_size: int = CLIENT_CHUNK_LENGTH,
        poll_interval: float = POLL_INTERVAL,
        poll_timeout: float = POLL_TIMEOUT,
    ):
        self.client = client
        self.cache = cache
        self.voice = voice
        self.model = model
        self.format = format
        self.speed = speed
        self.chunk_size = chunk_size
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    def chunks_for(self, text: str) -> List[str]:
        return split_text(text, self.chunk_size)

    def chunk_key(self, chunk: str) -> str:
        return fingerprint(chunk, self.voice, self.model, self.format, self.speed)

    def resume_fingerprint(self, text: str) -> str:
        """Fingerprint of the whole text under the current voice settings.

        Changing voice, model, format or speed invalidates saved positions.
        """
        return fingerprint(text, self.voice, self.model, self.format, self.speed)

    async def prepare(
        self,
        text: str,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Path]:
        """
        Ensure every chunk of ``text`` is cached locally.

        Args:
            text: Full text to be played
            token: Cancels polling and downloads when triggered
            on_progress: Called with (completed_chunks, total_chunks)

        Returns:
            Local chunk paths in playback order

        Raises:
            ValidationError: If the text has nothing to speak
            GenerationError: If the server failed any chunk
            PollTimeoutError: If chunks were still generating at the ceiling
            SyncCancelledError: If the token was cancelled
            RetrievalError: On transport failures
        """
        token = token or CancellationToken()
        chunks = self.chunks_for(text)
        if not chunks:
            raise ValidationError('Text is required')

        total = len(chunks)
        keys = [self.chunk_key(chunk) for chunk in chunks]
        missing = [
            _PendingChunk(index, chunk, key)
            for index, (chunk, key) in enumerate(zip(chunks, keys))
            if not self.cache.contains(key, self.format)
        ]
        completed = total - len(missing)
        logger.info('Preparing %d chunks (%d cached)', total, completed)

        def report(done: int):
            if on_progress:
                on_progress(done, total)

        report(completed)

        pending: Dict[int, _PendingChunk] = {}
        for chunk in missing:
            token.raise_if_cancelled()
            if await self._submit(chunk):
                completed += 1
                report(completed)
            else:
                pending[chunk.index] = chunk

        if pending:
            await self._poll(pending, completed, total, token, report)

        return [self.cache.path_for(key, self.format) for key in keys]

    async def _submit(self, chunk: _PendingChunk) -> bool:
        """Submit one chunk; True when it was ready and is now cached."""
        summary = await self.client.submit(chunk.text, self.voice, self.model, self.format, self.speed)
        if summary.state == JobState.ready.value:
            await self._download(chunk, summary.id)
            return True
        if summary.state == JobState.failed.value:
            raise GenerationError(f'Generation failed for chunk {chunk.index}', job_id=summary.id)
        return False

    async def _download(self, chunk: _PendingChunk, job_id: str) -> None:
        audio = await self.client.download(job_id)
        await self.cache.put(chunk.key, self.format, audio)
        logger.debug('Downloaded chunk %d (job %s)', chunk.index, job_id)

    async def _poll(
        self,
        pending: Dict[int, _PendingChunk],
        completed: int,
        total: int,
        token: CancellationToken,
        report: Callable[[int], None],
    ) -> int:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_timeout

        while pending:
            if loop.time() >= deadline:
                raise PollTimeoutError(
                    f'{len(pending)} of {total} chunks still generating after {self.poll_timeout:.0f}s',
                    completed=completed,
                    total=total,
                )
            await token.sleep(self.poll_interval)

            for index in sorted(pending):
                token.raise_if_cancelled()
                chunk = pending[index]
                status = await self.client.status(chunk.key)

                if status.state == JobState.ready.value and status.id:
                    await self._download(chunk, status.id)
                elif status.state == JobState.failed.value:
                    raise GenerationError(f'Generation failed for chunk {chunk.index}', job_id=status.id)
                elif status.state in (NOT_FOUND, JobState.expired.value):
                    logger.info('Chunk %d vanished from the server, resubmitting', chunk.index)
                    if not await self._submit(chunk):
                        continue
                else:
                    continue

                del pending[index]
                completed += 1
                report(completed)

        return completed
