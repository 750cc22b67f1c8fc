"""
Periodic retention sweeps: expire old jobs and reap stuck generations.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple

from ttscache.config import (
    EXPIRY_SWEEP_INTERVAL,
    STUCK_SWEEP_INTERVAL,
    STUCK_JOB_TIMEOUT,
    SWEEP_START_DELAY,
    PLAYBACK_STATE_RETENTION_DAYS,
)
from ttscache.models.job import utcnow
from ttscache.services.generation_store import GenerationStore
from ttscache.services.storage import ArtifactStorage

logger = logging.getLogger(__name__)


@dataclass
class ExpirySweepReport:
    """Outcome of one expiry sweep."""
    expired: List[str] = field(default_factory=list)
    errors: List[Tuple[str, str]] = field(default_factory=list)
    purged_playback_states: int = 0


class RetentionSweeper:
    """
    Runs the expiry sweep and the stuck-job sweep as independent asyncio tasks.

    Both sweeps only move jobs towards ``expired``/``failed`` through
    conditional updates, so they need no coordination with request
    traffic, the worker, or each other.
    """

    def __init__(
        self,
        store: GenerationStore,
        storage: ArtifactStorage,
        expiry_interval: float = EXPIRY_SWEEP_INTERVAL,
        stuck_interval: float = STUCK_SWEEP_INTERVAL,
        stuck_timeout: float = STUCK_JOB_TIMEOUT,
        start_delay: float = SWEEP_START_DELAY,
        playback_state_retention: timedelta = timedelta(days=PLAYBACK_STATE_RETENTION_DAYS),
    ):
        self.store = store
        self.storage = storage
        self.expiry_interval = expiry_interval
        self.stuck_interval = stuck_interval
        self.stuck_timeout = stuck_timeout
        self.start_delay = start_delay
        self.playback_state_retention = playback_state_retention
        self._tasks: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def start(self):
        """Start both periodic sweeps."""
        self._tasks = [
            asyncio.create_task(self._run_periodic('expiry', self.sweep_expired, self.expiry_interval)),
            asyncio.create_task(self._run_periodic('stuck-job', self.sweep_stuck, self.stuck_interval)),
        ]
        logger.info('Periodic cleanup jobs started')

    async def stop(self):
        """Cancel both sweeps."""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _run_periodic(self, name: str, sweep: Callable[[], Awaitable[object]], interval: float):
        await asyncio.sleep(self.start_delay)
        while True:
            try:
                await sweep()
            except Exception:
                # Log but don't stop future sweeps
                logger.exception('Error in %s sweep', name)
            await asyncio.sleep(interval)

    async def sweep_expired(self, now: Optional[datetime] = None) -> ExpirySweepReport:
        """
        Expire every job whose retention window has passed.

        The artifact is deleted first. If deletion fails the job is left
        unexpired so the next sweep retries, and the sweep moves on.
        """
        now = now or utcnow()
        report = ExpirySweepReport()

        jobs = await self.store.find_expired(now)
        if jobs:
            logger.info('Found %d expired files to clean up', len(jobs))

        for job in jobs:
            try:
                if job.artifact_name and await self.storage.delete(job.artifact_name):
                    logger.info('Deleted file: %s', job.artifact_name)
            except OSError as e:
                logger.error('Error deleting artifact for job %s: %s', job.id, e)
                report.errors.append((job.id, str(e)))
                continue

            if await self.store.mark_expired(job.id):
                report.expired.append(job.id)

        report.purged_playback_states = await self.store.purge_playback_states(
            now - self.playback_state_retention
        )

        if jobs or report.purged_playback_states:
            logger.info(
                'Cleanup completed: %d files expired, %d errors, %d playback states purged',
                len(report.expired), len(report.errors), report.purged_playback_states,
            )
        return report

    async def sweep_stuck(self, now: Optional[datetime] = None) -> List[str]:
        """Fail every job that has been generating longer than the stuck timeout."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.stuck_timeout)

        reaped = []
        for job in await self.store.find_stuck(cutoff):
            if await self.store.mark_failed(job.id, 'Generation timed out'):
                logger.warning('Marked stuck generation as failed: %s', job.id)
                reaped.append(job.id)
        return reaped
