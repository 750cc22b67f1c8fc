"""
Durable table of generation jobs keyed by (owner, fingerprint).

All state changes are conditional updates guarded by the job state machine,
so concurrent writers (worker, sweeper, delete requests) can only ever move
a job forward.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ttscache.config import RETENTION_DAYS
from ttscache.models.job import (
    GenerationJob, JobState, ACTIVE_STATES, allowed_sources, utcnow,
)
from ttscache.models.playback import PlaybackState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnerUsage:
    """Aggregate usage figures for one owner."""
    files_count: int
    storage_used_bytes: int
    generated_today: int


class GenerationStore:
    """
    Job persistence on top of an async session factory.

    Each method runs in its own short session; returned jobs are detached
    snapshots (sessions use ``expire_on_commit=False``).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        retention: timedelta = timedelta(days=RETENTION_DAYS),
    ):
        self._session_factory = session_factory
        self.retention = retention

    async def create(
        self,
        owner: str,
        fingerprint: str,
        text: str,
        voice: str,
        model: str,
        format: str,
        speed: float,
        now: Optional[datetime] = None,
    ) -> GenerationJob:
        """
        Insert a new ``generating`` job.

        Raises:
            sqlalchemy.exc.IntegrityError: If an active job already exists
                for (owner, fingerprint)
        """
        job = GenerationJob.new(
            owner=owner,
            fingerprint=fingerprint,
            text=text,
            voice=voice,
            model=model,
            format=format,
            speed=speed,
            retention=self.retention,
            now=now,
        )
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
        return job

    async def get(self, job_id: str) -> Optional[GenerationJob]:
        """Fetch a job by id regardless of owner."""
        async with self._session_factory() as session:
            result = await session.execute(select(GenerationJob).where(GenerationJob.id == job_id))
            return result.scalar_one_or_none()

    async def get_owned(self, owner: str, job_id: str) -> Optional[GenerationJob]:
        """Fetch a job only if it belongs to ``owner``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(GenerationJob).where(
                    GenerationJob.id == job_id,
                    GenerationJob.owner == owner,
                )
            )
            return result.scalar_one_or_none()

    async def find_latest(self, owner: str, fingerprint: str) -> Optional[GenerationJob]:
        """Most recent non-expired job for (owner, fingerprint)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(GenerationJob)
                .where(
                    GenerationJob.owner == owner,
                    GenerationJob.fingerprint == fingerprint,
                    GenerationJob.state != JobState.expired.value,
                )
                .order_by(GenerationJob.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_active(self, owner: str, fingerprint: str) -> Optional[GenerationJob]:
        """The generating or ready job for (owner, fingerprint), if any."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(GenerationJob)
                .where(
                    GenerationJob.owner == owner,
                    GenerationJob.fingerprint == fingerprint,
                    GenerationJob.state.in_([s.value for s in ACTIVE_STATES]),
                )
                .order_by(GenerationJob.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def _transition(self, session: AsyncSession, job_id: str, target: JobState, **values) -> bool:
        result = await session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,
                GenerationJob.state.in_(allowed_sources(target)),
            )
            .values(state=target.value, **values)
        )
        return result.rowcount == 1

    async def mark_ready(
        self,
        job_id: str,
        artifact_name: str,
        artifact_size: int,
        duration_ms: Optional[int] = None,
        chunk_count: Optional[int] = None,
    ) -> bool:
        """
        Move a generating job to ``ready``.

        Returns:
            False if the job was no longer generating (reaped or expired)
        """
        async with self._session_factory() as session:
            changed = await self._transition(
                session,
                job_id,
                JobState.ready,
                artifact_name=artifact_name,
                artifact_size=artifact_size,
                completed_at=utcnow(),
                duration_ms=duration_ms,
                chunk_count=chunk_count,
            )
            await session.commit()
        return changed

    async def mark_failed(
        self,
        job_id: str,
        error_message: str,
        duration_ms: Optional[int] = None,
        chunk_count: Optional[int] = None,
    ) -> bool:
        """Move a generating job to ``failed``."""
        async with self._session_factory() as session:
            changed = await self._transition(
                session,
                job_id,
                JobState.failed,
                error_message=error_message,
                completed_at=utcnow(),
                duration_ms=duration_ms,
                chunk_count=chunk_count,
            )
            await session.commit()
        return changed

    async def mark_expired(self, job_id: str) -> bool:
        """Soft-delete a job. Returns False if it was already expired."""
        async with self._session_factory() as session:
            changed = await self._transition(session, job_id, JobState.expired)
            await session.commit()
        return changed

    async def find_expired(self, now: Optional[datetime] = None) -> List[GenerationJob]:
        """Jobs past ``expires_at`` that are not yet marked expired."""
        now = now or utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                select(GenerationJob)
                .where(
                    GenerationJob.expires_at < now,
                    GenerationJob.state != JobState.expired.value,
                )
                .order_by(GenerationJob.expires_at)
            )
            return list(result.scalars().all())

    async def find_stuck(self, cutoff: datetime) -> List[GenerationJob]:
        """Jobs still generating that were created before ``cutoff``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(GenerationJob)
                .where(
                    GenerationJob.state == JobState.generating.value,
                    GenerationJob.created_at < cutoff,
                )
                .order_by(GenerationJob.created_at)
            )
            return list(result.scalars().all())

    async def list_for_owner(self, owner: str, limit: int = 50, offset: int = 0) -> Tuple[List[GenerationJob], int]:
        """Non-expired jobs for an owner, newest first, with the total count."""
        visible = (
            GenerationJob.owner == owner,
            GenerationJob.state != JobState.expired.value,
        )
        async with self._session_factory() as session:
            count_result = await session.execute(select(func.count(GenerationJob.id)).where(*visible))
            total = count_result.scalar()

            result = await session.execute(
                select(GenerationJob)
                .where(*visible)
                .order_by(GenerationJob.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all()), total

    async def expired_ids(self, owner: str, since: Optional[datetime] = None) -> List[str]:
        """Ids of an owner's expired jobs, optionally only those expiring after ``since``."""
        conditions = [
            GenerationJob.owner == owner,
            GenerationJob.state == JobState.expired.value,
        ]
        if since is not None:
            conditions.append(GenerationJob.expires_at > since)
        async with self._session_factory() as session:
            result = await session.execute(
                select(GenerationJob.id).where(*conditions).order_by(GenerationJob.expires_at)
            )
            return [row[0] for row in result.fetchall()]

    async def usage(self, owner: str, now: Optional[datetime] = None) -> OwnerUsage:
        """Count an owner's live jobs, stored bytes and jobs created today (UTC)."""
        now = now or utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        async with self._session_factory() as session:
            files_count = (await session.execute(
                select(func.count(GenerationJob.id)).where(
                    GenerationJob.owner == owner,
                    GenerationJob.state != JobState.expired.value,
                )
            )).scalar()
            storage = (await session.execute(
                select(func.coalesce(func.sum(GenerationJob.artifact_size), 0)).where(
                    GenerationJob.owner == owner,
                    GenerationJob.state == JobState.ready.value,
                )
            )).scalar()
            today = (await session.execute(
                select(func.count(GenerationJob.id)).where(
                    GenerationJob.owner == owner,
                    GenerationJob.created_at >= start_of_day,
                )
            )).scalar()
        return OwnerUsage(files_count=files_count, storage_used_bytes=storage, generated_today=today)

    async def purge_playback_states(self, cutoff: datetime) -> int:
        """Delete playback positions not synced since ``cutoff``."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(PlaybackState).where(PlaybackState.updated_at < cutoff)
            )
            await session.commit()
        return result.rowcount
