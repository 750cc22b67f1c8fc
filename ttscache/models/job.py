"""
Generation job model and its state machine.
"""
import uuid
import enum
from datetime import datetime, timedelta, timezone
from typing import Tuple

from sqlalchemy import Column, String, Text, DateTime, Integer, Float, Index
from sqlalchemy import text as sql_text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobState(str, enum.Enum):
    """Lifecycle states for generation jobs."""
    generating = 'generating'
    ready = 'ready'
    failed = 'failed'
    expired = 'expired'


# target state -> states it may be entered from
TRANSITIONS = {
    JobState.ready: (JobState.generating,),
    JobState.failed: (JobState.generating,),
    JobState.expired: (JobState.generating, JobState.ready, JobState.failed),
}

# States that count as an outstanding or completed request for dedup
ACTIVE_STATES = (JobState.generating, JobState.ready)


def allowed_sources(target: JobState) -> Tuple[str, ...]:
    """Return the state values a job may be in to move to ``target``."""
    return tuple(s.value for s in TRANSITIONS.get(target, ()))


def can_transition(current: JobState, target: JobState) -> bool:
    """Check whether ``current -> target`` is a legal transition."""
    return JobState(current).value in allowed_sources(JobState(target))


class GenerationJob(Base):
    """
    One generation request per (owner, fingerprint) still worth remembering.

    Attributes:
        id: Opaque job identifier (UUID), used to address the artifact
        owner: Caller identity
        fingerprint: Content address of (text, voice, model, format, speed)
        state: Current lifecycle state
        artifact_name: Stored artifact name, set when ready
        artifact_size: Artifact size in bytes, set when ready
        created_at: Job creation timestamp
        expires_at: created_at + retention window, never recomputed
        completed_at: When the worker finished (ready or failed)
        error_message: Failure details
        duration_ms: Wall time spent generating
        chunk_count: Number of provider calls made
    """
    __tablename__ = 'jobs'
    __table_args__ = (
        Index('ix_jobs_owner_fingerprint', 'owner', 'fingerprint'),
        Index('ix_jobs_state_expires_at', 'state', 'expires_at'),
        # At most one generating/ready job per (owner, fingerprint)
        Index(
            'uq_jobs_owner_fingerprint_active',
            'owner',
            'fingerprint',
            unique=True,
            sqlite_where=sql_text("state IN ('generating', 'ready')"),
            postgresql_where=sql_text("state IN ('generating', 'ready')"),
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner = Column(String(64), nullable=False)
    fingerprint = Column(String(64), nullable=False)
    text = Column(Text, nullable=False)
    voice = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    format = Column(String(10), nullable=False)
    speed = Column(Float, nullable=False, default=1.0)
    state = Column(String(20), nullable=False, default=JobState.generating.value)
    artifact_name = Column(Text, nullable=True)
    artifact_size = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    chunk_count = Column(Integer, nullable=True)

    @classmethod
    def new(cls, owner: str, fingerprint: str, text: str, voice: str, model: str,
            format: str, speed: float, retention: timedelta, now: datetime = None):
        """Build a fresh ``generating`` job with its expiry fixed at creation."""
        created_at = now or utcnow()
        return cls(
            id=str(uuid.uuid4()),
            owner=owner,
            fingerprint=fingerprint,
            text=text,
            voice=voice,
            model=model,
            format=format,
            speed=float(speed),
            state=JobState.generating.value,
            created_at=created_at,
            expires_at=created_at + retention,
        )

    def __repr__(self):
        return f'<GenerationJob {self.id} state={self.state}>'
