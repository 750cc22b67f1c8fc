"""
Server-side copy of client resume positions.
"""
import uuid
from sqlalchemy import Column, String, DateTime, Integer, Float, UniqueConstraint

from ttscache.models.job import Base, utcnow


class PlaybackState(Base):
    """
    Last known playback position for one (owner, resume_key).

    Attributes:
        resume_key: Caller-chosen key, typically a document id
        text_fingerprint: Fingerprint of the text the position refers to
        chunk_index: Index of the chunk being played
        elapsed_seconds: Offset inside that chunk
        updated_at: Last sync time, used for purging stale rows
    """
    __tablename__ = 'playback_states'
    __table_args__ = (
        UniqueConstraint('owner', 'resume_key', name='uq_playback_owner_resume_key'),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner = Column(String(64), nullable=False)
    resume_key = Column(String(255), nullable=False)
    text_fingerprint = Column(String(64), nullable=False)
    chunk_index = Column(Integer, nullable=False, default=0)
    elapsed_seconds = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<PlaybackState {self.resume_key} chunk={self.chunk_index}>'
