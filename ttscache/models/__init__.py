"""
SQLAlchemy models.
"""
from ttscache.models.job import Base, GenerationJob, JobState, utcnow
from ttscache.models.playback import PlaybackState

__all__ = ['Base', 'GenerationJob', 'JobState', 'PlaybackState', 'utcnow']
