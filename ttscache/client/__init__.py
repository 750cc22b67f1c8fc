"""
Client side of the generation cache: chunk sync, resume storage and playback.
"""
from ttscache.client.chunk_cache import ChunkCache, ChunkCacheEntry
from ttscache.client.coordinator import CancellationToken, SyncCoordinator
from ttscache.client.narrator import Narrator
from ttscache.client.player import AudioPlayer
from ttscache.client.remote import RetrievalClient
from ttscache.client.resume import FileResumeStore, RemoteResumeStore, ResumeStore
from ttscache.client.sequencer import (
    PlaybackSequencer,
    PlaybackSnapshot,
    PlaybackStatus,
    SeekTarget,
    locate,
    position_of,
    reduce,
)

__all__ = [
    'AudioPlayer',
    'CancellationToken',
    'ChunkCache',
    'ChunkCacheEntry',
    'FileResumeStore',
    'Narrator',
    'PlaybackSequencer',
    'PlaybackSnapshot',
    'PlaybackStatus',
    'RemoteResumeStore',
    'ResumeStore',
    'RetrievalClient',
    'SeekTarget',
    'SyncCoordinator',
    'locate',
    'position_of',
    'reduce',
]
