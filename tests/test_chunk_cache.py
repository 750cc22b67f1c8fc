"""
Client chunk cache tests.
"""
import asyncio
import os

import pytest

from ttscache.client.chunk_cache import ChunkCache
from ttscache.fingerprint import fingerprint


class TestChunkCache:
    """Tests for ChunkCache."""

    def test_key_matches_server_fingerprint(self):
        assert ChunkCache.key_for('Hi.', 'nova', 'tts-1', 'mp3', 1.0) == fingerprint('Hi.', 'nova', 'tts-1', 'mp3', 1.0)

    def test_entry_for_missing_chunk(self, cache):
        entry = cache.entry('a' * 64, 'mp3')

        assert entry.present is False
        assert entry.path == cache.root / f'{"a" * 64}.mp3'

    def test_store_then_entry(self, cache):
        path = cache.store('a' * 64, 'mp3', b'audio')

        assert path.read_bytes() == b'audio'
        assert cache.contains('a' * 64, 'mp3')
        assert cache.entry('a' * 64, 'mp3').present
        assert not cache.contains('a' * 64, 'wav')

    @pytest.mark.asyncio
    async def test_put_writes_off_the_loop(self, cache):
        keys = [c * 64 for c in 'abc']

        paths = await asyncio.gather(*[cache.put(key, 'mp3', key.encode()) for key in keys])

        assert [p.read_bytes() for p in paths] == [key.encode() for key in keys]
        assert all(cache.contains(key, 'mp3') for key in keys)

    @pytest.mark.asyncio
    async def test_put_rejects_empty_audio(self, cache):
        with pytest.raises(ValueError):
            await cache.put('a' * 64, 'mp3', b'')

    def test_store_rejects_empty_audio(self, cache):
        with pytest.raises(ValueError):
            cache.store('a' * 64, 'mp3', b'')

        assert not cache.contains('a' * 64, 'mp3')

    def test_remove(self, cache):
        cache.store('a' * 64, 'mp3', b'audio')

        assert cache.remove('a' * 64, 'mp3') is True
        assert cache.remove('a' * 64, 'mp3') is False

    def test_evict_oldest_first(self, cache):
        old = cache.store('1' * 64, 'mp3', b'x' * 100)
        middle = cache.store('2' * 64, 'mp3', b'x' * 100)
        new = cache.store('3' * 64, 'mp3', b'x' * 100)
        os.utime(old, (1000, 1000))
        os.utime(middle, (2000, 2000))
        os.utime(new, (3000, 3000))

        removed = cache.evict_oldest(150)

        assert removed == [old, middle]
        assert new.exists()
        assert cache.total_size() == 100

    def test_evict_noop_under_limit(self, cache):
        cache.store('1' * 64, 'mp3', b'x' * 100)

        assert cache.evict_oldest(1000) == []
