"""
Local cache of downloaded audio chunks.

Chunks are addressed by the same fingerprint the server uses for dedup,
computed per client-side chunk.
"""
import asyncio
import functools
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

from ttscache.fingerprint import fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkCacheEntry:
    """Local file for one (fingerprint, format) and whether it is present."""
    fingerprint: str
    format: str
    path: Path
    present: bool


class ChunkCache:
    """
    Directory of ``{fingerprint}.{format}`` audio files.

    Example:
        cache = ChunkCache(Path('~/.ttscache/client/chunks').expanduser())
        entry = cache.entry(cache.key_for(chunk, 'nova', 'tts-1', 'mp3'), 'mp3')
        if not entry.present:
            cache.store(entry.fingerprint, 'mp3', audio_bytes)
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def key_for(text: str, voice: str, model: str, format: str, speed: float = 1.0) -> str:
        """Fingerprint of one chunk request."""
        return fingerprint(text, voice, model, format, speed)

    def path_for(self, key: str, format: str) -> Path:
        return self.root / f'{key}.{format}'

    def entry(self, key: str, format: str) -> ChunkCacheEntry:
        path = self.path_for(key, format)
        return ChunkCacheEntry(fingerprint=key, format=format, path=path, present=path.is_file())

    def contains(self, key: str, format: str) -> bool:
        return self.path_for(key, format).is_file()

    def store(self, key: str, format: str, data: bytes) -> Path:
        """Write chunk audio atomically and return its path."""
        if not data:
            raise ValueError('Refusing to cache empty audio')
        path = self.path_for(key, format)
        tmp_path = path.with_name(f'.{path.name}.tmp')
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
        logger.debug('Cached chunk %s (%d bytes)', key[:8], len(data))
        return path

    async def put(self, key: str, format: str, data: bytes) -> Path:
        """``store`` on the default executor, for callers on the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.store, key, format, data))

    def remove(self, key: str, format: str) -> bool:
        try:
            self.path_for(key, format).unlink()
        except FileNotFoundError:
            return False
        return True

    def total_size(self) -> int:
        return sum(p.stat().st_size for p in self._files())

    def _files(self) -> List[Path]:
        return [p for p in self.root.iterdir() if p.is_file() and not p.name.startswith('.')]

    def evict_oldest(self, max_bytes: int) -> List[Path]:
        """
        Delete least recently modified chunks until the cache fits ``max_bytes``.

        Returns:
            Paths that were removed
        """
        files = sorted(self._files(), key=lambda p: p.stat().st_mtime)
        total = sum(p.stat().st_size for p in files)
        removed = []
        for path in files:
            if total <= max_bytes:
                break
            size = path.stat().st_size
            path.unlink()
            total -= size
            removed.append(path)
        if removed:
            logger.info('Evicted %d cached chunks', len(removed))
        return removed
