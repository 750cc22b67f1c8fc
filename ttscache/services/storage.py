"""
Filesystem storage for generated audio artifacts.
"""
import asyncio
import functools
import logging
import os
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


class ArtifactStorage:
    """
    Durable artifact store rooted at a directory.

    Artifact names are flat file names (``{job_id}.{format}``). Blocking file
    I/O runs in the default executor so the event loop stays responsive.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def path_for(self, name: str) -> Path:
        """Resolve an artifact name to its path, rejecting anything outside the root."""
        if not name or Path(name).name != name or name in ('.', '..'):
            raise ValueError(f'Invalid artifact name: {name!r}')
        return self.root / name

    def _write_sync(self, name: str, data: bytes) -> int:
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f'.{name}.tmp')
        with open(tmp_path, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        return path.stat().st_size

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def write(self, name: str, data: bytes) -> int:
        """
        Write an artifact atomically.

        Returns:
            Size of the stored file in bytes
        """
        return await self._run(self._write_sync, name, data)

    async def read(self, name: str) -> bytes:
        """Read an artifact. Raises FileNotFoundError when missing."""
        return await self._run(self.path_for(name).read_bytes)

    async def exists(self, name: str) -> bool:
        """Check whether an artifact is present."""
        return await self._run(self.path_for(name).is_file)

    async def delete(self, name: str) -> bool:
        """
        Delete an artifact.

        Returns:
            True if a file was removed, False if it was already absent
        """
        path = self.path_for(name)
        try:
            await self._run(path.unlink)
        except FileNotFoundError:
            return False
        logger.debug('Deleted artifact %s', name)
        return True
