"""
Resume record persistence.

A resume record is stored per resume key and only honoured when its text
fingerprint matches the text being played.
"""
import asyncio
import functools
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import ValidationError as SchemaValidationError

from ttscache.client.remote import RetrievalClient
from ttscache.config import CLIENT_RESUME_PATH
from ttscache.schemas.playback import ResumeRecord

logger = logging.getLogger(__name__)


class ResumeStore(ABC):
    """Async key-value store of resume records."""

    @abstractmethod
    async def load(self, resume_key: str) -> Optional[ResumeRecord]:
        pass

    @abstractmethod
    async def save(self, resume_key: str, record: ResumeRecord) -> None:
        pass

    @abstractmethod
    async def clear(self, resume_key: str) -> None:
        pass


class FileResumeStore(ResumeStore):
    """
    Resume records in a single local JSON file.

    The whole file is rewritten on every save. Unreadable files are treated
    as empty so a corrupt file never blocks playback.
    """

    def __init__(self, path: Union[str, Path] = CLIENT_RESUME_PATH):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_all(self) -> Dict[str, dict]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning('Ignoring unreadable resume file %s: %s', self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f'.{self.path.name}.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def load(self, resume_key: str) -> Optional[ResumeRecord]:
        async with self._lock:
            raw = (await self._run(self._read_all)).get(resume_key)
        if raw is None:
            return None
        try:
            return ResumeRecord.model_validate(raw)
        except SchemaValidationError:
            logger.warning('Discarding malformed resume record for %s', resume_key)
            return None

    async def save(self, resume_key: str, record: ResumeRecord) -> None:
        async with self._lock:
            data = await self._run(self._read_all)
            data[resume_key] = record.model_dump()
            await self._run(self._write_all, data)

    async def clear(self, resume_key: str) -> None:
        async with self._lock:
            data = await self._run(self._read_all)
            if data.pop(resume_key, None) is not None:
                await self._run(self._write_all, data)


class RemoteResumeStore(ResumeStore):
    """Resume records synced through the server's playback endpoints."""

    def __init__(self, client: RetrievalClient):
        self.client = client

    async def load(self, resume_key: str) -> Optional[ResumeRecord]:
        state = await self.client.get_resume(resume_key)
        if state is None:
            return None
        return ResumeRecord(
            text_fingerprint=state.text_fingerprint,
            chunk_index=state.chunk_index,
            elapsed_seconds=state.elapsed_seconds,
        )

    async def save(self, resume_key: str, record: ResumeRecord) -> None:
        await self.client.put_resume(resume_key, record)

    async def clear(self, resume_key: str) -> None:
        await self.client.delete_resume(resume_key)
