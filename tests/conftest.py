"""
Pytest fixtures for testing.
"""
import asyncio
import inspect
from pathlib import Path
from typing import AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from ttscache.client.chunk_cache import ChunkCache
from ttscache.client.player import AudioPlayer
from ttscache.client.resume import ResumeStore
from ttscache.database import build_engine, build_session_factory, get_db, init_db
from ttscache.dependencies import get_generation_service
from ttscache.errors import SynthesisError, UpstreamAuthError
from ttscache.fingerprint import fingerprint
from ttscache.models import utcnow
from ttscache.schemas.job import JobStatusResponse, JobSummary
from ttscache.schemas.playback import ResumeRecord
from ttscache.services import (
    ArtifactStorage,
    CredentialValidator,
    GenerationService,
    GenerationStore,
    GenerationWorker,
    Synthesizer,
)
from ttscache.services.synthesizer import owner_for_credential


CREDENTIAL = 'sk-test-credential'
OTHER_CREDENTIAL = 'sk-other-credential'
REJECTED_CREDENTIAL = 'sk-rejected'
AUTH_HEADERS = {'Authorization': f'Bearer {CREDENTIAL}'}


class FakeSynthesizer(Synthesizer):
    """Returns deterministic bytes per chunk and records every call."""

    def __init__(self):
        self.calls: List[dict] = []
        self.fail_on_call: Optional[int] = None
        self.gate: Optional[asyncio.Event] = None

    async def synthesize(self, text, voice, model, format, speed, credential) -> bytes:
        index = len(self.calls)
        self.calls.append({
            'text': text, 'voice': voice, 'model': model,
            'format': format, 'speed': speed, 'credential': credential,
        })
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on_call is not None and index == self.fail_on_call:
            raise SynthesisError('Speech provider returned HTTP 500: boom', status=500)
        return f'<audio:{text}>'.encode('utf-8')


class FakeCredentialValidator(CredentialValidator):
    """Accepts every credential except ``REJECTED_CREDENTIAL``."""

    def __init__(self):
        self.checked: List[str] = []

    async def resolve_owner(self, credential: str) -> str:
        self.checked.append(credential)
        if credential == REJECTED_CREDENTIAL:
            raise UpstreamAuthError('Credential rejected by speech provider')
        return owner_for_credential(credential)


class FakePlayer(AudioPlayer):
    """In-memory audio player. ``finish()`` simulates the end of the loaded file."""

    def __init__(self, durations: Optional[Dict[Path, float]] = None):
        self.durations = durations or {}
        self.fail_paths = set()
        self.loaded: Optional[Path] = None
        self.playing = False
        self.loads: List[Path] = []
        self._time = 0.0
        self._rate = 1.0
        self._callback: Optional[Callable[[], None]] = None

    def load(self, path: Path) -> None:
        if path in self.fail_paths:
            raise FileNotFoundError(path)
        self.loaded = path
        self.loads.append(path)
        self.playing = False
        self._time = 0.0

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def stop(self) -> None:
        self.playing = False
        self.loaded = None
        self._time = 0.0

    @property
    def current_time(self) -> float:
        return self._time

    @current_time.setter
    def current_time(self, seconds: float) -> None:
        self._time = seconds

    @property
    def duration(self) -> Optional[float]:
        return self.durations.get(self.loaded)

    @property
    def rate(self) -> float:
        return self._rate

    @rate.setter
    def rate(self, value: float) -> None:
        self._rate = value

    def set_finished_callback(self, callback) -> None:
        self._callback = callback

    def finish(self) -> None:
        self._time = self.duration or 0.0
        self.playing = False
        self._callback()


class MemoryResumeStore(ResumeStore):
    """Dict-backed resume store."""

    def __init__(self):
        self.records: Dict[str, ResumeRecord] = {}
        self.saves = 0
        self.clears: List[str] = []

    async def load(self, resume_key):
        return self.records.get(resume_key)

    async def save(self, resume_key, record):
        self.saves += 1
        self.records[resume_key] = record

    async def clear(self, resume_key):
        self.clears.append(resume_key)
        self.records.pop(resume_key, None)


class ScriptedClient:
    """Retrieval client double with per-fingerprint status scripts."""

    def __init__(self):
        self.submit_state = 'generating'
        self.statuses: Dict[str, List[str]] = {}
        self.default_status = 'ready'
        self.submitted: List[str] = []
        self.downloaded: List[str] = []
        self.status_calls = 0

    async def submit(self, text, voice, model, format='mp3', speed=1.0):
        key = fingerprint(text, voice, model, format, speed)
        self.submitted.append(text)
        return JobSummary(id=f'job-{key[:8]}', fingerprint=key, state=self.submit_state, expires_at=utcnow())

    async def status(self, key):
        self.status_calls += 1
        script = self.statuses.get(key)
        state = script.pop(0) if script else self.default_status
        if state == 'not_found':
            return JobStatusResponse(state=state)
        return JobStatusResponse(state=state, id=f'job-{key[:8]}', expires_at=utcnow())

    async def download(self, job_id):
        self.downloaded.append(job_id)
        return f'audio:{job_id}'.encode()


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll a predicate, sync or async, until it returns a truthy value."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        value = predicate()
        if inspect.isawaitable(value):
            value = await value
        if value:
            return value
        if loop.time() >= deadline:
            raise AssertionError('Condition not met in time')
        await asyncio.sleep(interval)


@pytest_asyncio.fixture(scope='function')
async def test_engine(tmp_path):
    """Create a test database engine."""
    engine = build_engine(f'sqlite+aiosqlite:///{tmp_path / "test.db"}')
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest_asyncio.fixture(scope='function')
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def owner():
    return owner_for_credential(CREDENTIAL)


@pytest.fixture
def storage(tmp_path):
    return ArtifactStorage(tmp_path / 'files')


@pytest.fixture
def store(session_factory):
    return GenerationStore(session_factory)


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def credentials():
    return FakeCredentialValidator()


@pytest_asyncio.fixture
async def worker(store, storage, synthesizer):
    worker = GenerationWorker(store, storage, synthesizer, inter_chunk_delay=0)
    yield worker
    await worker.stop()


@pytest.fixture
def service(store, storage, worker, credentials):
    return GenerationService(store, storage, worker, credentials)


@pytest_asyncio.fixture
async def app(service, session_factory):
    """The FastAPI app wired to the test service and database."""
    from server import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_generation_service] = lambda: service
    await service.worker.start()

    yield app

    await service.worker.stop()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    """Authenticated HTTP client for the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test', headers=AUTH_HEADERS) as client:
        yield client


@pytest.fixture
def player():
    return FakePlayer()


@pytest.fixture
def resume_store():
    return MemoryResumeStore()


@pytest.fixture
def cache(tmp_path):
    return ChunkCache(tmp_path / 'chunks')


@pytest.fixture
def scripted():
    return ScriptedClient()
