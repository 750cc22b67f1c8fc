"""
Resume store tests.
"""
import asyncio
import json

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from ttscache.client.remote import RetrievalClient
from ttscache.client.resume import FileResumeStore, RemoteResumeStore
from ttscache.schemas.playback import ResumeRecord

from conftest import CREDENTIAL


RECORD = ResumeRecord(text_fingerprint='f' * 64, chunk_index=2, elapsed_seconds=4.5)


class TestFileResumeStore:
    """Tests for FileResumeStore."""

    @pytest.mark.asyncio
    async def test_missing_file_loads_nothing(self, tmp_path):
        store = FileResumeStore(tmp_path / 'resume.json')

        assert await store.load('doc-1') is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        store = FileResumeStore(tmp_path / 'nested' / 'resume.json')

        await store.save('doc-1', RECORD)

        assert await store.load('doc-1') == RECORD

    @pytest.mark.asyncio
    async def test_survives_a_new_instance(self, tmp_path):
        await FileResumeStore(tmp_path / 'resume.json').save('doc-1', RECORD)

        assert await FileResumeStore(tmp_path / 'resume.json').load('doc-1') == RECORD

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, tmp_path):
        store = FileResumeStore(tmp_path / 'resume.json')
        other = ResumeRecord(text_fingerprint='e' * 64, chunk_index=0, elapsed_seconds=0)

        await store.save('doc-1', RECORD)
        await store.save('doc-2', other)
        await store.clear('doc-1')

        assert await store.load('doc-1') is None
        assert await store.load('doc-2') == other

    @pytest.mark.asyncio
    async def test_clear_missing_key(self, tmp_path):
        store = FileResumeStore(tmp_path / 'resume.json')

        await store.clear('doc-1')

        assert not (tmp_path / 'resume.json').exists()

    @pytest.mark.asyncio
    async def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / 'resume.json'
        path.write_text('{not json')
        store = FileResumeStore(path)

        assert await store.load('doc-1') is None
        await store.save('doc-1', RECORD)
        assert json.loads(path.read_text())['doc-1']['chunk_index'] == 2

    @pytest.mark.asyncio
    async def test_malformed_record_is_ignored(self, tmp_path):
        path = tmp_path / 'resume.json'
        path.write_text(json.dumps({'doc-1': {'chunk_index': -3}}))

        assert await FileResumeStore(path).load('doc-1') is None

    @pytest.mark.asyncio
    async def test_concurrent_saves_all_land(self, tmp_path):
        store = FileResumeStore(tmp_path / 'resume.json')
        keys = [f'doc-{i}' for i in range(8)]

        await asyncio.gather(*[store.save(key, RECORD) for key in keys])

        assert sorted(json.loads((tmp_path / 'resume.json').read_text())) == sorted(keys)
        for key in keys:
            assert await store.load(key) == RECORD


class TestRemoteResumeStore:
    """Tests for RemoteResumeStore against the playback endpoints."""

    @pytest_asyncio.fixture
    async def remote_store(self, app):
        http = AsyncClient(transport=ASGITransport(app=app), base_url='http://test')
        yield RemoteResumeStore(RetrievalClient('http://test', CREDENTIAL, client=http))
        await http.aclose()

    @pytest.mark.asyncio
    async def test_round_trip(self, remote_store):
        assert await remote_store.load('doc-1') is None

        await remote_store.save('doc-1', RECORD)
        assert await remote_store.load('doc-1') == RECORD

        await remote_store.clear('doc-1')
        assert await remote_store.load('doc-1') is None
