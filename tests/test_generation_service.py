"""
Generation service tests: validation, dedup, download and delete.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from ttscache.config import MAX_TEXT_LENGTH
from ttscache.errors import NotFoundError, UpstreamAuthError, ValidationError
from ttscache.fingerprint import fingerprint
from ttscache.models import JobState
from ttscache.services.synthesizer import owner_for_credential

from conftest import CREDENTIAL, OTHER_CREDENTIAL, REJECTED_CREDENTIAL


async def submit(service, text='Hello world.', credential=CREDENTIAL, **kwargs):
    params = {'voice': 'nova', 'model': 'tts-1', 'format': 'mp3', 'speed': 1.0}
    params.update(kwargs)
    return await service.submit(credential=credential, text=text, **params)


class TestAuthenticate:
    """Tests for GenerationService.authenticate()."""

    @pytest.mark.asyncio
    async def test_resolves_owner(self, service, owner):
        assert await service.authenticate(CREDENTIAL) == owner

    @pytest.mark.asyncio
    async def test_rejected_credential(self, service):
        with pytest.raises(UpstreamAuthError):
            await service.authenticate(REJECTED_CREDENTIAL)

    @pytest.mark.asyncio
    async def test_submit_checks_credential_first(self, service, store):
        service.worker.enqueue = AsyncMock()

        with pytest.raises(UpstreamAuthError):
            await submit(service, credential=REJECTED_CREDENTIAL)

        jobs, total = await store.list_for_owner(owner_for_credential(REJECTED_CREDENTIAL))
        assert (jobs, total) == ([], 0)
        service.worker.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_submit_owner_follows_credential(self, service, owner):
        service.worker.enqueue = AsyncMock()

        job = await submit(service)

        assert job.owner == owner


class TestValidation:
    """Tests for request validation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize('text', ['', '   ', '\n\t'])
    async def test_rejects_blank_text(self, service, owner, text):
        with pytest.raises(ValidationError):
            await submit(service, text=text)

    @pytest.mark.asyncio
    async def test_rejects_oversized_text(self, service, owner):
        with pytest.raises(ValidationError, match='Text too long'):
            await submit(service, text='a' * (MAX_TEXT_LENGTH + 1))

    @pytest.mark.asyncio
    async def test_rejects_unknown_format(self, service, owner):
        with pytest.raises(ValidationError, match='Unsupported format'):
            await submit(service, format='ogg')

    @pytest.mark.asyncio
    @pytest.mark.parametrize('speed', [0.1, 4.5])
    async def test_rejects_speed_out_of_range(self, service, owner, speed):
        with pytest.raises(ValidationError):
            await submit(service, speed=speed)

    @pytest.mark.asyncio
    async def test_rejects_blank_voice(self, service, owner):
        with pytest.raises(ValidationError):
            await submit(service, voice=' ')

    @pytest.mark.asyncio
    async def test_rejected_request_creates_no_job(self, service, store, owner):
        with pytest.raises(ValidationError):
            await submit(service, text='')

        jobs, total = await store.list_for_owner(owner)
        assert total == 0


class TestSubmitDedup:
    """Tests for the submit dedup rule."""

    @pytest.mark.asyncio
    async def test_new_request_creates_generating_job(self, service, owner):
        service.worker.enqueue = AsyncMock()

        job = await submit(service)

        assert job.state == JobState.generating.value
        assert job.fingerprint == fingerprint('Hello world.', 'nova', 'tts-1', 'mp3', 1.0)
        service.worker.enqueue.assert_awaited_once_with(job.id, CREDENTIAL)

    @pytest.mark.asyncio
    async def test_generating_job_is_reused(self, service, owner):
        service.worker.enqueue = AsyncMock()

        first = await submit(service)
        second = await submit(service)

        assert second.id == first.id
        assert service.worker.enqueue.await_count == 1

    @pytest.mark.asyncio
    async def test_ready_job_is_reused(self, service, store, owner):
        service.worker.enqueue = AsyncMock()
        first = await submit(service)
        await store.mark_ready(first.id, f'{first.id}.mp3', 10)

        second = await submit(service)

        assert second.id == first.id
        assert second.state == JobState.ready.value

    @pytest.mark.asyncio
    async def test_failed_job_is_retried_with_new_job(self, service, store, owner):
        service.worker.enqueue = AsyncMock()
        first = await submit(service)
        await store.mark_failed(first.id, 'boom')

        second = await submit(service)

        assert second.id != first.id
        assert second.state == JobState.generating.value

    @pytest.mark.asyncio
    async def test_expired_job_is_replaced(self, service, store, owner):
        service.worker.enqueue = AsyncMock()
        first = await submit(service)
        await store.mark_expired(first.id)

        second = await submit(service)

        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_dedup_is_per_owner(self, service):
        service.worker.enqueue = AsyncMock()

        mine = await submit(service)
        theirs = await submit(service, credential=OTHER_CREDENTIAL)

        assert mine.id != theirs.id
        assert mine.fingerprint == theirs.fingerprint

    @pytest.mark.asyncio
    async def test_speed_is_part_of_identity(self, service, owner):
        service.worker.enqueue = AsyncMock()

        normal = await submit(service, speed=1.0)
        fast = await submit(service, speed=1.5)

        assert normal.id != fast.id

    @pytest.mark.asyncio
    async def test_concurrent_identical_submits_create_one_job(self, service, store, owner):
        service.worker.enqueue = AsyncMock()

        jobs = await asyncio.gather(*[submit(service) for _ in range(10)])

        assert len({job.id for job in jobs}) == 1
        assert service.worker.enqueue.await_count == 1
        _, total = await store.list_for_owner(owner)
        assert total == 1

    @pytest.mark.asyncio
    async def test_submit_end_to_end_generates_audio(self, service, store, owner, synthesizer):
        await service.worker.start()

        job = await submit(service)

        for _ in range(200):
            current = await store.get(job.id)
            if current.state != JobState.generating.value:
                break
            await asyncio.sleep(0.01)

        assert current.state == JobState.ready.value
        assert len(synthesizer.calls) == 1


class TestStatus:
    """Tests for status by fingerprint."""

    @pytest.mark.asyncio
    async def test_unknown_fingerprint(self, service, owner):
        assert await service.status_by_fingerprint(owner, 'b' * 64) is None

    @pytest.mark.asyncio
    async def test_other_owner_sees_nothing(self, service, owner):
        service.worker.enqueue = AsyncMock()
        job = await submit(service)

        assert await service.status_by_fingerprint('someone-else', job.fingerprint) is None
        assert (await service.status_by_fingerprint(owner, job.fingerprint)).id == job.id


class TestDownload:
    """Tests for GenerationService.download()."""

    @pytest.mark.asyncio
    async def test_ready_artifact(self, service, store, storage, owner):
        service.worker.enqueue = AsyncMock()
        job = await submit(service)
        size = await storage.write(f'{job.id}.mp3', b'ID3audio')
        await store.mark_ready(job.id, f'{job.id}.mp3', size)

        artifact = await service.download(owner, job.id)

        assert artifact.media_type == 'audio/mpeg'
        assert artifact.path.read_bytes() == b'ID3audio'
        assert artifact.size == 8

    @pytest.mark.asyncio
    async def test_not_ready(self, service, owner):
        service.worker.enqueue = AsyncMock()
        job = await submit(service)

        with pytest.raises(NotFoundError):
            await service.download(owner, job.id)

    @pytest.mark.asyncio
    async def test_other_owner(self, service, store, storage, owner):
        service.worker.enqueue = AsyncMock()
        job = await submit(service)
        await storage.write(f'{job.id}.mp3', b'audio')
        await store.mark_ready(job.id, f'{job.id}.mp3', 5)

        with pytest.raises(NotFoundError):
            await service.download('someone-else', job.id)

    @pytest.mark.asyncio
    async def test_missing_artifact_is_not_found(self, service, store, owner, caplog):
        service.worker.enqueue = AsyncMock()
        job = await submit(service)
        await store.mark_ready(job.id, f'{job.id}.mp3', 5)

        with pytest.raises(NotFoundError):
            await service.download(owner, job.id)

        assert 'Integrity error' in caplog.text


class TestDelete:
    """Tests for GenerationService.delete()."""

    @pytest.mark.asyncio
    async def test_delete_expires_job_and_removes_artifact(self, service, store, storage, owner):
        service.worker.enqueue = AsyncMock()
        job = await submit(service)
        await storage.write(f'{job.id}.mp3', b'audio')
        await store.mark_ready(job.id, f'{job.id}.mp3', 5)

        await service.delete(owner, job.id)

        assert (await store.get(job.id)).state == JobState.expired.value
        assert not await storage.exists(f'{job.id}.mp3')
        assert await service.status_by_fingerprint(owner, job.fingerprint) is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, service, owner):
        service.worker.enqueue = AsyncMock()
        job = await submit(service)

        await service.delete(owner, job.id)
        await service.delete(owner, job.id)

    @pytest.mark.asyncio
    async def test_delete_other_owner(self, service, owner):
        service.worker.enqueue = AsyncMock()
        job = await submit(service)

        with pytest.raises(NotFoundError):
            await service.delete('someone-else', job.id)
