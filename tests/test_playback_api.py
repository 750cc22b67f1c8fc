"""
Playback position sync endpoint tests.
"""
import asyncio

import pytest

from conftest import OTHER_CREDENTIAL


RECORD = {'text_fingerprint': 'f' * 64, 'chunk_index': 2, 'elapsed_seconds': 12.5}


class TestPlaybackEndpoints:
    """Tests for /playback/{resume_key}."""

    @pytest.mark.asyncio
    async def test_get_unknown_key_is_404(self, client):
        response = await client.get('/playback/doc-1')

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_put_then_get(self, client):
        put = await client.put('/playback/doc-1', json=RECORD)

        assert put.status_code == 200
        assert put.json()['resume_key'] == 'doc-1'

        response = await client.get('/playback/doc-1')
        data = response.json()
        assert data['text_fingerprint'] == RECORD['text_fingerprint']
        assert data['chunk_index'] == 2
        assert data['elapsed_seconds'] == 12.5
        assert data['updated_at'] is not None

    @pytest.mark.asyncio
    async def test_put_replaces_existing(self, client):
        await client.put('/playback/doc-1', json=RECORD)
        await client.put('/playback/doc-1', json={**RECORD, 'chunk_index': 3, 'elapsed_seconds': 1.0})

        data = (await client.get('/playback/doc-1')).json()

        assert data['chunk_index'] == 3
        assert data['elapsed_seconds'] == 1.0

    @pytest.mark.asyncio
    async def test_put_rejects_negative_values(self, client):
        response = await client.put('/playback/doc-1', json={**RECORD, 'chunk_index': -1})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_states_are_per_owner(self, client):
        await client.put('/playback/doc-1', json=RECORD)

        response = await client.get(
            '/playback/doc-1',
            headers={'Authorization': f'Bearer {OTHER_CREDENTIAL}'},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, client):
        await client.put('/playback/doc-1', json=RECORD)

        assert (await client.delete('/playback/doc-1')).json() == {'deleted': True}
        assert (await client.delete('/playback/doc-1')).status_code == 200
        assert (await client.get('/playback/doc-1')).status_code == 404

    @pytest.mark.asyncio
    async def test_concurrent_first_puts(self, client):
        records = [{**RECORD, 'chunk_index': index} for index in range(5)]

        responses = await asyncio.gather(*[client.put('/playback/doc-new', json=r) for r in records])

        assert [r.status_code for r in responses] == [200] * 5
        data = (await client.get('/playback/doc-new')).json()
        assert data['chunk_index'] in range(5)
        assert (await client.get('/playback')).json()['total'] == 1


class TestListPlaybackStates:
    """Tests for GET /playback."""

    @pytest.mark.asyncio
    async def test_empty(self, client):
        response = await client.get('/playback')

        assert response.status_code == 200
        assert response.json() == {'states': [], 'total': 0, 'limit': 50, 'offset': 0}

    @pytest.mark.asyncio
    async def test_newest_first(self, client):
        await client.put('/playback/doc-1', json=RECORD)
        await asyncio.sleep(0.01)
        await client.put('/playback/doc-2', json=RECORD)
        await asyncio.sleep(0.01)
        await client.put('/playback/doc-1', json={**RECORD, 'chunk_index': 4})

        data = (await client.get('/playback')).json()

        assert [s['resume_key'] for s in data['states']] == ['doc-1', 'doc-2']
        assert data['states'][0]['chunk_index'] == 4
        assert data['total'] == 2

    @pytest.mark.asyncio
    async def test_pagination(self, client):
        for index in range(3):
            await client.put(f'/playback/doc-{index}', json=RECORD)
            await asyncio.sleep(0.01)

        data = (await client.get('/playback', params={'limit': 1, 'offset': 1})).json()

        assert [s['resume_key'] for s in data['states']] == ['doc-1']
        assert (data['total'], data['limit'], data['offset']) == (3, 1, 1)

    @pytest.mark.asyncio
    async def test_only_own_states(self, client):
        await client.put('/playback/doc-1', json=RECORD)

        response = await client.get('/playback', headers={'Authorization': f'Bearer {OTHER_CREDENTIAL}'})

        assert response.json()['total'] == 0

    @pytest.mark.asyncio
    async def test_rejects_bad_limit(self, client):
        response = await client.get('/playback', params={'limit': 0})

        assert response.status_code == 422
