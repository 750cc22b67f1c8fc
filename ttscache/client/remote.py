"""
HTTP client for a remote generation cache.

Maps HTTP error responses back onto the shared error classes so callers
handle local and remote failures the same way.
"""
import logging
from typing import Optional

import httpx
from pydantic import ValidationError as SchemaValidationError

from ttscache.config import CLIENT_REQUEST_TIMEOUT, CLIENT_DOWNLOAD_TIMEOUT
from ttscache.errors import NotFoundError, RetrievalError, UpstreamAuthError, ValidationError
from ttscache.schemas.job import JobStatusResponse, JobSummary, SubmitRequest
from ttscache.schemas.playback import PlaybackStateListResponse, PlaybackStateResponse, ResumeRecord

logger = logging.getLogger(__name__)


class RetrievalClient:
    """
    Async client for the retrieval API.

    Example:
        async with RetrievalClient('http://127.0.0.1:3000', credential) as client:
            summary = await client.submit('Hello world.', 'nova', 'tts-1')
            if summary.state == 'ready':
                audio = await client.download(summary.id)
    """

    def __init__(
        self,
        base_url: str,
        credential: str,
        request_timeout: float = CLIENT_REQUEST_TIMEOUT,
        download_timeout: float = CLIENT_DOWNLOAD_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url)
        self._headers = {'Authorization': f'Bearer {credential}'}
        self.request_timeout = request_timeout
        self.download_timeout = download_timeout

    async def __aenter__(self) -> 'RetrievalClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, timeout: Optional[float] = None, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                url,
                headers=self._headers,
                timeout=timeout or self.request_timeout,
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise RetrievalError(f'{method} {url} failed: {e}', original_error=e) from e

        if response.status_code < 400:
            return response

        message = _error_message(response)
        if response.status_code == 400:
            raise ValidationError(message)
        if response.status_code == 401:
            raise UpstreamAuthError(message)
        if response.status_code == 404:
            raise NotFoundError(message)
        raise RetrievalError(f'{method} {url} returned HTTP {response.status_code}: {message}')

    async def submit(
        self,
        text: str,
        voice: str,
        model: str,
        format: str = 'mp3',
        speed: float = 1.0,
    ) -> JobSummary:
        """Submit text for generation, or get the job already covering it."""
        body = SubmitRequest(text=text, voice=voice, model=model, format=format, speed=speed)
        response = await self._request('POST', '/tts/generate', json=body.model_dump())
        return _parse(JobSummary, response)

    async def status(self, fingerprint: str) -> JobStatusResponse:
        """Latest state for a fingerprint; ``not_found`` when the server has none."""
        response = await self._request('GET', f'/tts/status/{fingerprint}')
        return _parse(JobStatusResponse, response)

    async def download(self, job_id: str) -> bytes:
        response = await self._request('GET', f'/files/{job_id}', timeout=self.download_timeout)
        if not response.content:
            raise RetrievalError(f'Empty artifact for job {job_id}')
        return response.content

    async def delete(self, job_id: str) -> bool:
        response = await self._request('DELETE', f'/tts/{job_id}')
        return bool(response.json().get('deleted'))

    async def get_resume(self, resume_key: str) -> Optional[PlaybackStateResponse]:
        try:
            response = await self._request('GET', f'/playback/{resume_key}')
        except NotFoundError:
            return None
        return _parse(PlaybackStateResponse, response)

    async def put_resume(self, resume_key: str, record: ResumeRecord) -> PlaybackStateResponse:
        response = await self._request('PUT', f'/playback/{resume_key}', json=record.model_dump())
        return _parse(PlaybackStateResponse, response)

    async def delete_resume(self, resume_key: str) -> None:
        await self._request('DELETE', f'/playback/{resume_key}')

    async def list_resume(self, limit: int = 50, offset: int = 0) -> PlaybackStateListResponse:
        """Synced playback states of this credential, most recently updated first."""
        response = await self._request('GET', '/playback', params={'limit': limit, 'offset': offset})
        return _parse(PlaybackStateListResponse, response)


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or f'HTTP {response.status_code}'
    if isinstance(payload, dict):
        return str(payload.get('message') or payload.get('detail') or payload)
    return str(payload)


def _parse(schema, response: httpx.Response):
    try:
        return schema.model_validate(response.json())
    except (ValueError, SchemaValidationError) as e:
        raise RetrievalError(f'Unexpected response from {response.request.url}: {e}', original_error=e) from e
