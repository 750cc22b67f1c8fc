"""
External speech synthesizer and owner credential validation.

The provider is an opaque collaborator: ``synthesize`` turns one chunk of
text into audio bytes and may be slow, rate-limited or fail per call. No
retry happens here.
"""
import hashlib
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx

from ttscache.config import SYNTHESIZER_BASE_URL, SYNTHESIZER_TIMEOUT, CREDENTIAL_CACHE_TTL
from ttscache.errors import SynthesisAuthError, SynthesisError, UpstreamAuthError

logger = logging.getLogger(__name__)


class Synthesizer(ABC):
    """Abstract text-to-speech provider."""

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        voice: str,
        model: str,
        format: str,
        speed: float,
        credential: str,
    ) -> bytes:
        """
        Convert one chunk of text to audio bytes.

        Raises:
            SynthesisAuthError: If the provider rejects the credential
            SynthesisError: If the call fails for any other reason
        """

    async def aclose(self) -> None:
        """Release network resources."""


class CredentialValidator(ABC):
    """Turns a caller-supplied credential into an opaque owner identity."""

    @abstractmethod
    async def resolve_owner(self, credential: str) -> str:
        """
        Validate a credential and return the owner identity.

        Raises:
            UpstreamAuthError: If the credential is rejected
        """


def owner_for_credential(credential: str) -> str:
    """Derive a stable, non-reversible owner id from a credential."""
    return hashlib.sha256(credential.encode('utf-8')).hexdigest()[:32]


class OpenAISpeechSynthesizer(Synthesizer):
    """
    Synthesizer for OpenAI-compatible ``/audio/speech`` endpoints.

    The credential is supplied per call since each owner brings their own.
    """

    def __init__(
        self,
        base_url: str = SYNTHESIZER_BASE_URL,
        timeout: float = SYNTHESIZER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def synthesize(
        self,
        text: str,
        voice: str,
        model: str,
        format: str,
        speed: float,
        credential: str,
    ) -> bytes:
        if not text or not text.strip():
            raise ValueError('Text cannot be empty')

        try:
            response = await self._client.post(
                '/audio/speech',
                headers={'Authorization': f'Bearer {credential}'},
                json={
                    'model': model,
                    'voice': voice,
                    'input': text,
                    'response_format': format,
                    'speed': speed,
                },
            )
        except httpx.TimeoutException as e:
            raise SynthesisError(f'Speech provider timed out: {e}', original_error=e) from e
        except httpx.HTTPError as e:
            raise SynthesisError(f'Speech provider request failed: {e}', original_error=e) from e

        if response.status_code in (401, 403):
            raise SynthesisAuthError('Speech provider rejected the credential', status=response.status_code)
        if response.status_code == 429:
            raise SynthesisError('Speech provider rate limit exceeded', status=429)
        if response.status_code >= 400:
            raise SynthesisError(
                f'Speech provider returned HTTP {response.status_code}: {response.text[:200]}',
                status=response.status_code,
            )

        audio = response.content
        if not audio:
            raise SynthesisError('Speech provider returned no audio', status=response.status_code)
        return audio

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class ProviderCredentialValidator(CredentialValidator):
    """
    Validates credentials with a lightweight provider call (``GET /models``).

    Accepted credentials are remembered for ``cache_ttl`` seconds so status
    polling does not hit the provider on every request.
    """

    def __init__(
        self,
        base_url: str = SYNTHESIZER_BASE_URL,
        cache_ttl: float = CREDENTIAL_CACHE_TTL,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._cache_ttl = cache_ttl
        self._accepted: Dict[str, float] = {}

    async def resolve_owner(self, credential: str) -> str:
        if not credential:
            raise UpstreamAuthError('Missing credential')

        owner = owner_for_credential(credential)
        now = time.monotonic()
        self._drop_expired(now)
        if owner in self._accepted:
            return owner

        try:
            response = await self._client.get(
                '/models',
                headers={'Authorization': f'Bearer {credential}'},
            )
        except httpx.HTTPError as e:
            raise SynthesisError(f'Credential check failed: {e}', original_error=e) from e

        if response.status_code in (401, 403):
            logger.info('Credential rejected by provider for owner %s', owner[:8])
            raise UpstreamAuthError('Credential rejected by speech provider')
        if response.status_code >= 400:
            raise SynthesisError(
                f'Credential check returned HTTP {response.status_code}',
                status=response.status_code,
            )

        self._accepted[owner] = now + self._cache_ttl
        return owner

    def _drop_expired(self, now: float) -> None:
        for owner in [o for o, expires_at in self._accepted.items() if expires_at <= now]:
            del self._accepted[owner]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
