"""
FastAPI dependencies for services and caller identity.

Services are built once in the application lifespan and stored on
``app.state``; tests replace these functions via ``app.dependency_overrides``.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ttscache.errors import UpstreamAuthError
from ttscache.services.generation_service import GenerationService


bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Authenticated caller: opaque owner id plus the provider credential."""
    owner: str
    credential: str


def get_generation_service(request: Request) -> GenerationService:
    """Return the process-wide generation service."""
    return request.app.state.generation_service


async def get_caller(
    authorization: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    service: GenerationService = Depends(get_generation_service),
) -> Caller:
    """
    Resolve the bearer credential to an owner.

    Raises:
        UpstreamAuthError: If the header is missing or the provider rejects it
    """
    if authorization is None or not authorization.credentials:
        raise UpstreamAuthError('Missing or invalid Authorization header')
    owner = await service.authenticate(authorization.credentials)
    return Caller(owner=owner, credential=authorization.credentials)
