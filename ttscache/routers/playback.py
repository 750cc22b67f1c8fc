"""
Playback position sync endpoints.

Clients store their resume record here so playback can continue on another
device or after local data is lost.
"""
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, delete, func
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from ttscache.database import get_db
from ttscache.dependencies import Caller, get_caller
from ttscache.errors import NotFoundError
from ttscache.models.job import utcnow
from ttscache.models.playback import PlaybackState
from ttscache.schemas.job import DeleteResponse
from ttscache.schemas.playback import ResumeRecord, PlaybackStateResponse, PlaybackStateListResponse


router = APIRouter(prefix='/playback', tags=['playback'])


async def _find_state(db: AsyncSession, owner: str, resume_key: str):
    result = await db.execute(
        select(PlaybackState).where(
            PlaybackState.owner == owner,
            PlaybackState.resume_key == resume_key,
        )
    )
    return result.scalar_one_or_none()


def _to_response(state: PlaybackState) -> PlaybackStateResponse:
    return PlaybackStateResponse(
        resume_key=state.resume_key,
        text_fingerprint=state.text_fingerprint,
        chunk_index=state.chunk_index,
        elapsed_seconds=state.elapsed_seconds,
        updated_at=state.updated_at,
    )


@router.get('', response_model=PlaybackStateListResponse)
async def list_playback_states(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> PlaybackStateListResponse:
    """List the caller's playback states, most recently synced first."""
    owned = PlaybackState.owner == caller.owner
    total = (await db.execute(select(func.count()).select_from(PlaybackState).where(owned))).scalar_one()
    result = await db.execute(
        select(PlaybackState)
        .where(owned)
        .order_by(PlaybackState.updated_at.desc(), PlaybackState.resume_key)
        .limit(limit)
        .offset(offset)
    )
    return PlaybackStateListResponse(
        states=[_to_response(state) for state in result.scalars()],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get('/{resume_key}', response_model=PlaybackStateResponse)
async def get_playback_state(
    resume_key: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> PlaybackStateResponse:
    """
    Get the stored playback position for a resume key.

    Raises:
        404: No position stored for this key
    """
    state = await _find_state(db, caller.owner, resume_key)
    if not state:
        raise NotFoundError(f'No playback state for {resume_key}')
    return _to_response(state)


@router.put('/{resume_key}', response_model=PlaybackStateResponse)
async def put_playback_state(
    resume_key: str,
    record: ResumeRecord,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> PlaybackStateResponse:
    """
    Create or replace the playback position for a resume key.

    A single upsert, so concurrent first saves for one key all succeed.
    """
    now = utcnow()
    values = {
        'text_fingerprint': record.text_fingerprint,
        'chunk_index': record.chunk_index,
        'elapsed_seconds': record.elapsed_seconds,
        'updated_at': now,
    }
    statement = insert(PlaybackState).values(
        id=str(uuid.uuid4()),
        owner=caller.owner,
        resume_key=resume_key,
        created_at=now,
        **values,
    )
    await db.execute(
        statement.on_conflict_do_update(index_elements=['owner', 'resume_key'], set_=values)
    )
    await db.commit()

    return PlaybackStateResponse(resume_key=resume_key, updated_at=now, **record.model_dump())


@router.delete('/{resume_key}', response_model=DeleteResponse)
async def delete_playback_state(
    resume_key: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> DeleteResponse:
    """Forget the playback position for a resume key. Idempotent."""
    await db.execute(
        delete(PlaybackState).where(
            PlaybackState.owner == caller.owner,
            PlaybackState.resume_key == resume_key,
        )
    )
    await db.commit()
    return DeleteResponse(deleted=True)
