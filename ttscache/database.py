"""
Database engine and sessions.

Generation jobs and playback states live in one SQLite file opened through
aiosqlite. WAL mode lets the worker and the retention sweeps write while
request handlers read.
"""
import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ttscache.config import DATABASE_BUSY_TIMEOUT, DATABASE_URL, ensure_directories
from ttscache.models import Base

logger = logging.getLogger(__name__)


def build_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Create an async engine. SQLite connections wait on a locked file instead of failing."""
    connect_args = {'timeout': DATABASE_BUSY_TIMEOUT} if url.startswith('sqlite') else {}
    return create_async_engine(url, echo=False, connect_args=connect_args)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
async_session_factory = build_session_factory(engine)


async def enable_wal_mode(bind: Optional[AsyncEngine] = None) -> Optional[str]:
    """Switch a SQLite database to WAL. Returns the resulting journal mode."""
    bind = bind or engine
    if bind.dialect.name != 'sqlite':
        return None
    async with bind.begin() as conn:
        mode = (await conn.execute(text('PRAGMA journal_mode=WAL'))).scalar()
        await conn.execute(text('PRAGMA synchronous=NORMAL'))
    return mode


async def init_db(bind: Optional[AsyncEngine] = None):
    """Create missing tables, including the partial unique index on active jobs."""
    bind = bind or engine
    if bind is engine:
        ensure_directories()

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    mode = await enable_wal_mode(bind)
    logger.info('Database ready (%s, journal mode %s)', bind.url.render_as_string(hide_password=True), mode)


async def close_db():
    await engine.dispose()


async def get_db():
    """
    Request-scoped session, committed when the handler returns.

    Usage:
        @router.get('/playback/{resume_key}')
        async def get_state(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
