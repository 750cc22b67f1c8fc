#!/usr/bin/env python3
"""
TTSCache FastAPI Server

A content-addressed speech generation cache. Deduplicates synthesis
requests per caller, generates long texts chunk by chunk in the background,
serves the resulting audio and reclaims it on a retention schedule.
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ttscache.config import (
    APP_NAME, APP_VERSION, SERVER_HOST, SERVER_PORT, LOG_LEVEL, ARTIFACT_DIR,
)
from ttscache.database import init_db, close_db, async_session_factory
from ttscache.errors import TTSCacheError
from ttscache.routers import health_router, tts_router, files_router, playback_router
from ttscache.services import (
    ArtifactStorage,
    GenerationService,
    GenerationStore,
    GenerationWorker,
    OpenAISpeechSynthesizer,
    ProviderCredentialValidator,
    RetentionSweeper,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Startup:
        - Initialize database and create tables
        - Build storage, provider client, job store and worker
        - Start generation worker and retention sweeps

    Shutdown:
        - Stop sweeps and worker
        - Close provider clients
        - Close database connections
    """
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    logger.info('Starting %s v%s...', APP_NAME, APP_VERSION)

    await init_db()

    storage = ArtifactStorage(ARTIFACT_DIR)
    store = GenerationStore(async_session_factory)
    synthesizer = OpenAISpeechSynthesizer()
    credentials = ProviderCredentialValidator()
    worker = GenerationWorker(store, storage, synthesizer)
    sweeper = RetentionSweeper(store, storage)

    app.state.generation_service = GenerationService(store, storage, worker, credentials)

    await worker.start()
    await sweeper.start()
    logger.info('Server ready at http://%s:%s', SERVER_HOST, SERVER_PORT)

    yield

    logger.info('Shutting down...')
    await sweeper.stop()
    await worker.stop()
    await synthesizer.aclose()
    await credentials.aclose()
    await close_db()
    logger.info('Shutdown complete.')


# Create FastAPI application
app = FastAPI(
    title=APP_NAME,
    description='Content-addressed speech generation cache with chunked playback support.',
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(TTSCacheError)
async def handle_cache_error(request: Request, exc: TTSCacheError) -> JSONResponse:
    """Translate typed errors into JSON error responses."""
    return JSONResponse(
        status_code=exc.status_code,
        content={'error': type(exc).__name__, 'message': exc.message},
    )


# Register routers
app.include_router(health_router)
app.include_router(tts_router)
app.include_router(files_router)
app.include_router(playback_router)


if __name__ == '__main__':
    uvicorn.run(
        app,
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=False,
        log_level=LOG_LEVEL.lower(),
    )
