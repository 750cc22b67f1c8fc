"""
FastAPI routers.
"""
from ttscache.routers.health import router as health_router
from ttscache.routers.tts import router as tts_router
from ttscache.routers.files import router as files_router
from ttscache.routers.playback import router as playback_router

__all__ = ['health_router', 'tts_router', 'files_router', 'playback_router']
