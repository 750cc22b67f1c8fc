"""
TTSCache: content-addressed speech generation cache and chunked playback client.
"""
from ttscache.config import APP_VERSION

__version__ = APP_VERSION
