"""
Application configuration and paths.

Every value can be overridden with a ``TTSCACHE_*`` environment variable.
"""
import os
from pathlib import Path


def _env_str(name: str, default: str) -> str:
    return os.environ.get(f'TTSCACHE_{name}', default)


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(f'TTSCACHE_{name}', default))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(f'TTSCACHE_{name}', default))


# Application identity
APP_NAME = 'TTSCache'
APP_VERSION = '0.1.0'

# Server configuration
SERVER_HOST = _env_str('HOST', '127.0.0.1')
SERVER_PORT = _env_int('PORT', 3000)
LOG_LEVEL = _env_str('LOG_LEVEL', 'INFO')

# Data directory (database, artifacts, client cache)
DATA_DIR = Path(_env_str('DATA_DIR', str(Path.home() / '.ttscache')))

# Database configuration
DATABASE_PATH = DATA_DIR / 'ttscache.db'
DATABASE_URL = _env_str('DATABASE_URL', f'sqlite+aiosqlite:///{DATABASE_PATH}')
DATABASE_BUSY_TIMEOUT = _env_float('DATABASE_BUSY_TIMEOUT', 30)

# Generated audio artifacts
ARTIFACT_DIR = DATA_DIR / 'files'

# Request limits
MAX_TEXT_LENGTH = _env_int('MAX_TEXT_LENGTH', 50000)
MIN_SPEED = 0.25
MAX_SPEED = 4.0

# Output formats the provider can stream, and the content type served for each
CONTENT_TYPES = {
    'mp3': 'audio/mpeg',
    'opus': 'audio/opus',
    'aac': 'audio/aac',
    'flac': 'audio/flac',
    'wav': 'audio/wav',
}
SUPPORTED_FORMATS = tuple(CONTENT_TYPES)

# Chunking: provider input limit is ~4096 characters per call
SERVER_CHUNK_LENGTH = _env_int('SERVER_CHUNK_LENGTH', 4000)
CLIENT_CHUNK_LENGTH = _env_int('CLIENT_CHUNK_LENGTH', 10000)

# Generation worker
INTER_CHUNK_DELAY = _env_float('INTER_CHUNK_DELAY', 0.1)

# Retention
RETENTION_DAYS = _env_int('RETENTION_DAYS', 7)
STUCK_JOB_TIMEOUT = _env_float('STUCK_JOB_TIMEOUT', 60 * 60)
EXPIRY_SWEEP_INTERVAL = _env_float('EXPIRY_SWEEP_INTERVAL', 6 * 60 * 60)
STUCK_SWEEP_INTERVAL = _env_float('STUCK_SWEEP_INTERVAL', 60 * 60)
SWEEP_START_DELAY = _env_float('SWEEP_START_DELAY', 5)
PLAYBACK_STATE_RETENTION_DAYS = _env_int('PLAYBACK_STATE_RETENTION_DAYS', 30)

# External synthesizer (OpenAI-compatible speech endpoint)
SYNTHESIZER_BASE_URL = _env_str('SYNTHESIZER_BASE_URL', 'https://api.openai.com/v1')
SYNTHESIZER_TIMEOUT = _env_float('SYNTHESIZER_TIMEOUT', 300)
CREDENTIAL_CACHE_TTL = _env_float('CREDENTIAL_CACHE_TTL', 10 * 60)

# Client defaults
CLIENT_CACHE_DIR = DATA_DIR / 'client' / 'chunks'
CLIENT_RESUME_PATH = DATA_DIR / 'client' / 'resume.json'
CLIENT_REQUEST_TIMEOUT = _env_float('CLIENT_REQUEST_TIMEOUT', 30)
CLIENT_DOWNLOAD_TIMEOUT = _env_float('CLIENT_DOWNLOAD_TIMEOUT', 120)
POLL_INTERVAL = _env_float('POLL_INTERVAL', 1.0)
POLL_TIMEOUT = _env_float('POLL_TIMEOUT', 10 * 60)
PROGRESS_TICK_INTERVAL = _env_float('PROGRESS_TICK_INTERVAL', 0.5)


def ensure_directories():
    """Create required directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    ARTIFACT_DIR.mkdir(parents=True, exist_ok=True)
