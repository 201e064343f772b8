"""
Application configuration and paths.
"""
import os
from pathlib import Path

# Application identity
APP_NAME = 'stash'
APP_VERSION = '0.3.0'

# Server configuration
SERVER_HOST = os.getenv('STASH_HOST', '127.0.0.1')
SERVER_PORT = int(os.getenv('STASH_PORT', '4173'))

# Data directory (~/.stash unless overridden)
STASH_HOME = Path(os.getenv('STASH_HOME', str(Path.home() / '.stash'))).expanduser()

# Database configuration
DATABASE_PATH = Path(os.getenv('STASH_DB_PATH', str(STASH_HOME / 'stash.db'))).expanduser()
DATABASE_URL = f'sqlite+aiosqlite:///{DATABASE_PATH}'

# Audio storage
AUDIO_DIR = Path(os.getenv('STASH_AUDIO_DIR', str(STASH_HOME / 'audio'))).expanduser()

# Voice prompts for the chatterbox provider (<voice>.wav)
VOICES_DIR = Path(os.getenv('STASH_VOICES_DIR', str(STASH_HOME / 'voices'))).expanduser()

# TTS provider: 'coqui' (external CLI) or 'chatterbox' (in-process model)
TTS_PROVIDER = os.getenv('STASH_TTS_PROVIDER', 'coqui').strip().lower()
TTS_FORMATS = ('mp3', 'wav')
DEFAULT_TTS_FORMAT = 'mp3'
DEFAULT_TTS_VOICE = 'tts_models/en/vctk/vits|p241'

# Chatterbox model configuration
MODEL_DEVICE = os.getenv('STASH_MODEL_DEVICE', 'mps')
MODEL_AGGRESSIVE_MEMORY = True

# Job queue
DEFAULT_POLL_INTERVAL_MS = int(os.getenv('STASH_TTS_POLL_MS', '1500'))
DEFAULT_WAIT_TIMEOUT_MS = 10 * 60 * 1000
DEFAULT_RETENTION_MS = int(os.getenv('STASH_TTS_RETENTION_DAYS', '30')) * 24 * 60 * 60 * 1000
DEFAULT_PRUNE_INTERVAL_MS = 6 * 60 * 60 * 1000
ERROR_MESSAGE_MAX_LENGTH = 1024

# Run the worker loop inside the HTTP server process
RUN_WORKER_IN_SERVER = os.getenv('STASH_RUN_WORKER', 'true').lower() == 'true'


def ensure_directories():
    """Create required directories if they don't exist."""
    STASH_HOME.mkdir(parents=True, exist_ok=True)
    DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
    AUDIO_DIR.mkdir(parents=True, exist_ok=True)
