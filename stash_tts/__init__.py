"""
Stash TTS: durable background text-to-speech jobs for saved items.
"""
from stash_tts.config import APP_VERSION as __version__
