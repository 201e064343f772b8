"""
Speech synthesis capability used by the job executor.

A synthesizer turns (text, voice, format) into audio bytes or raises
TTSProviderError. Concrete providers live in coqui.py and chatterbox.py;
get_synthesizer() picks one from configuration.
"""
import asyncio
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Protocol

from stash_tts import config


class TTSProviderError(Exception):
    """
    Provider failure.

    Codes:
        TTS_PROVIDER_UNAVAILABLE: backend missing or misconfigured
        TTS_PROVIDER_ERROR: backend ran but failed
    """
    UNAVAILABLE = 'TTS_PROVIDER_UNAVAILABLE'
    PROVIDER_ERROR = 'TTS_PROVIDER_ERROR'

    def __init__(self, message: str, code: str = PROVIDER_ERROR):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class SynthesisResult:
    """Audio produced by a provider. format may differ from the request (mp3 falls back to wav)."""
    audio: bytes
    provider: str
    voice: str
    format: str


class SpeechSynthesizer(Protocol):
    name: str

    async def synthesize(self, text: str, voice: str, audio_format: str) -> SynthesisResult:
        ...


def resolve_binary(
    env_var: Optional[str],
    names: Iterable[str],
    fallback_paths: Iterable[str] = (),
) -> Optional[str]:
    """Locate an executable: explicit env var first, then PATH, then known install paths."""
    if env_var:
        explicit = os.getenv(env_var, '').strip()
        if explicit:
            return explicit if os.access(explicit, os.X_OK) else None

    for name in names:
        found = shutil.which(name)
        if found:
            return found

    for candidate in fallback_paths:
        if candidate and os.access(candidate, os.X_OK):
            return candidate
    return None


async def run_command(program: str, *args: str) -> tuple:
    """Run a command without a shell. Returns (returncode, stdout, stderr)."""
    process = await asyncio.create_subprocess_exec(
        program,
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return (
        process.returncode,
        stdout.decode('utf-8', errors='replace'),
        stderr.decode('utf-8', errors='replace'),
    )


async def wav_to_mp3(wav_path: Path) -> Optional[bytes]:
    """Encode a wav file as 128k mp3 with ffmpeg. None if ffmpeg is missing or fails."""
    ffmpeg = resolve_binary('STASH_FFMPEG_CLI', ['ffmpeg'])
    if not ffmpeg:
        return None

    with tempfile.TemporaryDirectory(prefix='stash-tts-') as tmpdir:
        mp3_path = Path(tmpdir) / 'output.mp3'
        code, _, _ = await run_command(
            ffmpeg, '-i', str(wav_path), '-acodec', 'libmp3lame', '-b:a', '128k', '-y', str(mp3_path)
        )
        if code != 0 or not mp3_path.exists():
            return None
        return mp3_path.read_bytes()


async def encode_wav_file(wav_path: Path, provider: str, voice: str, audio_format: str) -> SynthesisResult:
    """Build a result from a wav file, converting to mp3 when requested and possible."""
    if audio_format == 'mp3':
        mp3 = await wav_to_mp3(wav_path)
        if mp3 is not None:
            return SynthesisResult(audio=mp3, provider=provider, voice=voice, format='mp3')

    return SynthesisResult(audio=wav_path.read_bytes(), provider=provider, voice=voice, format='wav')


# Singleton instance
_synthesizer: Optional[SpeechSynthesizer] = None


def create_synthesizer(provider: str) -> SpeechSynthesizer:
    """Instantiate a provider by name."""
    if provider == 'coqui':
        from stash_tts.services.coqui import CoquiSynthesizer
        return CoquiSynthesizer()
    if provider == 'chatterbox':
        from stash_tts.services.chatterbox import ChatterboxSynthesizer
        return ChatterboxSynthesizer()
    raise ValueError(f'Unknown TTS provider: {provider}')


def get_synthesizer() -> SpeechSynthesizer:
    """Get the configured synthesizer singleton instance."""
    global _synthesizer
    if _synthesizer is None:
        _synthesizer = create_synthesizer(config.TTS_PROVIDER)
    return _synthesizer


def reset_synthesizer():
    """Reset the synthesizer singleton (for testing)."""
    global _synthesizer
    cleanup = getattr(_synthesizer, 'cleanup', None)
    if cleanup is not None:
        cleanup()
    _synthesizer = None
