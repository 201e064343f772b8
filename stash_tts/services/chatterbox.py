"""
Chatterbox TurboTTS provider (in-process model).

Voices map to prompt files in VOICES_DIR (<voice>.wav); unknown voices use
the model's built-in default voice.
"""
import asyncio
import functools
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from stash_tts import config
from stash_tts.services.synthesis import SynthesisResult, TTSProviderError, encode_wav_file


class ChatterboxSynthesizer:
    """
    Encapsulates Chatterbox model state and generation logic.

    Uses asyncio.Lock to prevent concurrent model access (model is not thread-safe)
    and a single-thread executor so generation never blocks the event loop.
    """

    name = 'chatterbox'

    def __init__(self, voices_dir: Optional[Path] = None):
        self.voices_dir = Path(voices_dir or config.VOICES_DIR)
        self.model = None
        self.default_conds = None
        self._lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1)
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        """Check if the model is loaded."""
        return self._loaded and self.model is not None

    def load_model(self):
        """
        Load the Chatterbox TurboTTS model.

        The Perth watermarker must be patched before chatterbox is imported.
        """
        try:
            import perth
            perth.PerthImplicitWatermarker = perth.DummyWatermarker
            from chatterbox.tts_turbo import ChatterboxTurboTTS
        except ImportError as e:
            raise TTSProviderError(
                f'Chatterbox is not installed ({e}). Install the chatterbox extra.',
                TTSProviderError.UNAVAILABLE,
            ) from e

        self.model = ChatterboxTurboTTS.from_pretrained(device=config.MODEL_DEVICE)
        self.default_conds = self.model.conds
        self._loaded = True

    def voice_prompt_path(self, voice: str) -> Optional[Path]:
        """Prompt file for a voice, or None for the default voice."""
        candidate = self.voices_dir / f'{voice}.wav'
        if Path(voice).name == voice and candidate.is_file():
            return candidate
        return None

    def _generate_to_wav(self, text: str, voice_path: Optional[Path], wav_path: Path):
        """Synchronous generation method to run in executor."""
        if not self.is_loaded:
            self.load_model()

        import torch
        import torchaudio as ta

        with torch.inference_mode():
            if voice_path:
                wav = self.model.generate(text, audio_prompt_path=str(voice_path))
            else:
                # Restore default voice conditionals
                self.model.conds = self.default_conds
                wav = self.model.generate(text)

            # Synchronize MPS so GPU work completes before tensors are freed
            if torch.backends.mps.is_available():
                torch.mps.synchronize()

        wav_cpu = wav.cpu()
        del wav

        if config.MODEL_AGGRESSIVE_MEMORY and torch.backends.mps.is_available():
            torch.mps.empty_cache()

        ta.save(str(wav_path), wav_cpu, self.model.sr)

    async def synthesize(self, text: str, voice: str, audio_format: str) -> SynthesisResult:
        voice_path = self.voice_prompt_path(voice)

        with tempfile.TemporaryDirectory(prefix='stash-tts-') as tmpdir:
            wav_path = Path(tmpdir) / 'output.wav'
            async with self._lock:
                loop = asyncio.get_running_loop()
                try:
                    await loop.run_in_executor(
                        self._executor,
                        functools.partial(self._generate_to_wav, text, voice_path, wav_path),
                    )
                except TTSProviderError:
                    raise
                except Exception as e:
                    raise TTSProviderError(f'Chatterbox generation failed: {e}') from e

            return await encode_wav_file(wav_path, self.name, voice, audio_format)

    def cleanup(self):
        """Clean up resources."""
        self._executor.shutdown(wait=False)
        self.model = None
        self.default_conds = None
        self._loaded = False
