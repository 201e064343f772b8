"""
Coqui TTS provider (drives the `tts` command line tool).

Voices are "<model_name>|<speaker_idx>", e.g. "tts_models/en/vctk/vits|p241".
"""
import logging
import os
import tempfile
from pathlib import Path

from stash_tts.services.synthesis import (
    SynthesisResult,
    TTSProviderError,
    encode_wav_file,
    resolve_binary,
    run_command,
)

logger = logging.getLogger(__name__)

STDERR_EXCERPT_LENGTH = 300


def _coqui_fallback_paths():
    home = os.path.expanduser('~')
    return [
        '/usr/local/Caskroom/miniconda/base/envs/coqui/bin/tts',
        f'{home}/.local/bin/tts',
    ]


class CoquiSynthesizer:
    """Synthesizes speech by running the Coqui `tts` CLI in a subprocess."""

    name = 'coqui'

    def _resolve_cli(self) -> str:
        espeak = resolve_binary('STASH_ESPEAK_CLI', ['espeak-ng', 'espeak'])
        if not espeak:
            raise TTSProviderError(
                'espeak backend is missing. Install espeak-ng, or set STASH_ESPEAK_CLI.',
                TTSProviderError.UNAVAILABLE,
            )

        cli = resolve_binary('STASH_COQUI_TTS_CLI', ['tts'], _coqui_fallback_paths())
        if not cli:
            raise TTSProviderError(
                'Coqui TTS CLI not found. Install Coqui TTS and ensure `tts` is in PATH, '
                'or set STASH_COQUI_TTS_CLI=/full/path/to/tts.',
                TTSProviderError.UNAVAILABLE,
            )
        return cli

    @staticmethod
    def _build_args(voice: str, out_path: Path, text_args: list) -> list:
        model_name, _, speaker_idx = voice.partition('|')
        args = ['--model_name', model_name or voice, *text_args, '--out_path', str(out_path), '--progress_bar', 'false']
        if speaker_idx:
            args += ['--speaker_idx', speaker_idx]
        return args

    async def synthesize(self, text: str, voice: str, audio_format: str) -> SynthesisResult:
        cli = self._resolve_cli()

        with tempfile.TemporaryDirectory(prefix='stash-tts-') as tmpdir:
            text_file = Path(tmpdir) / 'input.txt'
            wav_path = Path(tmpdir) / 'output.wav'
            text_file.write_text(text, encoding='utf-8')

            code, _, stderr = await run_command(
                cli, *self._build_args(voice, wav_path, ['--text_file', str(text_file)])
            )
            # Older Coqui releases have no --text_file
            if code != 0 and 'unrecognized arguments' in stderr and '--text_file' in stderr:
                logger.info('Coqui CLI lacks --text_file, retrying with --text')
                code, _, stderr = await run_command(cli, *self._build_args(voice, wav_path, ['--text', text]))

            if code != 0:
                if 'No espeak backend' in stderr:
                    raise TTSProviderError(
                        'Coqui needs the espeak backend. Install espeak-ng.',
                        TTSProviderError.UNAVAILABLE,
                    )
                detail = stderr.strip()[:STDERR_EXCERPT_LENGTH] or f'exit code {code}'
                raise TTSProviderError(f'Coqui TTS failed: {detail}')

            if not wav_path.exists():
                raise TTSProviderError('Coqui TTS produced no audio file.')

            return await encode_wav_file(wav_path, self.name, voice, audio_format)
