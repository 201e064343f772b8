"""
Audio artifact persistence.

Files are written to a single directory with human-friendly names:

    2026-10-18_my-article-title_id-42_tts-models-en-vctk-vits-p241_142501_x3k9ab.mp3
"""
import re
import secrets
import string
import unicodedata
from datetime import datetime
from pathlib import Path
from typing import Optional

MAX_TITLE_SLUG_LENGTH = 80
MAX_VOICE_SLUG_LENGTH = 40
SHORT_ID_LENGTH = 6

_SHORT_ID_ALPHABET = string.ascii_lowercase + string.digits
_CAMEL_BOUNDARY = re.compile(r'([a-z])([A-Z])')
_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def slugify(value: str, max_length: int) -> str:
    """Lowercase ASCII slug, hyphen separated, cut at max_length without a trailing hyphen."""
    ascii_value = unicodedata.normalize('NFKD', value).encode('ascii', 'ignore').decode('ascii')
    slug = _NON_ALNUM.sub('-', ascii_value.lower()).strip('-')
    if len(slug) <= max_length:
        return slug
    return slug[:max_length].rstrip('-')


def _short_id() -> str:
    return ''.join(secrets.choice(_SHORT_ID_ALPHABET) for _ in range(SHORT_ID_LENGTH))


def build_friendly_filename(
    item_id: int,
    title: Optional[str],
    voice: str,
    audio_format: str,
    now: Optional[datetime] = None,
) -> str:
    """Build a descriptive, mostly-unique file name for an item's audio."""
    now = now or datetime.now()
    title_slug = slugify(title or '', MAX_TITLE_SLUG_LENGTH) or f'untitled-item-{item_id}'
    voice_slug = slugify(_CAMEL_BOUNDARY.sub(r'\1-\2', voice), MAX_VOICE_SLUG_LENGTH) or 'voice'
    extension = 'wav' if audio_format == 'wav' else 'mp3'
    return (
        f'{now:%Y-%m-%d}_{title_slug}_id-{item_id}_{voice_slug}'
        f'_{now:%H%M%S}_{_short_id()}.{extension}'
    )


def ensure_unique_path(target: Path) -> Path:
    """Return target, or target with a _2, _3, ... suffix if the name is taken."""
    if not target.exists():
        return target

    index = 2
    while True:
        candidate = target.with_name(f'{target.stem}_{index}{target.suffix}')
        if not candidate.exists():
            return candidate
        index += 1


class AudioStore:
    """Writes generated audio into a directory and resolves stored file names."""

    def __init__(self, audio_dir: Path):
        self.audio_dir = Path(audio_dir)

    def save(self, item_id: int, title: Optional[str], voice: str, audio: bytes, audio_format: str) -> str:
        """
        Persist audio bytes for an item.

        Returns:
            The stored file name (relative to audio_dir)
        """
        self.audio_dir.mkdir(parents=True, exist_ok=True)
        file_name = build_friendly_filename(item_id, title, voice, audio_format)
        output_path = ensure_unique_path(self.audio_dir / file_name)
        output_path.write_bytes(audio)
        return output_path.name

    def resolve(self, file_name: str) -> Optional[Path]:
        """Path of a stored file, or None if it is missing or escapes audio_dir."""
        if not file_name or Path(file_name).name != file_name:
            return None
        path = self.audio_dir / file_name
        return path if path.is_file() else None
