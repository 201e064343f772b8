"""
SQLAlchemy models.
"""
from stash_tts.models.base import Base, utcnow
from stash_tts.models.item import Item, ItemAudio, Note
from stash_tts.models.job import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    JobStatus,
    TtsJob,
)

__all__ = [
    'Base',
    'utcnow',
    'Item',
    'ItemAudio',
    'Note',
    'JobStatus',
    'TtsJob',
    'ACTIVE_JOB_STATUSES',
    'TERMINAL_JOB_STATUSES',
]
