"""
Job model for TTS generation tasks.
"""
import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)

from stash_tts.models.base import Base, utcnow


class JobStatus(str, enum.Enum):
    """Status states for TTS jobs."""
    queued = 'queued'
    running = 'running'
    succeeded = 'succeeded'
    failed = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.succeeded, JobStatus.failed)


ACTIVE_JOB_STATUSES = (JobStatus.queued.value, JobStatus.running.value)
TERMINAL_JOB_STATUSES = (JobStatus.succeeded.value, JobStatus.failed.value)

_ACTIVE_STATUS_SQL = "status IN ('queued', 'running')"


class TtsJob(Base):
    """
    Represents one request to synthesize audio for an item.

    Attributes:
        id: Store-assigned job identifier
        item_id: Item whose extracted text is synthesized
        status: queued -> running -> succeeded | failed
        voice: Voice requested at enqueue time
        format: Output format requested at enqueue time (mp3 or wav)
        error_code: Stable error code, only set when failed
        error_message: Error details, only set when failed
        output_file_name: Audio file name, only set when succeeded
        created_at: Job creation timestamp
        updated_at: Refreshed on every mutation
        started_at: When a worker claimed the job
        finished_at: When the job reached a terminal state
    """
    __tablename__ = 'tts_jobs'
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'running', 'succeeded', 'failed')",
            name='tts_jobs_status_check',
        ),
        CheckConstraint("format IN ('mp3', 'wav')", name='tts_jobs_format_check'),
        Index('idx_tts_jobs_status_created', 'status', 'created_at', 'id'),
        Index('idx_tts_jobs_item_created', 'item_id', 'created_at', 'id'),
        # At most one queued/running job per item
        Index(
            'idx_tts_jobs_item_active',
            'item_id',
            unique=True,
            sqlite_where=text(_ACTIVE_STATUS_SQL),
            postgresql_where=text(_ACTIVE_STATUS_SQL),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.queued.value)
    voice = Column(Text, nullable=False)
    format = Column(String(8), nullable=False)
    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    output_file_name = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def __repr__(self):
        return f'<TtsJob {self.id} item={self.item_id} status={self.status}>'
