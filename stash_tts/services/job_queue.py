"""
Durable TTS job queue.

All coordination between API processes and workers happens through the
tts_jobs table:

- enqueue_job relies on the partial unique index idx_tts_jobs_item_active
  (one queued/running job per item) and treats a violation as "already
  enqueued".
- claim_next_job moves a job queued -> running with a conditioned UPDATE
  (WHERE status = 'queued'); losing the race means retrying selection.
- Completion writes are conditioned on status = 'running', so terminal jobs
  are never rewritten.

None of this depends on in-process locks, so several worker processes can
share one database.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stash_tts import config
from stash_tts.errors import ErrorCode, StashError
from stash_tts.models import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    JobStatus,
    TtsJob,
    utcnow,
)
from stash_tts.services.content_store import ContentStore, item_not_found

logger = logging.getLogger(__name__)

WORKER_RESTARTED_MESSAGE = 'Worker restarted before job completion.'


@dataclass
class EnqueueResult:
    """Outcome of enqueue_job. created is False when an active job was returned instead."""
    job: TtsJob
    created: bool
    poll_interval_ms: int = config.DEFAULT_POLL_INTERVAL_MS


def parse_tts_format(value: Optional[str]) -> str:
    """Normalize an output format, defaulting to mp3."""
    normalized = (value if value is not None else config.DEFAULT_TTS_FORMAT).strip().lower()
    if normalized not in config.TTS_FORMATS:
        raise StashError('Invalid format. Use mp3 or wav.', ErrorCode.VALIDATION_ERROR)
    return normalized


def normalize_voice(value: Optional[str]) -> str:
    """Blank or missing voices fall back to the default voice."""
    voice = (value or '').strip()
    return voice or config.DEFAULT_TTS_VOICE


def job_not_found(job_id: int) -> StashError:
    return StashError(f'TTS job {job_id} not found.', ErrorCode.NOT_FOUND)


async def _load_job(session: AsyncSession, job_id: int) -> Optional[TtsJob]:
    # populate_existing: rows change underneath us through Core UPDATEs
    result = await session.execute(
        select(TtsJob)
        .where(TtsJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_active_job_for_item(session: AsyncSession, item_id: int) -> Optional[TtsJob]:
    """The queued or running job for an item, if any."""
    result = await session.execute(
        select(TtsJob)
        .where(TtsJob.item_id == item_id, TtsJob.status.in_(ACTIVE_JOB_STATUSES))
        .order_by(TtsJob.created_at.asc(), TtsJob.id.asc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def enqueue_job(
    session: AsyncSession,
    content_store: ContentStore,
    item_id: int,
    voice: Optional[str] = None,
    audio_format: Optional[str] = None,
) -> EnqueueResult:
    """
    Queue a TTS job for an item, or return the job already active for it.

    Args:
        session: Database session (committed by this call)
        content_store: Used to check the item has text to synthesize
        item_id: Item to synthesize
        voice: Voice name (blank -> DEFAULT_TTS_VOICE)
        audio_format: mp3 or wav (None -> mp3)

    Raises:
        StashError: VALIDATION_ERROR, NOT_FOUND or NO_CONTENT; no row is written
    """
    voice = normalize_voice(voice)
    audio_format = parse_tts_format(audio_format)

    await content_store.get_content_for_item(item_id)

    existing = await get_active_job_for_item(session, item_id)
    if existing is not None:
        return EnqueueResult(job=existing, created=False)

    now = utcnow()
    job = TtsJob(
        item_id=item_id,
        status=JobStatus.queued.value,
        voice=voice,
        format=audio_format,
        created_at=now,
        updated_at=now,
    )
    session.add(job)
    try:
        await session.commit()
    except IntegrityError:
        # Another caller inserted the active job between our check and insert
        await session.rollback()
        deduped = await get_active_job_for_item(session, item_id)
        if deduped is None:
            raise
        logger.debug('Enqueue for item %s deduplicated onto job %s', item_id, deduped.id)
        return EnqueueResult(job=deduped, created=False)

    logger.info('Queued TTS job %s for item %s (%s, %s)', job.id, item_id, voice, audio_format)
    return EnqueueResult(job=job, created=True)


async def get_job(session: AsyncSession, job_id: int) -> TtsJob:
    """
    Fetch a job by id.

    Raises:
        StashError: NOT_FOUND
    """
    job = await _load_job(session, job_id)
    if job is None:
        raise job_not_found(job_id)
    return job


async def list_jobs_for_item(
    session: AsyncSession,
    content_store: ContentStore,
    item_id: int,
    limit: int = 10,
    offset: int = 0,
) -> List[TtsJob]:
    """Jobs for an item, newest first. Raises NOT_FOUND for unknown items."""
    if not await content_store.item_exists(item_id):
        raise item_not_found(item_id)

    result = await session.execute(
        select(TtsJob)
        .where(TtsJob.item_id == item_id)
        .order_by(TtsJob.created_at.desc(), TtsJob.id.desc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def claim_next_job(session: AsyncSession) -> Optional[TtsJob]:
    """
    Atomically move the oldest queued job to running.

    Returns:
        The claimed job, or None when nothing is queued
    """
    while True:
        result = await session.execute(
            select(TtsJob.id)
            .where(TtsJob.status == JobStatus.queued.value)
            .order_by(TtsJob.created_at.asc(), TtsJob.id.asc())
            .limit(1)
        )
        job_id = result.scalar_one_or_none()
        if job_id is None:
            await session.rollback()
            return None

        now = utcnow()
        updated = await session.execute(
            update(TtsJob)
            .where(TtsJob.id == job_id, TtsJob.status == JobStatus.queued.value)
            .values(status=JobStatus.running.value, started_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount == 0:
            await session.rollback()
            logger.debug('Job %s was claimed by another worker, retrying', job_id)
            continue

        await session.commit()
        return await _load_job(session, job_id)


async def complete_job_success(session: AsyncSession, job_id: int, output_file_name: str) -> bool:
    """running -> succeeded. Returns False if the job was not running."""
    now = utcnow()
    updated = await session.execute(
        update(TtsJob)
        .where(TtsJob.id == job_id, TtsJob.status == JobStatus.running.value)
        .values(
            status=JobStatus.succeeded.value,
            output_file_name=output_file_name,
            error_code=None,
            error_message=None,
            finished_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if updated.rowcount == 0:
        logger.warning('Job %s was not running, success not recorded', job_id)
        return False
    return True


async def complete_job_failure(session: AsyncSession, job_id: int, error_code: str, error_message: str) -> bool:
    """running -> failed. The message is capped at ERROR_MESSAGE_MAX_LENGTH characters."""
    now = utcnow()
    updated = await session.execute(
        update(TtsJob)
        .where(TtsJob.id == job_id, TtsJob.status == JobStatus.running.value)
        .values(
            status=JobStatus.failed.value,
            error_code=str(error_code),
            error_message=error_message[:config.ERROR_MESSAGE_MAX_LENGTH],
            output_file_name=None,
            finished_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if updated.rowcount == 0:
        logger.warning('Job %s was not running, failure not recorded', job_id)
        return False
    return True


async def mark_stale_running_jobs_failed(session: AsyncSession) -> int:
    """
    Fail every running job with WORKER_RESTARTED.

    Called once when a worker starts: a job still running at that point was
    orphaned by a crashed worker. Returns the number of jobs failed.
    """
    now = utcnow()
    updated = await session.execute(
        update(TtsJob)
        .where(TtsJob.status == JobStatus.running.value)
        .values(
            status=JobStatus.failed.value,
            error_code=ErrorCode.WORKER_RESTARTED.value,
            error_message=WORKER_RESTARTED_MESSAGE,
            finished_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return updated.rowcount


async def prune_older_than(session: AsyncSession, retention_ms: int = config.DEFAULT_RETENTION_MS) -> int:
    """Delete terminal jobs last updated before now - retention_ms. Returns the count."""
    threshold = utcnow() - timedelta(milliseconds=retention_ms)
    deleted = await session.execute(
        delete(TtsJob)
        .where(TtsJob.status.in_(TERMINAL_JOB_STATUSES), TtsJob.updated_at < threshold)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return deleted.rowcount


async def count_jobs_by_status(session: AsyncSession) -> Dict[str, int]:
    """Number of jobs in each status (statuses with no jobs report 0)."""
    result = await session.execute(
        select(TtsJob.status, func.count(TtsJob.id)).group_by(TtsJob.status)
    )
    counts = {status.value: 0 for status in JobStatus}
    counts.update({status: count for status, count in result.all()})
    return counts


async def wait_for_job(
    session_factory: async_sessionmaker,
    job_id: int,
    poll_interval_ms: int = config.DEFAULT_POLL_INTERVAL_MS,
    timeout_ms: int = config.DEFAULT_WAIT_TIMEOUT_MS,
) -> TtsJob:
    """
    Block until a job is succeeded or failed.

    Read-only: each poll uses a fresh session and the job is never modified.

    Raises:
        StashError: NOT_FOUND if the job does not exist,
            TIMEOUT if it is still active after timeout_ms
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000

    while True:
        async with session_factory() as session:
            job = await get_job(session, job_id)
        if job.is_terminal:
            return job

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise StashError(f'Timed out waiting for TTS job {job_id}.', ErrorCode.TIMEOUT)
        await asyncio.sleep(min(poll_interval_ms / 1000, remaining))
