"""
TTS job endpoints.
"""
from typing import Optional, Union
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stash_tts import config
from stash_tts.database import get_db, get_session_factory
from stash_tts.errors import ErrorCode, StashError, http_status_for_code
from stash_tts.schemas.job import (
    CompletedJobResponse,
    EnqueueResponse,
    ErrorResponse,
    JobDetailResponse,
    JobListResponse,
    JobResponse,
    Paging,
    TtsJobCreate,
)
from stash_tts.services.audio_files import AudioStore
from stash_tts.services.content_store import DatabaseContentStore
from stash_tts.services.job_queue import enqueue_job, get_job, list_jobs_for_item, wait_for_job


router = APIRouter(tags=['tts'])

ERROR_RESPONSES = {
    status: {'model': ErrorResponse}
    for status in (400, 404, 500, 503, 504)
}


def get_content_store(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> DatabaseContentStore:
    return DatabaseContentStore(session_factory)


def get_audio_store() -> AudioStore:
    return AudioStore(config.AUDIO_DIR)


def _audio_url(file_name: str, download: bool = False) -> str:
    url = f'/audio/{quote(file_name)}'
    return f'{url}?download=1' if download else url


@router.post(
    '/items/{item_id}/tts',
    response_model=Union[EnqueueResponse, CompletedJobResponse],
    status_code=202,
    responses=ERROR_RESPONSES,
)
async def create_tts_job(
    item_id: int,
    response: Response,
    body: Optional[TtsJobCreate] = None,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    content_store: DatabaseContentStore = Depends(get_content_store),
):
    """
    Queue audio generation for an item.

    Returns 202 with the new job, or 200 with the job already queued/running
    for the item. With wait=true, blocks until the job finishes and returns
    playback URLs (or the job's error).
    """
    body = body or TtsJobCreate()
    result = await enqueue_job(db, content_store, item_id, voice=body.voice, audio_format=body.format)

    if not body.wait:
        response.status_code = 202 if result.created else 200
        return EnqueueResponse(
            created=result.created,
            job=JobResponse.model_validate(result.job),
            poll_interval_ms=result.poll_interval_ms,
            poll_url=f'/tts-jobs/{result.job.id}',
        )

    # Hand the connection back to the pool for the length of the wait
    await db.commit()
    job = await wait_for_job(session_factory, result.job.id, poll_interval_ms=result.poll_interval_ms)

    if job.status == 'failed':
        try:
            code = ErrorCode(job.error_code)
        except ValueError:
            code = ErrorCode.INTERNAL_ERROR
        raise StashError(
            job.error_message or 'TTS job failed.',
            code,
            http_status_for_code(job.error_code),
        )

    if not job.output_file_name:
        raise StashError('TTS job finished without output file.', ErrorCode.INTERNAL_ERROR)

    response.status_code = 200
    return CompletedJobResponse(
        job=JobResponse.model_validate(job),
        playback_url=_audio_url(job.output_file_name),
        download_url=_audio_url(job.output_file_name, download=True),
    )


@router.get('/tts-jobs/{job_id}', response_model=JobDetailResponse, responses=ERROR_RESPONSES)
async def get_tts_job(
    job_id: int,
    db: AsyncSession = Depends(get_db),
) -> JobDetailResponse:
    """Get the current state of a job."""
    job = await get_job(db, job_id)
    return JobDetailResponse(job=JobResponse.model_validate(job))


@router.get('/items/{item_id}/tts-jobs', response_model=JobListResponse, responses=ERROR_RESPONSES)
async def list_item_tts_jobs(
    item_id: int,
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    content_store: DatabaseContentStore = Depends(get_content_store),
) -> JobListResponse:
    """
    List TTS jobs for an item with pagination.

    Returns jobs ordered by creation time (newest first).
    """
    jobs = await list_jobs_for_item(db, content_store, item_id, limit=limit, offset=offset)
    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        paging=Paging(limit=limit, offset=offset, returned=len(jobs)),
    )


@router.get('/audio/{file_name}', responses=ERROR_RESPONSES)
async def get_audio(
    file_name: str,
    download: Optional[str] = Query(default=None, pattern='^1$'),
    audio_store: AudioStore = Depends(get_audio_store),
):
    """
    Stream a generated audio file.

    ?download=1 serves it as an attachment instead of inline.
    """
    path = audio_store.resolve(file_name)
    if path is None:
        raise StashError('Audio file not found.', ErrorCode.NOT_FOUND)

    return FileResponse(
        path=str(path),
        media_type='audio/wav' if path.suffix == '.wav' else 'audio/mpeg',
        filename=path.name,
        content_disposition_type='attachment' if download else 'inline',
    )
