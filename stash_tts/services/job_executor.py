"""
Runs claimed TTS jobs against the synthesis capability.
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from stash_tts.errors import ErrorCode, StashError, as_stash_error
from stash_tts.models import TtsJob
from stash_tts.services.audio_files import AudioStore
from stash_tts.services.content_store import AudioMetadata, ContentStore
from stash_tts.services.job_queue import (
    claim_next_job,
    complete_job_failure,
    complete_job_success,
    get_job,
)
from stash_tts.services.synthesis import SpeechSynthesizer, SynthesisResult, TTSProviderError

logger = logging.getLogger(__name__)


def map_execution_error(error: BaseException) -> Tuple[str, str]:
    """
    Reduce any execution failure to (error_code, message).

    Provider errors collapse to TTS_PROVIDER_UNAVAILABLE or INTERNAL_ERROR;
    StashErrors keep their code; everything else is INTERNAL_ERROR.
    """
    if isinstance(error, TTSProviderError):
        if error.code == TTSProviderError.UNAVAILABLE:
            return ErrorCode.TTS_PROVIDER_UNAVAILABLE.value, f'TTS is unavailable. {error.message}'
        return ErrorCode.INTERNAL_ERROR.value, f'TTS provider error: {error.message}'

    stash_error = as_stash_error(error)
    return stash_error.code.value, stash_error.message


class JobExecutor:
    """
    Executes one claimed job to completion.

    execute() never raises: every outcome is persisted on the job row so the
    worker loop can run unattended.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        synthesizer: SpeechSynthesizer,
        content_store: ContentStore,
        audio_store: AudioStore,
    ):
        self.session_factory = session_factory
        self.synthesizer = synthesizer
        self.content_store = content_store
        self.audio_store = audio_store

    async def _synthesize(self, job: TtsJob) -> Tuple[str, SynthesisResult]:
        # Content is read at execution time, not cached from enqueue
        content = await self.content_store.get_content_for_item(job.item_id)
        result = await self.synthesizer.synthesize(content.text, job.voice, job.format)
        if not result.audio:
            raise StashError('TTS provider returned no audio.', ErrorCode.INTERNAL_ERROR)

        file_name = self.audio_store.save(
            item_id=job.item_id,
            title=content.title,
            voice=job.voice,
            audio=result.audio,
            audio_format=result.format,
        )
        return file_name, result

    async def _update_item_audio(self, job: TtsJob, file_name: str, result: SynthesisResult):
        metadata = AudioMetadata(
            provider=result.provider,
            voice=result.voice,
            format=result.format,
            bytes=len(result.audio),
        )
        try:
            await self.content_store.update_item_audio(job.item_id, file_name, metadata)
        except Exception:
            logger.exception('Job %s succeeded but item %s audio was not updated', job.id, job.item_id)

    async def execute(self, job: TtsJob) -> Optional[TtsJob]:
        """
        Run a job that was just claimed (status running).

        Returns:
            The job as persisted after execution
        """
        try:
            file_name, result = await self._synthesize(job)
        except Exception as e:
            error_code, message = map_execution_error(e)
            logger.error('Job %s failed: %s %s', job.id, error_code, message)
            return await self._record(job.id, failure=(error_code, message))

        logger.info('Job %s succeeded: %s (%d bytes)', job.id, file_name, len(result.audio))
        final = await self._record(job.id, output_file_name=file_name)
        if final is not None and final.output_file_name == file_name:
            await self._update_item_audio(job, file_name, result)
        return final

    async def _record(
        self,
        job_id: int,
        output_file_name: Optional[str] = None,
        failure: Optional[Tuple[str, str]] = None,
    ) -> Optional[TtsJob]:
        try:
            async with self.session_factory() as session:
                if failure is not None:
                    await complete_job_failure(session, job_id, *failure)
                else:
                    await complete_job_success(session, job_id, output_file_name)
                return await get_job(session, job_id)
        except Exception:
            logger.exception('Could not record outcome of job %s', job_id)
            return None

    async def process_next(self) -> Optional[TtsJob]:
        """Claim the oldest queued job and execute it. None when the queue is empty."""
        async with self.session_factory() as session:
            job = await claim_next_job(session)
        if job is None:
            return None

        logger.info('Claimed job %s for item %s', job.id, job.item_id)
        return await self.execute(job)
