"""
Job queue services.
"""
from stash_tts.services.audio_files import AudioStore
from stash_tts.services.content_store import AudioMetadata, ContentStore, DatabaseContentStore, ItemContent
from stash_tts.services.job_executor import JobExecutor
from stash_tts.services.job_queue import (
    EnqueueResult,
    claim_next_job,
    complete_job_failure,
    complete_job_success,
    enqueue_job,
    get_job,
    list_jobs_for_item,
    mark_stale_running_jobs_failed,
    prune_older_than,
    wait_for_job,
)
from stash_tts.services.job_worker import JobWorker, run_one_job, start_worker
from stash_tts.services.synthesis import SpeechSynthesizer, SynthesisResult, TTSProviderError

__all__ = [
    'AudioStore',
    'AudioMetadata',
    'ContentStore',
    'DatabaseContentStore',
    'ItemContent',
    'JobExecutor',
    'EnqueueResult',
    'claim_next_job',
    'complete_job_failure',
    'complete_job_success',
    'enqueue_job',
    'get_job',
    'list_jobs_for_item',
    'mark_stale_running_jobs_failed',
    'prune_older_than',
    'wait_for_job',
    'JobWorker',
    'run_one_job',
    'start_worker',
    'SpeechSynthesizer',
    'SynthesisResult',
    'TTSProviderError',
]
