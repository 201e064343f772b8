"""
Background worker loop for TTS jobs.
"""
import asyncio
import logging
from typing import Callable, Optional

from stash_tts import config
from stash_tts.models import TtsJob
from stash_tts.services.job_executor import JobExecutor
from stash_tts.services.job_queue import mark_stale_running_jobs_failed, prune_older_than

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[BaseException], None]


def _log_error(error: BaseException):
    logger.error('TTS worker error', exc_info=(type(error), error, error.__traceback__))


class JobWorker:
    """
    Polls the job table and executes queued jobs one at a time.

    - On start, jobs left running by a previous process are failed with
      WORKER_RESTARTED and old terminal jobs are pruned.
    - Queued jobs are drained back-to-back; when the queue is empty the loop
      sleeps poll_interval_ms (stop() wakes it early).
    - stop() lets the current job finish and claims nothing afterwards.
    """

    def __init__(
        self,
        executor: JobExecutor,
        poll_interval_ms: int = config.DEFAULT_POLL_INTERVAL_MS,
        retention_ms: int = config.DEFAULT_RETENTION_MS,
        prune_interval_ms: Optional[int] = config.DEFAULT_PRUNE_INTERVAL_MS,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.executor = executor
        self.poll_interval_ms = poll_interval_ms
        self.retention_ms = retention_ms
        self.prune_interval_ms = prune_interval_ms
        self.on_error = on_error or _log_error

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._last_prune: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def _report(self, error: BaseException):
        try:
            self.on_error(error)
        except Exception:
            logger.exception('TTS worker error callback failed')

    async def recover_stale_jobs(self) -> int:
        async with self.executor.session_factory() as session:
            count = await mark_stale_running_jobs_failed(session)
        if count:
            logger.warning('Marked %d orphaned running job(s) as failed', count)
        return count

    async def prune(self) -> int:
        try:
            async with self.executor.session_factory() as session:
                count = await prune_older_than(session, self.retention_ms)
        finally:
            # A failed prune still waits a full interval before the next attempt
            self._last_prune = asyncio.get_running_loop().time()
        if count:
            logger.info('Pruned %d finished job(s)', count)
        return count

    async def _startup(self):
        try:
            await self.recover_stale_jobs()
        except Exception as e:
            self._report(e)
        try:
            await self.prune()
        except Exception as e:
            self._report(e)

    def _prune_due(self) -> bool:
        if not self.prune_interval_ms or self._last_prune is None:
            return False
        elapsed = asyncio.get_running_loop().time() - self._last_prune
        return elapsed * 1000 >= self.prune_interval_ms

    async def _sleep(self):
        """Idle wait; returns early when stop() sets the wake event."""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval_ms / 1000)
        except asyncio.TimeoutError:
            pass

    async def _run_loop(self):
        """Main processing loop."""
        await self._startup()

        while self._running:
            if self._prune_due():
                try:
                    await self.prune()
                except Exception as e:
                    self._report(e)

            if not self._running:
                break

            try:
                processed = await self.executor.process_next()
            except Exception as e:
                # Log but don't crash the loop
                self._report(e)
                processed = None

            if processed is not None:
                continue
            await self._sleep()

    async def start(self) -> 'JobWorker':
        """Start the background loop. Returns self so callers can keep a handle for stop()."""
        if self._task is not None:
            return self
        self._running = True
        self._wake.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info('TTS worker started (poll every %d ms)', self.poll_interval_ms)
        return self

    async def stop(self):
        """Stop the loop, waiting for the in-flight job to finish."""
        self._running = False
        self._wake.set()
        task = self._task
        if task is None:
            return
        # Cancelling a stop() caller leaves the loop task running
        await asyncio.shield(task)
        if self._task is task:
            self._task = None
            logger.info('TTS worker stopped')


async def start_worker(
    executor: JobExecutor,
    poll_interval_ms: int = config.DEFAULT_POLL_INTERVAL_MS,
    on_error: Optional[ErrorCallback] = None,
    **kwargs,
) -> JobWorker:
    """Create and start a worker; call stop() on the returned handle."""
    worker = JobWorker(executor, poll_interval_ms=poll_interval_ms, on_error=on_error, **kwargs)
    return await worker.start()


async def run_one_job(
    executor: JobExecutor,
    retention_ms: int = config.DEFAULT_RETENTION_MS,
) -> Optional[TtsJob]:
    """
    Process at most one job and return it (None if the queue was empty).

    Runs the same recovery and pruning as worker startup first.
    """
    worker = JobWorker(executor, retention_ms=retention_ms, prune_interval_ms=None)
    await worker.recover_stale_jobs()
    await worker.prune()
    return await executor.process_next()


# Singleton instance
_job_worker: Optional[JobWorker] = None


def get_job_worker() -> JobWorker:
    """Get the server's worker singleton, built from configuration."""
    global _job_worker
    if _job_worker is None:
        from stash_tts.database import async_session_factory
        from stash_tts.services.audio_files import AudioStore
        from stash_tts.services.content_store import DatabaseContentStore
        from stash_tts.services.synthesis import get_synthesizer

        executor = JobExecutor(
            session_factory=async_session_factory,
            synthesizer=get_synthesizer(),
            content_store=DatabaseContentStore(async_session_factory),
            audio_store=AudioStore(config.AUDIO_DIR),
        )
        _job_worker = JobWorker(executor)
    return _job_worker


def reset_job_worker():
    """Reset the worker singleton (for testing)."""
    global _job_worker
    _job_worker = None
