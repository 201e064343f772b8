"""
Job queue tests: enqueue, claim, completion, recovery, pruning and waiting.
"""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stash_tts import config
from stash_tts.errors import ErrorCode, StashError
from stash_tts.models import ACTIVE_JOB_STATUSES, JobStatus, TtsJob, utcnow
from stash_tts.services.job_queue import (
    claim_next_job,
    complete_job_failure,
    complete_job_success,
    count_jobs_by_status,
    enqueue_job,
    get_job,
    list_jobs_for_item,
    mark_stale_running_jobs_failed,
    normalize_voice,
    parse_tts_format,
    prune_older_than,
    wait_for_job,
)


async def _count_active(session_factory, item_id):
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(TtsJob.id))
            .where(TtsJob.item_id == item_id, TtsJob.status.in_(ACTIVE_JOB_STATUSES))
        )
        return result.scalar_one()


class TestInputNormalization:
    """Tests for voice and format handling."""

    def test_format_defaults_to_mp3(self):
        assert parse_tts_format(None) == 'mp3'

    def test_format_is_normalized(self):
        assert parse_tts_format(' WAV ') == 'wav'

    def test_invalid_format_is_validation_error(self):
        with pytest.raises(StashError) as exc_info:
            parse_tts_format('ogg')
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_blank_voice_uses_default(self):
        assert normalize_voice(None) == config.DEFAULT_TTS_VOICE
        assert normalize_voice('   ') == config.DEFAULT_TTS_VOICE
        assert normalize_voice(' p241 ') == 'p241'


class TestEnqueue:
    """Tests for enqueue_job."""

    @pytest.mark.asyncio
    async def test_enqueue_creates_queued_job(self, test_session: AsyncSession, content_store, make_item):
        """Test a new job is queued with the requested parameters."""
        item_id = await make_item()

        result = await enqueue_job(test_session, content_store, item_id, voice='p241', audio_format='wav')

        assert result.created is True
        assert result.poll_interval_ms == config.DEFAULT_POLL_INTERVAL_MS
        assert result.job.status == JobStatus.queued.value
        assert result.job.item_id == item_id
        assert result.job.voice == 'p241'
        assert result.job.format == 'wav'
        assert result.job.started_at is None

    @pytest.mark.asyncio
    async def test_enqueue_twice_returns_same_job(self, test_session: AsyncSession, content_store, make_item):
        """Test enqueue is idempotent while a job is active."""
        item_id = await make_item()

        first = await enqueue_job(test_session, content_store, item_id)
        second = await enqueue_job(test_session, content_store, item_id)

        assert first.created is True
        assert second.created is False
        assert second.job.id == first.job.id

    @pytest.mark.asyncio
    async def test_enqueue_dedups_against_running_job(self, test_session: AsyncSession, content_store, make_item):
        """Test a running job also blocks a new one."""
        item_id = await make_item()
        first = await enqueue_job(test_session, content_store, item_id)
        claimed = await claim_next_job(test_session)
        assert claimed.id == first.job.id

        again = await enqueue_job(test_session, content_store, item_id, voice='other')

        assert again.created is False
        assert again.job.id == first.job.id
        assert again.job.status == JobStatus.running.value

    @pytest.mark.asyncio
    async def test_enqueue_after_terminal_creates_new_job(self, test_session: AsyncSession, content_store, make_item):
        """Test a finished job no longer blocks the item."""
        item_id = await make_item()
        first = await enqueue_job(test_session, content_store, item_id)
        await claim_next_job(test_session)
        await complete_job_failure(test_session, first.job.id, 'INTERNAL_ERROR', 'boom')

        second = await enqueue_job(test_session, content_store, item_id)

        assert second.created is True
        assert second.job.id != first.job.id

    @pytest.mark.asyncio
    async def test_enqueue_unknown_item_not_found(self, test_session: AsyncSession, content_store):
        """Test NOT_FOUND for a missing item and no row written."""
        with pytest.raises(StashError) as exc_info:
            await enqueue_job(test_session, content_store, 424242)

        assert exc_info.value.code == ErrorCode.NOT_FOUND
        result = await test_session.execute(select(func.count(TtsJob.id)))
        assert result.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_enqueue_empty_content_fails_without_row(self, test_session: AsyncSession, content_store, make_item):
        """Test NO_CONTENT for blank text; the item has no jobs afterwards."""
        item_id = await make_item(content='   \n ')

        with pytest.raises(StashError) as exc_info:
            await enqueue_job(test_session, content_store, item_id)

        assert exc_info.value.code == ErrorCode.NO_CONTENT
        assert await list_jobs_for_item(test_session, content_store, item_id) == []

    @pytest.mark.asyncio
    async def test_enqueue_item_without_note_fails(self, test_session: AsyncSession, content_store, make_item):
        """Test an item that was never extracted has no content."""
        item_id = await make_item(content=None)

        with pytest.raises(StashError) as exc_info:
            await enqueue_job(test_session, content_store, item_id)
        assert exc_info.value.code == ErrorCode.NO_CONTENT

    @pytest.mark.asyncio
    async def test_enqueue_invalid_format_checked_first(self, test_session: AsyncSession, content_store):
        """Test validation happens before the item lookup."""
        with pytest.raises(StashError) as exc_info:
            await enqueue_job(test_session, content_store, 424242, audio_format='flac')
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_concurrent_enqueue_creates_one_job(self, session_factory, content_store, make_item):
        """Test racing enqueues for one item yield a single active job."""
        item_id = await make_item()

        async def enqueue():
            async with session_factory() as session:
                return await enqueue_job(session, content_store, item_id)

        results = await asyncio.gather(*(enqueue() for _ in range(5)))

        assert sum(1 for r in results if r.created) == 1
        assert len({r.job.id for r in results}) == 1
        assert await _count_active(session_factory, item_id) == 1


class TestGetAndList:
    """Tests for get_job and list_jobs_for_item."""

    @pytest.mark.asyncio
    async def test_get_job_not_found(self, test_session: AsyncSession):
        with pytest.raises(StashError) as exc_info:
            await get_job(test_session, 12345)
        assert exc_info.value.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_list_jobs_newest_first_with_paging(self, test_session: AsyncSession, content_store, make_item):
        """Test listing order, limit and offset."""
        item_id = await make_item()
        ids = []
        for _ in range(3):
            result = await enqueue_job(test_session, content_store, item_id)
            ids.append(result.job.id)
            await claim_next_job(test_session)
            await complete_job_success(test_session, result.job.id, f'{result.job.id}.mp3')

        jobs = await list_jobs_for_item(test_session, content_store, item_id)
        assert [job.id for job in jobs] == list(reversed(ids))

        page = await list_jobs_for_item(test_session, content_store, item_id, limit=1, offset=1)
        assert [job.id for job in page] == [ids[1]]

    @pytest.mark.asyncio
    async def test_list_jobs_unknown_item(self, test_session: AsyncSession, content_store):
        with pytest.raises(StashError) as exc_info:
            await list_jobs_for_item(test_session, content_store, 999)
        assert exc_info.value.code == ErrorCode.NOT_FOUND


class TestClaim:
    """Tests for claim_next_job."""

    @pytest.mark.asyncio
    async def test_claim_empty_queue_returns_none(self, test_session: AsyncSession):
        assert await claim_next_job(test_session) is None

    @pytest.mark.asyncio
    async def test_claim_marks_running(self, test_session: AsyncSession, content_store, make_item):
        """Test claim sets running, started_at and updated_at."""
        item_id = await make_item()
        queued = await enqueue_job(test_session, content_store, item_id)

        job = await claim_next_job(test_session)

        assert job.id == queued.job.id
        assert job.status == JobStatus.running.value
        assert job.started_at is not None
        assert job.updated_at >= job.created_at

    @pytest.mark.asyncio
    async def test_claim_is_fifo(self, test_session: AsyncSession, content_store, make_item):
        """Test jobs are claimed in creation order."""
        queued_ids = []
        for _ in range(3):
            item_id = await make_item()
            result = await enqueue_job(test_session, content_store, item_id)
            queued_ids.append(result.job.id)

        claimed_ids = [(await claim_next_job(test_session)).id for _ in range(3)]

        assert claimed_ids == queued_ids
        assert await claim_next_job(test_session) is None

    @pytest.mark.asyncio
    async def test_claim_skips_non_queued(self, test_session: AsyncSession, make_item):
        """Test running and terminal jobs are never claimed."""
        for status in (JobStatus.running, JobStatus.succeeded, JobStatus.failed):
            item_id = await make_item()
            test_session.add(TtsJob(item_id=item_id, status=status.value, voice='v', format='mp3'))
        await test_session.commit()

        assert await claim_next_job(test_session) is None

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_job(self, session_factory, content_store, make_item):
        """Test N concurrent claimers: exactly one gets the only queued job."""
        item_id = await make_item()
        async with session_factory() as session:
            queued = await enqueue_job(session, content_store, item_id)

        async def claim():
            async with session_factory() as session:
                return await claim_next_job(session)

        results = await asyncio.gather(*(claim() for _ in range(6)))
        claimed = [job for job in results if job is not None]

        assert len(claimed) == 1
        assert claimed[0].id == queued.job.id

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_share_a_job(self, session_factory, content_store, make_item):
        """Test concurrent claimers over several jobs each get a distinct one."""
        queued_ids = set()
        async with session_factory() as session:
            for _ in range(3):
                item_id = await make_item()
                queued_ids.add((await enqueue_job(session, content_store, item_id)).job.id)

        async def claim():
            async with session_factory() as session:
                return await claim_next_job(session)

        results = await asyncio.gather(*(claim() for _ in range(6)))
        claimed_ids = [job.id for job in results if job is not None]

        assert len(claimed_ids) == 3
        assert set(claimed_ids) == queued_ids


class TestCompletion:
    """Tests for the running -> terminal transitions."""

    @pytest.mark.asyncio
    async def test_success_sets_output_and_clears_errors(self, test_session: AsyncSession, content_store, make_item):
        item_id = await make_item()
        await enqueue_job(test_session, content_store, item_id)
        job = await claim_next_job(test_session)

        assert await complete_job_success(test_session, job.id, 'out.mp3') is True

        done = await get_job(test_session, job.id)
        assert done.status == JobStatus.succeeded.value
        assert done.output_file_name == 'out.mp3'
        assert done.error_code is None
        assert done.error_message is None
        assert done.finished_at is not None

    @pytest.mark.asyncio
    async def test_failure_caps_message(self, test_session: AsyncSession, content_store, make_item):
        item_id = await make_item()
        await enqueue_job(test_session, content_store, item_id)
        job = await claim_next_job(test_session)

        await complete_job_failure(test_session, job.id, 'INTERNAL_ERROR', 'x' * 5000)

        failed = await get_job(test_session, job.id)
        assert failed.status == JobStatus.failed.value
        assert failed.error_code == 'INTERNAL_ERROR'
        assert len(failed.error_message) == config.ERROR_MESSAGE_MAX_LENGTH
        assert failed.output_file_name is None
        assert failed.finished_at is not None

    @pytest.mark.asyncio
    async def test_completion_requires_running(self, test_session: AsyncSession, content_store, make_item):
        """Test queued and terminal jobs cannot be completed."""
        item_id = await make_item()
        queued = await enqueue_job(test_session, content_store, item_id)

        assert await complete_job_success(test_session, queued.job.id, 'x.mp3') is False
        assert (await get_job(test_session, queued.job.id)).status == JobStatus.queued.value

        await claim_next_job(test_session)
        await complete_job_failure(test_session, queued.job.id, 'INTERNAL_ERROR', 'boom')
        assert await complete_job_success(test_session, queued.job.id, 'x.mp3') is False

        job = await get_job(test_session, queued.job.id)
        assert job.status == JobStatus.failed.value
        assert job.output_file_name is None


class TestRecovery:
    """Tests for mark_stale_running_jobs_failed."""

    @pytest.mark.asyncio
    async def test_running_jobs_fail_with_worker_restarted(self, test_session: AsyncSession, make_item):
        running_item = await make_item()
        queued_item = await make_item()
        test_session.add_all([
            TtsJob(item_id=running_item, status='running', voice='v', format='mp3', started_at=utcnow()),
            TtsJob(item_id=queued_item, status='queued', voice='v', format='mp3'),
        ])
        await test_session.commit()

        assert await mark_stale_running_jobs_failed(test_session) == 1

        counts = await count_jobs_by_status(test_session)
        assert counts == {'queued': 1, 'running': 0, 'succeeded': 0, 'failed': 1}

        result = await test_session.execute(select(TtsJob).where(TtsJob.item_id == running_item))
        failed = result.scalar_one()
        assert failed.error_code == ErrorCode.WORKER_RESTARTED.value
        assert failed.finished_at is not None


class TestPrune:
    """Tests for prune_older_than."""

    @pytest.mark.asyncio
    async def test_prunes_only_old_terminal_jobs(self, test_session: AsyncSession, make_item):
        old = utcnow() - timedelta(days=40)
        recent = utcnow() - timedelta(days=1)
        item_ids = [await make_item() for _ in range(4)]
        test_session.add_all([
            TtsJob(item_id=item_ids[0], status='succeeded', voice='v', format='mp3',
                   output_file_name='a.mp3', created_at=old, updated_at=old),
            TtsJob(item_id=item_ids[1], status='failed', voice='v', format='mp3',
                   error_code='INTERNAL_ERROR', created_at=old, updated_at=old),
            TtsJob(item_id=item_ids[2], status='queued', voice='v', format='mp3',
                   created_at=old, updated_at=old),
            TtsJob(item_id=item_ids[3], status='succeeded', voice='v', format='mp3',
                   output_file_name='b.mp3', created_at=recent, updated_at=recent),
        ])
        await test_session.commit()

        deleted = await prune_older_than(test_session, retention_ms=30 * 24 * 60 * 60 * 1000)

        assert deleted == 2
        result = await test_session.execute(select(TtsJob.item_id).order_by(TtsJob.item_id))
        assert result.scalars().all() == [item_ids[2], item_ids[3]]


class TestWaitForJob:
    """Tests for wait_for_job."""

    @pytest.mark.asyncio
    async def test_returns_terminal_job_immediately(self, session_factory, content_store, make_item):
        item_id = await make_item()
        async with session_factory() as session:
            queued = await enqueue_job(session, content_store, item_id)
            await claim_next_job(session)
            await complete_job_success(session, queued.job.id, 'done.mp3')

        job = await asyncio.wait_for(
            wait_for_job(session_factory, queued.job.id, poll_interval_ms=5000, timeout_ms=10000),
            timeout=1.0,
        )
        assert job.status == JobStatus.succeeded.value
        assert job.output_file_name == 'done.mp3'

    @pytest.mark.asyncio
    async def test_timeout_leaves_job_untouched(self, session_factory, content_store, make_item):
        item_id = await make_item()
        async with session_factory() as session:
            queued = await enqueue_job(session, content_store, item_id)

        with pytest.raises(StashError) as exc_info:
            await wait_for_job(session_factory, queued.job.id, poll_interval_ms=10, timeout_ms=50)

        assert exc_info.value.code == ErrorCode.TIMEOUT
        async with session_factory() as session:
            assert (await get_job(session, queued.job.id)).status == JobStatus.queued.value

    @pytest.mark.asyncio
    async def test_waits_until_job_finishes(self, session_factory, content_store, make_item):
        item_id = await make_item()
        async with session_factory() as session:
            queued = await enqueue_job(session, content_store, item_id)

        async def finish_later():
            await asyncio.sleep(0.05)
            async with session_factory() as session:
                await claim_next_job(session)
                await complete_job_failure(session, queued.job.id, 'NO_CONTENT', 'gone')

        finisher = asyncio.create_task(finish_later())
        job = await wait_for_job(session_factory, queued.job.id, poll_interval_ms=10, timeout_ms=5000)
        await finisher

        assert job.status == JobStatus.failed.value
        assert job.error_code == 'NO_CONTENT'

    @pytest.mark.asyncio
    async def test_unknown_job_not_found(self, session_factory):
        with pytest.raises(StashError) as exc_info:
            await wait_for_job(session_factory, 777, poll_interval_ms=10, timeout_ms=50)
        assert exc_info.value.code == ErrorCode.NOT_FOUND
