"""
Pytest fixtures for testing.
"""
import asyncio
from pathlib import Path
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession

from stash_tts.database import create_session_factory, enable_foreign_keys, get_db, get_session_factory
from stash_tts.models import Base, Item, Note
from stash_tts.services.audio_files import AudioStore
from stash_tts.services.content_store import DatabaseContentStore
from stash_tts.services.job_executor import JobExecutor
from stash_tts.services.job_worker import JobWorker, reset_job_worker
from stash_tts.services.synthesis import SynthesisResult, TTSProviderError, reset_synthesizer


class StubSynthesizer:
    """
    In-memory synthesizer.

    Set error to make synthesize() raise, delay to simulate a slow provider,
    output_format to simulate the mp3 -> wav fallback.
    """

    name = 'stub'

    def __init__(self):
        self.calls: List[tuple] = []
        self.error: Optional[BaseException] = None
        self.delay = 0.0
        self.output_format: Optional[str] = None
        self.audio = b'ID3' + b'\x00' * 64
        self.started = asyncio.Event()

    async def synthesize(self, text: str, voice: str, audio_format: str) -> SynthesisResult:
        self.calls.append((text, voice, audio_format))
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SynthesisResult(
            audio=self.audio,
            provider=self.name,
            voice=voice,
            format=self.output_format or audio_format,
        )


@pytest.fixture(scope='function')
def temp_db_path(tmp_path):
    """Create a temporary database path for testing."""
    return tmp_path / 'test.db'


@pytest.fixture(scope='function')
def temp_audio_dir(tmp_path) -> Path:
    """Create a temporary audio directory for testing."""
    audio_dir = tmp_path / 'audio'
    audio_dir.mkdir()
    return audio_dir


@pytest.fixture(scope='function')
def test_db_url(temp_db_path):
    """Generate test database URL."""
    return f'sqlite+aiosqlite:///{temp_db_path}'


@pytest_asyncio.fixture(scope='function')
async def test_engine(test_db_url):
    """Create a test database engine."""
    engine = create_async_engine(test_db_url, echo=False)
    enable_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text('PRAGMA journal_mode=WAL'))
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest_asyncio.fixture(scope='function')
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_item(session_factory):
    """Factory creating an item with extracted content: await make_item(content='...')."""
    counter = {'n': 0}

    async def _make_item(content: Optional[str] = 'Some extracted article text.', title: Optional[str] = 'An Article') -> int:
        counter['n'] += 1
        async with session_factory() as session:
            item = Item(url=f'https://example.com/articles/{counter["n"]}', title=title)
            session.add(item)
            await session.flush()
            if content is not None:
                session.add(Note(item_id=item.id, content=content))
            await session.commit()
            return item.id

    return _make_item


@pytest.fixture
def content_store(session_factory):
    return DatabaseContentStore(session_factory)


@pytest.fixture
def audio_store(temp_audio_dir):
    return AudioStore(temp_audio_dir)


@pytest.fixture
def stub_synthesizer():
    return StubSynthesizer()


@pytest.fixture
def unavailable_error():
    return TTSProviderError('Coqui TTS CLI not found.', TTSProviderError.UNAVAILABLE)


@pytest.fixture
def executor(session_factory, stub_synthesizer, content_store, audio_store):
    return JobExecutor(
        session_factory=session_factory,
        synthesizer=stub_synthesizer,
        content_store=content_store,
        audio_store=audio_store,
    )


@pytest_asyncio.fixture
async def running_worker(executor):
    """A worker polling the test database every 20 ms."""
    worker = JobWorker(executor, poll_interval_ms=20)
    await worker.start()
    yield worker
    await worker.stop()


@pytest_asyncio.fixture
async def client(session_factory, audio_store):
    """Create a test client with the app wired to the test database."""
    reset_synthesizer()
    reset_job_worker()

    from server import app
    from stash_tts.routers.jobs import get_audio_store

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_audio_store] = lambda: audio_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()
    reset_job_worker()
