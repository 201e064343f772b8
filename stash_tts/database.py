"""
Async database setup with SQLAlchemy and aiosqlite.
"""
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from stash_tts.config import DATABASE_URL, ensure_directories
from stash_tts.models import Base


def enable_foreign_keys(engine: AsyncEngine):
    """Turn on SQLite foreign key enforcement for every new connection."""

    @event.listens_for(engine.sync_engine, 'connect')
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the API, the worker and the tests."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# Create async engine
engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    future=True,
)
enable_foreign_keys(engine)

# Session factory
async_session_factory = create_session_factory(engine)


async def enable_wal_mode():
    """Enable WAL mode for SQLite concurrent read/write access."""
    async with engine.begin() as conn:
        await conn.execute(text('PRAGMA journal_mode=WAL'))
        await conn.execute(text('PRAGMA synchronous=NORMAL'))


async def init_db():
    """Initialize database - create tables if they don't exist."""
    ensure_directories()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Enable WAL mode after tables are created
    await enable_wal_mode()


async def close_db():
    """Close database connections."""
    await engine.dispose()


def get_session_factory() -> async_sessionmaker:
    """
    Dependency for components that manage their own transactions
    (the wait protocol, the content store).
    """
    return async_session_factory


async def get_db():
    """
    Dependency that provides an async database session.

    Usage:
        @router.get('/tts-jobs/{job_id}')
        async def get_tts_job(job_id: int, db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
