"""Database connection and session management.

Uses lazy initialization to ensure the engine is created within
the correct event loop context, avoiding asyncpg event loop issues.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from regcomms.config import settings

# Engine and session maker - lazily initialized
_engine: AsyncEngine | None = None
_async_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the database engine.

    When testing=True, uses NullPool to avoid event loop issues
    with connection pooling across different test event loops.
    """
    global _engine
    if _engine is None:
        if settings.testing:
            _engine = create_async_engine(settings.database_url, poolclass=NullPool)
        else:
            _engine = create_async_engine(
                settings.database_url,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
            )
    return _engine


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session maker whose objects stay readable after commit.

    Repositories open one short session per unit of work and hand back
    detached rows, so ``expire_on_commit`` must be off.
    """
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the process-wide session maker."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = make_session_maker(get_engine())
    return _async_session_maker


async def check_database_connection() -> bool:
    """Return True when the database answers ``SELECT 1``."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
            return True
    except Exception:
        return False


async def close_database() -> None:
    """Close the database engine and all connections."""
    global _engine, _async_session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None
