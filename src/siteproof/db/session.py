"""Async engine and the unit-of-work session used by the API, jobs and CLI."""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from siteproof.config import settings

logger = logging.getLogger(__name__)


def engine_options(url: str, pool_size: int, max_overflow: int) -> dict:
    # SQLite (used by the test-suite) has no connection pool sizing
    if url.startswith("sqlite"):
        return {}
    return {"pool_pre_ping": True, "pool_size": pool_size, "max_overflow": max_overflow}


def make_engine(url: str) -> AsyncEngine:
    return create_async_engine(
        url,
        echo=settings.siteproof_debug,
        **engine_options(url, settings.db_pool_size, settings.db_max_overflow),
    )


engine = make_engine(settings.database_url)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Commit when the block finishes, roll back and re-raise when it fails."""
    async with (factory or async_session_factory)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields one request-scoped session."""
    async with session_scope() as session:
        yield session


async def init_db() -> None:
    """Check the database is reachable before the app starts serving."""
    async with engine.begin() as conn:
        await conn.run_sync(lambda _: None)
    logger.info("Connected to %s", engine.url.render_as_string(hide_password=True))


async def close_db() -> None:
    await engine.dispose()
