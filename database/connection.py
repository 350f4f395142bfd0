"""
Async database engine and session factory.

Usage:
    from database.connection import get_async_session

    async with get_async_session() as session:
        result = await session.execute(select(Service))

Sessions are created with expire_on_commit=False so ORM objects returned by
services stay readable after their transaction commits.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shared.config import get_settings

logger = logging.getLogger(__name__)


def _build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        # In-memory SQLite must share a single connection across sessions
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


settings = get_settings()
engine: AsyncEngine = _build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    Yield a database session, rolling back on error and always closing it.

    Callers own the transaction: they commit explicitly. Anything left
    uncommitted when the block exits (including on task cancellation) is
    rolled back.
    """
    session = async_session_maker()
    try:
        yield session
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()


def is_postgres(session: AsyncSession) -> bool:
    return session.get_bind().dialect.name == "postgresql"
