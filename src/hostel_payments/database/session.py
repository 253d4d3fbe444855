"""Engines, session factories and the request-scoped session dependency."""

import os
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./hostel_payments.db"

# Process-wide engine owned by the FastAPI lifespan
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """
    Resolve ``DATABASE_URL``.

    Plain ``postgres://`` and ``postgresql://`` URLs (as handed out by most
    hosting providers) are rewritten to the asyncpg driver; anything else is
    used as given.
    """
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        return DEFAULT_DATABASE_URL
    for prefix in ("postgresql://", "postgres://"):
        if db_url.startswith(prefix):
            return "postgresql+asyncpg://" + db_url[len(prefix):]
    return db_url


def _echo_sql() -> bool:
    return os.getenv("DATABASE_ECHO", "").lower() in ("1", "true", "yes")


def create_async_engine(
    database_url: Optional[str] = None,
    echo: Optional[bool] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Build an async engine for the payments database.

    SQLite gets a single shared connection so an in-memory database
    survives across sessions; server databases get a pre-pinged pool.

    Args:
        database_url: Connection URL. Defaults to get_database_url().
        echo: Log SQL statements. Defaults to ``DATABASE_ECHO``.
        pool_size: Pooled connections for server databases.
        max_overflow: Extra connections allowed beyond pool_size.
    """
    url = database_url or get_database_url()
    echo = _echo_sql() if echo is None else echo

    if url.startswith("sqlite"):
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to ``engine``, or to the engine opened by init_db().

    Sessions neither expire loaded objects on commit nor autoflush: services
    flush explicitly before the constraint checks they rely on.
    """
    if engine is None:
        if _session_factory is None:
            raise RuntimeError("Database not initialized. Call init_db() first.")
        return _session_factory

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


async def init_db(
    database_url: Optional[str] = None,
    echo: Optional[bool] = None,
    create_schema: bool = True,
) -> None:
    """Open the process-wide engine, creating missing tables unless told not to."""
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = get_async_session_factory(_engine)

    if create_schema:
        await create_tables(_engine)
    logger.info(f"Database ready ({_engine.url.get_backend_name()})")


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed")


@asynccontextmanager
async def standalone_session(
    database_url: Optional[str] = None,
    create_schema: bool = True,
) -> AsyncIterator[AsyncSession]:
    """
    One unit of work on a private engine, for jobs that run outside the app
    (the maintenance CLI, scheduled sweeps).

    Commits when the block exits cleanly, rolls back and re-raises otherwise,
    and always disposes the engine.

    Example:
        async with standalone_session() as session:
            swept = await ExpirySweeper(session).sweep()
    """
    engine = create_async_engine(database_url)
    try:
        if create_schema:
            await create_tables(engine)
        async with get_async_session_factory(engine)() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    finally:
        await engine.dispose()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: one session per request, committed after the route
    returns and rolled back if it raises.
    """
    async with get_async_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
