"""Async SQLAlchemy engine, session factory and idempotent schema creation."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from community_scraper.config import DatabaseConfig
from community_scraper.models.orm import Base

logger = logging.getLogger(__name__)


def create_engine_from_config(db_config: DatabaseConfig) -> AsyncEngine:
    """
    Create an async engine for the configured database URL.

    SQLite file databases get their parent directory created; other
    backends get connection pre-ping and recycling.

    Args:
        db_config: Database configuration

    Returns:
        AsyncEngine instance
    """
    url = make_url(db_config.url)
    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(url, echo=db_config.echo)

    return create_async_engine(
        url,
        echo=db_config.echo,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Returns a session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        class_=AsyncSession,
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Create missing tables and indexes.

    Safe to call on every start: existing tables and data are left untouched.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database schema ready ({engine.url.render_as_string(hide_password=True)})")


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """
    Provides a session that is committed on successful exit, rolled back on
    error and closed regardless.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
