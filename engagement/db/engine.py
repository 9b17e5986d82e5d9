"""Async SQLAlchemy engine for the activity event store.

With DATABASE_URL set (postgresql+asyncpg://...) the module builds one
engine and a session factory at import time; each activity request gets
its own session through session_scope().  Without it, ``engine`` and
``async_session_factory`` stay None and the API serves from the in-memory
store instead.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from engagement.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None

if SETTINGS.database_url:
    # Ingestion is many small writes; keep statement echo off even in dev,
    # it would drown the request log.
    engine = create_async_engine(
        SETTINGS.database_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit when the block exits cleanly, else roll back."""
    if async_session_factory is None:
        raise RuntimeError("DATABASE_URL is not configured")
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()


async def ping_database() -> None:
    """Raise if the database cannot answer ``SELECT 1``."""
    if engine is None:
        raise RuntimeError("DATABASE_URL is not configured")
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


@asynccontextmanager
async def lifespan_db() -> AsyncIterator[None]:
    if engine is None:
        logger.info("No DATABASE_URL configured; activity events kept in memory")
        yield
        return

    logger.info("Activity store: %s", engine.url.render_as_string(hide_password=True))
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database engine disposed")
