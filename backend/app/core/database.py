"""
Database layer — async SQLAlchemy 2.0 (asyncpg for PostgreSQL, aiosqlite for
SQLite).

Provides:
    • Async engine and session factory
    • Engine builder reused by tests for throwaway databases
    • Base model for ORM entities
    • Table creation / teardown for startup and shutdown

Usage:
    from backend.app.core.database import async_session_factory

    async with async_session_factory() as session:
        result = await session.execute(select(AlertRow))
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine with pool options suited to the backend.

    SQLite ignores pool sizing; an in-memory SQLite database must share a
    single connection or every session would see an empty schema.
    """
    kwargs: Dict[str, Any] = {"echo": echo, "future": True}
    if url.startswith("sqlite"):
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Engine ──
engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

# ── Session Factory ──
async_session_factory = build_session_factory(engine)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Lifecycle ──
async def init_db(target: AsyncEngine = engine) -> None:
    """Create all tables (dev/test; production schemas are managed externally)."""
    # Import for side effects: registers the tables on Base.metadata
    from backend.app.storage import tables  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db(target: AsyncEngine = engine) -> None:
    """Dispose engine connections."""
    await target.dispose()
    logger.info("Database connections closed")
