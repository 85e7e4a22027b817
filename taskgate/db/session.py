"""
TaskGate: Database Session Management
======================================
Async SQLAlchemy session factory.

Usage:
    from taskgate.db.session import get_db_session

    async with get_db_session() as session:
        result = await session.execute(...)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from taskgate.core.config import get_settings
from taskgate.db.models import Base

# ── Module-level state ──────────────────────────────────────────────────

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str, echo: bool) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite") and ":memory:" in url:
        # One shared connection, otherwise every session sees an empty database
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    return options


async def init_db(url: str | None = None, *, create_schema: bool = True) -> AsyncEngine:
    """
    Create the async engine and session factory.

    Called once during application startup. When ``create_schema`` is set,
    missing tables are created.
    """
    global _engine, _session_factory
    settings = get_settings()
    database_url = url or settings.database_url

    _engine = create_async_engine(
        database_url, **_engine_options(database_url, settings.db_echo_sql)
    )

    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    if create_schema:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    return _engine


async def close_db() -> None:
    """Dispose the engine and its connection pool."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a transactional async session.

    Commits on clean exit, rolls back on exception.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database not initialized. Call init_db() during startup."
        )
    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_engine() -> AsyncEngine:
    """Return the current engine. Raises if not initialized."""
    if _engine is None:
        raise RuntimeError(
            "Database not initialized. Call init_db() during startup."
        )
    return _engine
