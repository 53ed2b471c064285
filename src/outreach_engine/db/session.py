"""Database session management.

One async SQLAlchemy engine per process, created lazily from
``settings.database``. Tables are created by ``init_db``; there is no
migration tool, the schema is small and additive.
"""
from __future__ import annotations

from pathlib import Path

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from outreach_engine.config import DatabaseSettings, get_settings
from outreach_engine.db.base import Base


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_db_engine(url: str, echo: bool = False, pool_size: int = 5, max_overflow: int = 10) -> AsyncEngine:
    """Create an async engine with pooling suited to the backend.

    - SQLite in memory: one shared connection, otherwise each session
      sees an empty database
    - SQLite file: parent directory created, thread check disabled
    - Anything else: bounded pool with pre-ping and hourly recycle
    """
    if url.startswith("sqlite"):
        if ":memory:" in url:
            return create_async_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        if "///" in url:
            Path(url.split("///", 1)[1]).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )

    return create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def get_db_engine(settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Get or create the process-wide database engine."""
    global _engine

    if _engine is None:
        settings = settings or get_settings().database
        _engine = create_db_engine(
            settings.url,
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
        )

    return _engine


def session_factory_for(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``. Sessions keep loaded rows after commit."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory for the process-wide engine."""
    global _session_factory

    if _session_factory is None:
        _session_factory = session_factory_for(get_db_engine())

    return _session_factory


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables. Safe to call multiple times."""
    from outreach_engine.db import models  # noqa: F401  (registers tables)

    engine = engine or get_db_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the process-wide engine. Call during application shutdown."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


# Testing utilities
async def create_test_engine(url: str = "sqlite+aiosqlite:///:memory:") -> AsyncEngine:
    """Create an engine with all tables created (default: in-memory SQLite)."""
    engine = create_db_engine(url)
    await init_db(engine)
    return engine


def get_test_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return session_factory_for(engine)
