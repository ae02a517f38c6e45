"""Database access for Custodia.

PostgreSQL (psycopg 3) backs deployed environments; SQLite via aiosqlite is
accepted for local runs. The engine is created lazily from the settings the
first time a session is requested and disposed by close_engine() on
application shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from custodia.core.config import DatabaseSettings

logger = logging.getLogger(__name__)

_DRIVERS = {
    "postgresql": "postgresql+psycopg",
    "postgres": "postgresql+psycopg",
    "sqlite": "sqlite+aiosqlite",
}

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def with_driver(url: str, *, sync: bool = False) -> str:
    """Rewrite a bare ``postgresql://`` or ``sqlite://`` URL to Custodia's drivers.

    URLs that already name a driver are returned unchanged. With ``sync``
    SQLite keeps the standard library driver (used by migrations).
    """
    scheme, sep, rest = url.partition("://")
    if not sep or "+" in scheme:
        return url
    driver = _DRIVERS.get(scheme)
    if driver is None or (sync and scheme == "sqlite"):
        return url
    return f"{driver}://{rest}"


def build_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Create an async engine for the configured backend."""
    url = with_driver(settings.url)
    if settings.is_sqlite:
        return create_async_engine(url, echo=settings.echo)
    return create_async_engine(
        url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_pre_ping=True,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process-wide engine."""
    global _engine, _session_factory

    if _session_factory is None:
        from custodia.core.settings import get_settings

        settings = get_settings().database
        _engine = build_engine(settings)
        _session_factory = async_sessionmaker(bind=_engine, expire_on_commit=False)
        logger.info(
            "Database engine created",
            extra={"backend": "sqlite" if settings.is_sqlite else "postgresql"},
        )
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for one unit of work.

    Workflow and ledger operations commit themselves; anything left
    uncommitted when an exception escapes is rolled back.
    """
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def close_engine() -> None:
    """Dispose of the engine's connection pool (application shutdown)."""
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database engine disposed")
