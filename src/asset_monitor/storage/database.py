"""Async engine and transaction scope for the storage layer.

Every unit of work runs inside :meth:`DatabaseManager.get_async_session`:
the session commits when the block exits normally and rolls back when it
raises, so a repository call never needs to manage its own transaction.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from asset_monitor.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_SYNC_TO_ASYNC_SCHEMES = {
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def normalize_database_url(database_url: str) -> str:
    """Map a sync driver URL to its async counterpart.

    Args:
        database_url: URL as configured, e.g. ``postgresql://...``.

    Returns:
        A URL usable with ``create_async_engine``.
    """
    for sync_scheme, async_scheme in _SYNC_TO_ASYNC_SCHEMES.items():
        if database_url.startswith(sync_scheme):
            logger.warning(
                "Database URL uses sync scheme %r; using %r instead", sync_scheme, async_scheme
            )
            return async_scheme + database_url[len(sync_scheme) :]
    return database_url


def engine_options(
    database_url: str,
    *,
    pool_size: int,
    max_overflow: int,
    echo: bool,
) -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine`` suited to the backend."""
    options: dict[str, Any] = {"echo": echo}
    if not database_url.startswith("sqlite"):
        options["pool_size"] = pool_size
        options["max_overflow"] = max_overflow
    elif ":memory:" in database_url:
        # Every session must see the same in-memory database.
        options["poolclass"] = StaticPool
    return options


class DatabaseManager:
    """Owns the async engine and hands out transactional sessions.

    The engine is created lazily on first use and recreated after
    :meth:`dispose_async`.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        """Initialize database manager.

        Args:
            database_url: Database connection URL.
            pool_size: Connection pool size (ignored for SQLite).
            max_overflow: Maximum overflow connections (ignored for SQLite).
            echo: Echo SQL statements for debugging.
        """
        self.database_url = normalize_database_url(database_url)
        self._options = engine_options(
            self.database_url, pool_size=pool_size, max_overflow=max_overflow, echo=echo
        )
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **self._options)
        return self._engine

    def _session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            self._sessions = async_sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._sessions

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session as a transaction scope.

        Yields:
            SQLAlchemy AsyncSession, committed on normal exit and rolled back
            on error.
        """
        session = self._session_factory()()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init_schema_async(self) -> None:
        """Create every table directly; production databases use Alembic migrations."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema initialized")

    async def dispose_async(self) -> None:
        """Close all pooled connections."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Database connections disposed")
