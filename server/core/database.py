"""Async database service with SQLModel and SQLAlchemy 2.0.

Owns the process-wide engine backing the response cache. A failed startup
leaves the service disconnected instead of aborting the process; every cache
operation reads the `is_connected` gate first.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

from core.config import Settings
from core.logging import get_logger, quiet_loggers
from models.cache import CacheEntry  # noqa: F401  (registers the table on SQLModel.metadata)

logger = get_logger(__name__)


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def startup(self) -> bool:
        """Initialize database connection and create tables.

        Returns whether the store is usable. Failures are logged and the
        process keeps running without caching.
        """
        quiet_loggers("aiosqlite", "sqlalchemy.engine", "sqlalchemy.pool")

        try:
            self.engine = create_async_engine(
                self.settings.database_url,
                echo=self.settings.database_echo,
                future=True,
                **self._engine_options()
            )

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            self._connected = True
            logger.info("Database initialized successfully", url=self._redacted_url())

        except Exception as e:
            self._connected = False
            logger.error("Database startup failed, continuing without cache",
                         url=self._redacted_url(), error=str(e))

        return self._connected

    async def shutdown(self):
        """Close database connections."""
        self._connected = False
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.async_session = None
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def ping(self) -> bool:
        """Round-trip a trivial query."""
        if not self._connected:
            return False
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("Database ping failed", error=str(e))
            return False

    def _engine_options(self) -> Dict[str, Any]:
        # SQLite engines manage their own pool; sizing only applies to server databases
        if self.settings.is_sqlite:
            return {}
        return {
            "pool_size": self.settings.database_pool_size,
            "max_overflow": self.settings.database_max_overflow,
            "pool_pre_ping": True,
        }

    def _redacted_url(self) -> str:
        url = self.settings.database_url
        if "@" in url and "://" in url:
            scheme, rest = url.split("://", 1)
            return f"{scheme}://***@{rest.split('@', 1)[1]}"
        return url
