"""Entry store: durable CacheEntry rows with TTL, indexed by key and category.

Every operation returns a StoreResult instead of raising. Storage-layer errors
become StoreResult.failure(StoreUnavailable) plus a logged warning, so callers
decide how to degrade without wrapping each call in try/except.
"""

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from core.database import Database
from core.errors import StoreUnavailable
from core.logging import get_logger
from models.cache import CacheCategory, CacheEntry

logger = get_logger(__name__)

T = TypeVar("T")

CategoryLike = Union[CacheCategory, str]


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of an entry store operation: a value, or a hard failure."""
    value: Optional[T] = None
    error: Optional[StoreUnavailable] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        """Return the value on success, `default` on failure."""
        return self.value if self.ok else default

    @classmethod
    def success(cls, value: T) -> "StoreResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: StoreUnavailable) -> "StoreResult[T]":
        return cls(error=error)


def category_value(category: CategoryLike) -> str:
    return category.value if isinstance(category, CacheCategory) else str(category)


class EntryStore:
    """Async CRUD and bulk operations over the cache_entries table."""

    def __init__(self, database: Database, clock: Callable[[], float] = time.time):
        self.database = database
        self.clock = clock

    @property
    def is_connected(self) -> bool:
        return self.database.is_connected

    async def _run(self, operation: str, action: Callable[[], Awaitable[T]],
                   **context: Any) -> StoreResult[T]:
        if not self.database.is_connected:
            return StoreResult.failure(StoreUnavailable(operation, "database not connected"))
        try:
            return StoreResult.success(await action())
        except Exception as e:
            logger.warning("Entry store operation failed", operation=operation,
                           error=str(e), **context)
            return StoreResult.failure(StoreUnavailable(operation, str(e)))

    # ============================================================================
    # Writes
    # ============================================================================

    async def upsert(self, key: str, payload: Any, category: CategoryLike,
                     expires_at: float,
                     metadata: Optional[Dict[str, Any]] = None) -> StoreResult[CacheEntry]:
        """Insert the row for `key`, or replace everything but created_at."""

        async def write() -> CacheEntry:
            async with self.database.get_session() as session:
                now = self.clock()
                entry = await session.get(CacheEntry, key)

                if entry:
                    entry.payload = payload
                    entry.category = category_value(category)
                    entry.expires_at = expires_at
                    entry.metadata_json = metadata or {}
                    entry.updated_at = now
                else:
                    entry = CacheEntry(
                        key=key,
                        payload=payload,
                        category=category_value(category),
                        expires_at=expires_at,
                        metadata_json=metadata or {},
                        created_at=now,
                        updated_at=now
                    )
                    session.add(entry)

                await session.commit()
                return entry

        async def write_with_retry() -> CacheEntry:
            try:
                return await write()
            except IntegrityError:
                # A concurrent writer inserted the key first; the retry updates it
                logger.debug("Upsert lost insert race, retrying as update", key=key)
                return await write()

        return await self._run("upsert", write_with_retry, key=key)

    async def delete_by_key(self, key: str) -> StoreResult[bool]:
        """Remove the row for `key`. Value is whether a row was removed."""

        async def remove() -> bool:
            async with self.database.get_session() as session:
                result = await session.execute(delete(CacheEntry).where(CacheEntry.key == key))
                await session.commit()
                return (result.rowcount or 0) > 0

        return await self._run("delete_by_key", remove, key=key)

    async def delete_by_category(self, category: CategoryLike) -> StoreResult[int]:
        """Remove every row of a category, live or expired."""
        value = category_value(category)

        async def remove() -> int:
            async with self.database.get_session() as session:
                result = await session.execute(
                    delete(CacheEntry).where(CacheEntry.category == value)
                )
                await session.commit()
                return result.rowcount or 0

        return await self._run("delete_by_category", remove, category=value)

    async def sweep_expired(self) -> StoreResult[int]:
        """Bulk-delete rows with expires_at <= now."""

        async def sweep() -> int:
            async with self.database.get_session() as session:
                result = await session.execute(
                    delete(CacheEntry).where(CacheEntry.expires_at <= self.clock())
                )
                await session.commit()
                return result.rowcount or 0

        return await self._run("sweep_expired", sweep)

    # ============================================================================
    # Reads
    # ============================================================================

    async def find_live_by_key(self, key: str) -> StoreResult[Optional[CacheEntry]]:
        """Row for `key` if it has not expired; an expired row reads as missing."""

        async def find() -> Optional[CacheEntry]:
            async with self.database.get_session() as session:
                stmt = select(CacheEntry).where(
                    CacheEntry.key == key,
                    CacheEntry.expires_at > self.clock()
                )
                result = await session.execute(stmt)
                return result.scalar_one_or_none()

        return await self._run("find_live_by_key", find, key=key)

    async def find_live_by_category(self, category: CategoryLike,
                                    limit: int = 10) -> StoreResult[List[CacheEntry]]:
        """Live rows of a category, newest first."""
        value = category_value(category)

        async def find() -> List[CacheEntry]:
            async with self.database.get_session() as session:
                stmt = (
                    select(CacheEntry)
                    .where(CacheEntry.category == value, CacheEntry.expires_at > self.clock())
                    .order_by(CacheEntry.created_at.desc())
                    .limit(limit)
                )
                result = await session.execute(stmt)
                return list(result.scalars().all())

        return await self._run("find_live_by_category", find, category=value)

    # ============================================================================
    # Statistics
    # ============================================================================

    async def count_all(self) -> StoreResult[int]:
        async def count() -> int:
            async with self.database.get_session() as session:
                result = await session.execute(select(func.count()).select_from(CacheEntry))
                return result.scalar_one()

        return await self._run("count_all", count)

    async def count_by_category(self) -> StoreResult[Dict[str, int]]:
        async def count() -> Dict[str, int]:
            async with self.database.get_session() as session:
                stmt = (
                    select(CacheEntry.category, func.count())
                    .group_by(CacheEntry.category)
                )
                result = await session.execute(stmt)
                return {row[0]: row[1] for row in result.all()}

        return await self._run("count_by_category", count)

    async def count_expired(self) -> StoreResult[int]:
        async def count() -> int:
            async with self.database.get_session() as session:
                stmt = (
                    select(func.count())
                    .select_from(CacheEntry)
                    .where(CacheEntry.expires_at <= self.clock())
                )
                result = await session.execute(stmt)
                return result.scalar_one()

        return await self._run("count_expired", count)
