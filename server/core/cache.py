"""Response cache service backed by the entry store.

Route handlers call this API directly. Every public method swallows storage
failures and returns a "nothing happened" value (None, False, 0, zeroed
stats), so a broken store only costs the optimization, never the request.
"""

import re
from typing import Any, Dict, List, Optional, Union

from core.config import Settings
from core.entry_store import EntryStore, category_value
from core.logging import get_logger, log_cache_operation
from models.cache import CacheCategory, CacheEntry, CacheStats

logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-z0-9:_-]")


class CacheService:
    """Async cache API: key derivation plus fail-open reads and writes."""

    def __init__(self, settings: Settings, store: EntryStore):
        self.settings = settings
        self.store = store

    @property
    def default_ttl(self) -> int:
        return self.settings.cache_ttl_seconds

    def is_available(self) -> bool:
        """Check if the backing store is connected."""
        return self.store.is_connected

    async def healthy(self) -> bool:
        """Read-only liveness check: connected and able to count entries."""
        if not self.is_available():
            return False
        return (await self.store.count_all()).ok

    def now(self) -> float:
        return self.store.clock()

    @staticmethod
    def make_key(category: Union[CacheCategory, str], *parts: Any) -> str:
        """Build a normalized cache key.

        Joins the category and the stringified parts with ':', lowercases, and
        replaces anything outside [a-z0-9:_-] with '_'. Empty parts are dropped.
        """
        key_parts = [category_value(category)] + [str(p) for p in parts if p is not None]
        key = ":".join(p for p in key_parts if p)
        return _UNSAFE_KEY_CHARS.sub("_", key.lower())

    async def get(self, key: str) -> Optional[Any]:
        """Get a live payload, or None on miss or failure."""
        entry = await self.get_entry(key)
        return entry.payload if entry else None

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Get the live entry including its expiry, or None."""
        result = await self.store.find_live_by_key(key)
        if not result.ok:
            log_cache_operation(logger, "get", key, hit=False, error=str(result.error))
            return None

        log_cache_operation(logger, "get", key, hit=result.value is not None)
        return result.value

    async def set(self, key: str, payload: Any, category: Union[CacheCategory, str],
                  ttl_seconds: Optional[int] = None,
                  metadata: Optional[Dict[str, Any]] = None) -> Optional[CacheEntry]:
        """Upsert an entry expiring ttl_seconds from now (default TTL when unset)."""
        ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else self.default_ttl
        expires_at = self.now() + ttl

        result = await self.store.upsert(key, payload, category, expires_at, metadata)
        if not result.ok:
            logger.warning("Cache set failed", key=key, error=str(result.error))
            return None

        log_cache_operation(logger, "set", key, ttl=ttl, category=category_value(category))
        return result.value

    async def exists(self, key: str) -> bool:
        """Check if a live entry exists for key."""
        result = await self.store.find_live_by_key(key)
        return result.ok and result.value is not None

    async def delete(self, key: str) -> bool:
        """Delete an entry. Returns whether a row was removed."""
        result = await self.store.delete_by_key(key)
        deleted = result.unwrap_or(False)
        log_cache_operation(logger, "delete", key, deleted=deleted)
        return deleted

    async def clear_by_category(self, category: Union[CacheCategory, str]) -> int:
        """Remove every entry of one category. Returns count removed."""
        result = await self.store.delete_by_category(category)
        if not result.ok:
            logger.warning("Cache clear failed", category=category_value(category),
                           error=str(result.error))
            return 0

        logger.info("Cache cleared", category=category_value(category), deleted=result.value)
        return result.value

    async def clear_all(self) -> int:
        """Clear every known category. Returns total removed."""
        total = 0
        for category in CacheCategory:
            total += await self.clear_by_category(category)
        logger.info("All cache categories cleared", deleted=total)
        return total

    async def list_by_category(self, category: Union[CacheCategory, str],
                               limit: int = 10) -> List[CacheEntry]:
        """Live entries of a category, newest first."""
        result = await self.store.find_live_by_category(category, limit)
        return result.unwrap_or([])

    async def stats(self) -> CacheStats:
        """Totals, per-category counts and expired count (zeroed on failure)."""
        total = await self.store.count_all()
        by_category = await self.store.count_by_category()
        expired = await self.store.count_expired()

        if not (total.ok and by_category.ok and expired.ok):
            return CacheStats()

        return CacheStats(
            total=total.value,
            by_category=by_category.value,
            expired_count=expired.value,
        )

    async def cleanup(self) -> int:
        """Sweep expired entries. Returns count removed (0 on failure)."""
        result = await self.store.sweep_expired()
        if not result.ok:
            logger.warning("Cache cleanup failed", error=str(result.error))
            return 0

        if result.value:
            logger.info("Removed expired cache entries", count=result.value)
        return result.value
