"""Detached background refresh for stale-while-revalidate reads.

A stale hit is answered from cache immediately and the refresh runs as an
asyncio task the originating request never awaits. Refresh failures are
logged only; there is no caller to report them to.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from core.cache import CacheService
from core.logging import get_logger
from models.cache import CacheCategory

logger = get_logger(__name__)


@dataclass(frozen=True)
class RefreshRequest:
    """Snapshot of the request that triggered a refresh.

    The live Request object is finished once the stale response is sent, so
    refreshers only see this copy.
    """
    key: str
    category: CacheCategory
    path: str
    query_params: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)
    ttl: Optional[int] = None


Refresher = Callable[[RefreshRequest], Awaitable[Any]]


class RefreshDispatcher:
    """Owns in-flight refresh tasks.

    Concurrent stale hits on the same key each dispatch their own refresh;
    the writes are idempotent upserts so duplicates only waste work.
    """

    def __init__(self, cache: CacheService):
        self.cache = cache
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, request: RefreshRequest, refresher: Refresher) -> asyncio.Task:
        """Schedule a refresh without waiting for it."""
        task = asyncio.create_task(self._refresh(request, refresher))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Background refresh dispatched", cache_key=request.key,
                    category=request.category.value)
        return task

    async def _refresh(self, request: RefreshRequest, refresher: Refresher) -> bool:
        start = time.perf_counter()
        try:
            payload = await refresher(request)
            if payload is None:
                logger.info("Background refresh produced no data", cache_key=request.key)
                return False

            entry = await self.cache.set(
                request.key,
                payload,
                request.category,
                request.ttl,
                {
                    "source": "background_refresh",
                    "path": request.path,
                    "durationMs": int((time.perf_counter() - start) * 1000),
                }
            )
            logger.info("Background refresh completed", cache_key=request.key,
                        stored=entry is not None)
            return entry is not None

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Background refresh failed", cache_key=request.key, error=str(e))
            return False

    async def drain(self) -> None:
        """Wait for every in-flight refresh to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight refreshes."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Background refreshes cancelled", count=len(tasks))
