"""Health check utilities for the /health endpoint."""
import time
from typing import Dict, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from core.cache import CacheService
    from core.cleanup import CacheCleanupService
    from core.database import Database
    from services.agent import AgentService

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


async def check_cache(cache: "CacheService") -> bool:
    """Query the cache table without writing to it."""
    return await cache.healthy()


async def get_health_status(
    database: "Database",
    cache: "CacheService",
    cleanup: "CacheCleanupService",
    agent: "AgentService"
) -> Dict[str, Any]:
    """Get health status for /health.

    The service is "degraded" rather than down when the store is unreachable,
    since every route still works without the cache.
    """
    db_healthy = await database.ping()
    cache_healthy = await check_cache(cache)

    return {
        "status": "healthy" if (db_healthy and cache_healthy) else "degraded",
        "uptime_seconds": round(get_uptime(), 1),
        "checks": {
            "database": db_healthy,
            "cache": cache_healthy,
            "agent": agent.is_available,
        },
        "cleanup": cleanup.status(),
    }
