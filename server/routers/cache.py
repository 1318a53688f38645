"""Cache administration routes."""

from typing import Union

from fastapi import APIRouter, Depends, Query
from fastapi.responses import ORJSONResponse

from constants import CLEAR_ALL_CATEGORY, DEFAULT_ENTRY_LIST_LIMIT
from core.cache import CacheService
from core.cleanup import CacheCleanupService
from core.container import container
from core.errors import InvalidCategory
from core.logging import get_logger
from models.cache import CacheCategory, CacheStats

logger = get_logger(__name__)
router = APIRouter(prefix="/api/cache", tags=["cache"])


def parse_category(category: str, allow_all: bool = False) -> Union[CacheCategory, str]:
    """Validate a category path segment against the closed set."""
    if allow_all and category == CLEAR_ALL_CATEGORY:
        return CLEAR_ALL_CATEGORY
    try:
        return CacheCategory(category)
    except ValueError:
        allowed = [c.value for c in CacheCategory]
        if allow_all:
            allowed.append(CLEAR_ALL_CATEGORY)
        raise InvalidCategory(category, allowed)


def _not_connected(status_code: int = 503, **extra) -> ORJSONResponse:
    return ORJSONResponse(
        {"success": False, "message": "Database not connected", **extra},
        status_code=status_code
    )


@router.get("/stats")
async def get_cache_stats(
    cache: CacheService = Depends(lambda: container.cache())
):
    """Entry totals, per-category counts and expired count."""
    if not cache.is_available():
        return {
            "success": False,
            "message": "Database not connected",
            "data": CacheStats().to_dict()
        }

    stats = await cache.stats()
    return {
        "success": True,
        "data": stats.to_dict(),
        "message": "Cache statistics retrieved successfully"
    }


@router.get("/stats/detailed")
async def get_detailed_cache_stats(
    cleanup: CacheCleanupService = Depends(lambda: container.cleanup_service())
):
    """Stats including the count of still-fresh entries."""
    stats = await cleanup.detailed_stats()
    return {
        "success": cleanup.cache.is_available(),
        "data": stats.to_dict()
    }


@router.get("/cleanup/status")
async def get_cleanup_status(
    cleanup: CacheCleanupService = Depends(lambda: container.cleanup_service())
):
    """Sweep scheduler status."""
    return cleanup.status()


@router.post("/cleanup")
async def force_cleanup(
    cleanup: CacheCleanupService = Depends(lambda: container.cleanup_service())
):
    """Run the expiry sweep now."""
    result = await cleanup.force_cleanup()
    if not result["success"]:
        return ORJSONResponse(result, status_code=503)
    return result


@router.get("/{category}/entries")
async def list_cache_entries(
    category: str,
    limit: int = Query(default=DEFAULT_ENTRY_LIST_LIMIT, ge=1, le=100),
    cache: CacheService = Depends(lambda: container.cache())
):
    """Live entries of one category, newest first."""
    parsed = parse_category(category)
    if not cache.is_available():
        return _not_connected(category=parsed.value, entries=[])

    entries = await cache.list_by_category(parsed, limit)
    return {
        "success": True,
        "category": parsed.value,
        "count": len(entries),
        "entries": [entry.to_dict() for entry in entries]
    }


@router.delete("/{category}")
async def clear_cache(
    category: str,
    cache: CacheService = Depends(lambda: container.cache())
):
    """Clear one category, or every category with `all`."""
    parsed = parse_category(category, allow_all=True)
    if not cache.is_available():
        return _not_connected(category=category, deletedCount=0)

    if parsed == CLEAR_ALL_CATEGORY:
        deleted = await cache.clear_all()
    else:
        deleted = await cache.clear_by_category(parsed)

    logger.info("Cache cleared via API", category=category, deleted=deleted)
    return {
        "success": True,
        "category": category,
        "deletedCount": deleted,
        "message": f"Cleared {deleted} cache entries"
    }
