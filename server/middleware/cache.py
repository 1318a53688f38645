"""Request-scoped response caching for route handlers.

`cache_middleware(category)` is a route dependency: it derives the cache key
for the request, answers from cache on a hit (the handler never runs), and
otherwise tags `request.state` so the handler can write its result back with
`cache_response`. `background_refresh_middleware` is the stale-while-
revalidate variant that also answers near-expiry hits while a detached task
refreshes the entry.

Neither dependency can fail a request: any error while deriving the key or
reading the cache is logged and treated as a miss.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import ORJSONResponse

from constants import (
    AGENT_TOOLS_BUCKET_SECONDS,
    BODY_METHODS,
    DATE_PARAM,
    DEFAULT_AGENT_MAX_STEPS,
    EMAILS_BUCKET_SECONDS,
    MAX_STEPS_FIELD,
    QUERY_BODY_FIELD,
    QUERY_PARAM,
    REFRESH_PARAM,
    SUMMARY_FINGERPRINT_ITEMS,
)
from core.cache import CacheService
from core.container import container
from core.errors import CachedResponse
from core.logging import get_logger
from core.refresh import RefreshDispatcher, RefreshRequest, Refresher
from models.cache import CacheCategory

logger = get_logger(__name__)


def get_cache_service() -> CacheService:
    return container.cache()


def get_refresh_dispatcher() -> RefreshDispatcher:
    return container.refresh_dispatcher()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def cache_envelope(data: Any, cached: bool = False, message: Optional[str] = None,
                   **extra: Any) -> Dict[str, Any]:
    """Standard response body for cacheable routes."""
    body = {
        "success": True,
        "data": data,
        "cached": cached,
        "timestamp": utc_now_iso(),
    }
    body.update(extra)
    if message:
        body["message"] = message
    return body


# ============================================================================
# Key derivation
# ============================================================================

KeyRule = Callable[[CacheCategory, RefreshRequest, float], str]


def _agent_query_key(category: CacheCategory, req: RefreshRequest, now: float) -> str:
    query = req.body.get(QUERY_BODY_FIELD) or req.query_params.get(QUERY_PARAM) or ""
    max_steps = (req.body.get(MAX_STEPS_FIELD) or req.query_params.get(MAX_STEPS_FIELD)
                 or DEFAULT_AGENT_MAX_STEPS)
    return CacheService.make_key(category, query, max_steps)


def _tools_key(category: CacheCategory, req: RefreshRequest, now: float) -> str:
    return CacheService.make_key(category, int(now // AGENT_TOOLS_BUCKET_SECONDS))


def _identity(item: Any, *fields: str) -> str:
    if isinstance(item, Mapping):
        for name in fields:
            if item.get(name):
                return str(item[name])
        return ""
    return str(item)


def _summary_key(category: CacheCategory, req: RefreshRequest, now: float) -> str:
    # Only the first few items are fingerprinted: same-length batches that
    # differ past that point share a key.
    emails = req.body.get("emails") or []
    events = req.body.get("events") or []
    email_hash = "|".join(_identity(e, "id", "subject") for e in emails[:SUMMARY_FINGERPRINT_ITEMS])
    event_hash = "|".join(_identity(e, "id", "title") for e in events[:SUMMARY_FINGERPRINT_ITEMS])
    return CacheService.make_key(category, len(emails), len(events), email_hash, event_hash)


def _emails_key(category: CacheCategory, req: RefreshRequest, now: float) -> str:
    return CacheService.make_key(category, int(now // EMAILS_BUCKET_SECONDS))


def _events_key(category: CacheCategory, req: RefreshRequest, now: float) -> str:
    date = req.query_params.get(DATE_PARAM) or datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d")
    return CacheService.make_key(category, date)


def _path_key(category: CacheCategory, req: RefreshRequest, now: float) -> str:
    return CacheService.make_key(category, req.path)


KEY_RULES: Dict[CacheCategory, KeyRule] = {
    CacheCategory.AGENT_RESPONSE: _agent_query_key,
    CacheCategory.AGENT_TEST: _agent_query_key,
    CacheCategory.AGENT_TOOLS: _tools_key,
    CacheCategory.AGENT_SUMMARY: _summary_key,
    CacheCategory.SUMMARY: _summary_key,
    CacheCategory.EMAILS: _emails_key,
    CacheCategory.EVENTS: _events_key,
}


def derive_cache_key(category: CacheCategory, req: RefreshRequest, now: float) -> str:
    """Apply the category's key rule (request path when none is registered)."""
    return KEY_RULES.get(category, _path_key)(category, req, now)


async def snapshot_request(request: Request, category: CacheCategory,
                           ttl: Optional[int] = None) -> RefreshRequest:
    """Copy the parts of a request that key derivation and refreshes need."""
    body: Dict[str, Any] = {}
    if request.method in BODY_METHODS:
        try:
            parsed = await request.json()
            if isinstance(parsed, dict):
                body = parsed
        except ValueError:
            body = {}

    return RefreshRequest(
        key="",
        category=category,
        path=request.url.path,
        query_params=dict(request.query_params),
        body=body,
        ttl=ttl,
    )


def refresh_requested(req: RefreshRequest) -> bool:
    """`?refresh=true` or `{"refresh": true}` forces a handler run."""
    return (str(req.query_params.get(REFRESH_PARAM, "")).lower() == "true"
            or req.body.get(REFRESH_PARAM) is True)


async def _prepare(request: Request, cache: CacheService, category: CacheCategory,
                   ttl: Optional[int]) -> Optional[RefreshRequest]:
    """Derive the key and tag the request for write-back.

    Returns None when caching is skipped for this request.
    """
    request.state.cache_service = cache

    if not cache.is_available():
        logger.debug("Database not connected, skipping cache", path=request.url.path)
        request.state.skip_cache = True
        return None

    snapshot = await snapshot_request(request, category, ttl)
    key = derive_cache_key(category, snapshot, cache.now())

    request.state.cache_key = key
    request.state.cache_category = category
    request.state.cache_ttl = ttl

    if refresh_requested(snapshot):
        logger.info("Force refresh requested", cache_key=key)
        request.state.cache_refresh = True
        return None

    return RefreshRequest(
        key=key,
        category=category,
        path=snapshot.path,
        query_params=snapshot.query_params,
        body=snapshot.body,
        ttl=ttl,
    )


# ============================================================================
# Dependencies
# ============================================================================

def cache_middleware(category: CacheCategory, ttl: Optional[int] = None):
    """Route dependency serving repeated identical requests from cache."""

    async def check_cache(
        request: Request,
        cache: CacheService = Depends(get_cache_service)
    ) -> None:
        try:
            prepared = await _prepare(request, cache, category, ttl)
            if prepared is None:
                return
            payload = await cache.get(prepared.key)
        except Exception as e:
            logger.error("Cache middleware error", path=request.url.path, error=str(e))
            return

        if payload is None:
            logger.debug("No cache found, proceeding to handler", cache_key=prepared.key)
            return

        logger.info("Serving cached response", cache_key=prepared.key)
        raise CachedResponse(prepared.key, payload)

    return Depends(check_cache)


def background_refresh_middleware(category: CacheCategory, refresher: Refresher,
                                  stale_threshold: Optional[int] = None,
                                  ttl: Optional[int] = None):
    """Stale-while-revalidate variant of `cache_middleware`.

    An entry within `stale_threshold` seconds of expiry is served immediately
    (flagged stale) and `refresher` runs as a detached task whose result is
    written back. Fresh hits are served normally; misses reach the handler.
    """

    async def check_stale_cache(
        request: Request,
        cache: CacheService = Depends(get_cache_service),
        dispatcher: RefreshDispatcher = Depends(get_refresh_dispatcher)
    ) -> None:
        try:
            prepared = await _prepare(request, cache, category, ttl)
            if prepared is None:
                return
            entry = await cache.get_entry(prepared.key)
            threshold = (stale_threshold if stale_threshold is not None
                         else cache.settings.cache_stale_threshold_seconds)
        except Exception as e:
            logger.error("Background refresh middleware error", path=request.url.path, error=str(e))
            return

        if entry is None:
            return

        if entry.ttl_remaining(cache.now()) < threshold:
            logger.info("Cache is stale, triggering background refresh", cache_key=prepared.key)
            try:
                dispatcher.dispatch(prepared, refresher)
            except Exception as e:
                logger.error("Failed to dispatch background refresh", cache_key=prepared.key, error=str(e))
            raise CachedResponse(prepared.key, entry.payload, stale=True)

        logger.info("Serving cached response", cache_key=prepared.key)
        raise CachedResponse(prepared.key, entry.payload)

    return Depends(check_stale_cache)


# ============================================================================
# Write-back
# ============================================================================

async def cache_response(request: Request, data: Any,
                         metadata: Optional[Dict[str, Any]] = None) -> bool:
    """Store a handler's result under the key tagged by the cache dependency.

    No-op when the request was not tagged, caching was skipped, or the store
    is down. Returns whether an entry was written.
    """
    state = request.state
    key = getattr(state, "cache_key", None)
    category = getattr(state, "cache_category", None)
    cache: Optional[CacheService] = getattr(state, "cache_service", None)

    if not key or category is None or cache is None or getattr(state, "skip_cache", False):
        return False
    if not cache.is_available():
        return False

    entry_metadata = {
        **(metadata or {}),
        "userAgent": request.headers.get("user-agent"),
        "ip": request.client.host if request.client else None,
        "timestamp": utc_now_iso(),
    }

    try:
        entry = await cache.set(key, data, category, getattr(state, "cache_ttl", None), entry_metadata)
    except Exception as e:
        logger.error("Error caching response", cache_key=key, error=str(e))
        return False

    if entry is not None:
        logger.debug("Response cached", cache_key=key)
    return entry is not None


def register_cache_handlers(app: FastAPI) -> None:
    """Render CachedResponse short-circuits as the cached envelope."""

    @app.exception_handler(CachedResponse)
    async def handle_cached_response(_request: Request, exc: CachedResponse):
        if exc.stale:
            body = cache_envelope(exc.payload, cached=True, stale=True,
                                  message="Serving stale cache while refreshing in background")
        else:
            body = cache_envelope(exc.payload, cached=True, message="Response served from cache")
        return ORJSONResponse(body)
