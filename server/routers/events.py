"""Calendar routes backed by the agent, cached stale-while-revalidate."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import ORJSONResponse

from constants import DATE_PARAM
from core.container import container
from core.logging import get_logger
from core.refresh import RefreshRequest
from middleware.cache import background_refresh_middleware, cache_envelope, cache_response
from models.cache import CacheCategory
from services.agent import AgentService, extract_json_array

logger = get_logger(__name__)
router = APIRouter(prefix="/api/events", tags=["events"])

EVENT_CATEGORIES = ("meeting", "personal", "fitness", "social")


def today_utc() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def build_events_query(date: str) -> str:
    return f"""List my calendar events for {date}. For each event, return a JSON object with:
- id: event ID
- title: event title
- time: start time in a human readable form
- category: one of {", ".join(EVENT_CATEGORIES)}
- location: location, if any
- description: short description, if any

Return the result as a JSON array, or [] if there are no events."""


def normalize_event(raw: Dict[str, Any], index: int, date: str) -> Dict[str, Any]:
    """Coerce one agent-produced event object into the dashboard shape."""
    category = raw.get("category")
    return {
        "id": str(raw.get("id") or f"event-{index}"),
        "title": raw.get("title") or "Untitled",
        "time": raw.get("time") or date,
        "category": category if category in EVENT_CATEGORIES else "personal",
        "location": raw.get("location"),
        "description": raw.get("description"),
        "date": date,
    }


async def fetch_events(agent: AgentService, date: str) -> List[Dict[str, Any]]:
    response = await agent.run(build_events_query(date))
    return [normalize_event(raw, i, date) for i, raw in enumerate(extract_json_array(response))]


async def refresh_events(request: RefreshRequest) -> Optional[List[Dict[str, Any]]]:
    """Background refresher for stale events entries."""
    agent = container.agent_service()
    if not agent.is_available:
        return None
    return await fetch_events(agent, request.query_params.get(DATE_PARAM) or today_utc())


@router.get("", dependencies=[background_refresh_middleware(CacheCategory.EVENTS, refresh_events)])
async def get_events(
    request: Request,
    date: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    agent: AgentService = Depends(lambda: container.agent_service())
):
    """Calendar events for a date (default today, UTC)."""
    if not agent.is_available:
        return ORJSONResponse(
            {
                "success": False,
                "error": "Agent not available",
                "message": "Calendar integration is not configured or unavailable"
            },
            status_code=503
        )

    day = date or today_utc()
    try:
        events = await fetch_events(agent, day)
    except Exception as e:
        logger.error("Error fetching events", date=day, error=str(e))
        return ORJSONResponse(
            {"success": False, "error": "Failed to fetch events", "message": str(e)},
            status_code=500
        )

    await cache_response(request, events, {"source": "agent", "date": day, "count": len(events)})
    return cache_envelope(events, source="agent", message=f"Retrieved {len(events)} events for {day}")
