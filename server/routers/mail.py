"""Inbox routes backed by the agent."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import ORJSONResponse

from core.container import container
from core.logging import get_logger
from middleware.cache import cache_envelope, cache_middleware, cache_response, utc_now_iso
from models.cache import CacheCategory
from services.agent import AgentService, extract_json_array

logger = get_logger(__name__)
router = APIRouter(prefix="/api/mail", tags=["mail"])

EMAIL_QUERY = """Get the latest 5 primary emails from my Gmail inbox. For each email, return a JSON object with:
- id: email ID
- subject: email subject
- sender: sender email address
- summary: email snippet/preview
- time: email date/time
- isRead: whether the email is read

Filter out promotional, marketing, and spam emails. Only return important personal or work emails. Return the result as a JSON array."""


def normalize_email(raw: Dict[str, Any], index: int) -> Dict[str, Any]:
    """Coerce one agent-produced email object into the dashboard shape."""
    return {
        "id": str(raw.get("id") or f"email-{index}"),
        "subject": raw.get("subject") or "No Subject",
        "sender": raw.get("sender") or raw.get("from") or "Unknown Sender",
        "summary": raw.get("summary") or raw.get("snippet") or "No preview available",
        "content": "Content available on demand",
        "time": raw.get("time") or raw.get("date") or utc_now_iso(),
        "priority": raw.get("priority") or "medium",
        "isRead": bool(raw.get("isRead", False)),
    }


async def fetch_emails(agent: AgentService) -> List[Dict[str, Any]]:
    response = await agent.run(EMAIL_QUERY)
    return [normalize_email(raw, i) for i, raw in enumerate(extract_json_array(response))]


@router.get("", dependencies=[cache_middleware(CacheCategory.EMAILS)])
async def get_emails(
    request: Request,
    agent: AgentService = Depends(lambda: container.agent_service())
):
    """Latest primary emails."""
    if not agent.is_available:
        return ORJSONResponse(
            {
                "success": False,
                "error": "Agent not available",
                "message": "Mail integration is not configured or unavailable"
            },
            status_code=503
        )

    try:
        emails = await fetch_emails(agent)
    except Exception as e:
        logger.error("Error fetching emails", error=str(e))
        return ORJSONResponse(
            {"success": False, "error": "Failed to fetch emails", "message": str(e)},
            status_code=500
        )

    await cache_response(request, emails, {"source": "agent", "count": len(emails)})
    return cache_envelope(emails, source="agent", message=f"Retrieved {len(emails)} emails")
