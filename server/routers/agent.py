"""Agent routes: free-form queries, tool listing and daily summaries.

Every route except /status is cached per its category's key rule; a
handler only runs on a cache miss or a forced refresh.
"""

import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.container import container
from core.logging import get_logger
from middleware.cache import cache_envelope, cache_middleware, cache_response, utc_now_iso
from models.cache import CacheCategory
from services.agent import AgentService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/agent", tags=["agent"])

TOOLS_CACHE_TTL = 30 * 60

FALLBACK_SUMMARY = (
    "📅 Your day is shaping up nicely! 📧 You have some emails to review and "
    "🗓️ several events on your calendar. Stay organized and have a productive day! ✨"
)


class AgentQueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    max_steps: Optional[int] = Field(default=None, alias="maxSteps", ge=1, le=50)
    refresh: bool = False


class SummaryRequest(BaseModel):
    emails: Optional[List[Dict[str, Any]]] = None
    events: Optional[List[Dict[str, Any]]] = None
    refresh: bool = False


def _agent_missing() -> ORJSONResponse:
    return ORJSONResponse(
        {
            "success": False,
            "error": "Agent not available",
            "message": "Agent is not configured. Check server logs for details."
        },
        status_code=503
    )


def build_summary_prompt(emails: List[Dict[str, Any]], events: List[Dict[str, Any]]) -> str:
    email_lines = "\n".join(
        f"- {e.get('subject', 'No Subject')} (Priority: {e.get('priority', 'medium')}, Read: {e.get('isRead', False)})"
        for e in emails
    )
    event_lines = "\n".join(
        f"- {e.get('title', 'Untitled')} at {e.get('time', 'unknown time')}"
        + (f" - {e['description']}" if e.get("description") else "")
        for e in events
    )
    return f"""
You are a personal assistant creating a brief, engaging daily summary. Based on the following data, write a single paragraph (2-3 sentences) that summarizes the day ahead in a friendly, emoji-rich way.

EMAILS DATA:
{email_lines}

CALENDAR EVENTS:
{event_lines}

Guidelines:
- Use relevant emojis throughout
- Mention key highlights like urgent emails, important meetings
- Keep it concise but informative
- Make it sound personal and engaging
- Focus on what's most important for the day

Write only the summary paragraph, nothing else."""


async def _run_query(request: Request, body: AgentQueryRequest, agent: AgentService):
    if not agent.is_available:
        return _agent_missing()

    if not body.query:
        return ORJSONResponse(
            {
                "success": False,
                "error": "Missing query parameter",
                "message": "Please provide a query in the request body"
            },
            status_code=400
        )

    start = time.perf_counter()
    try:
        response = await agent.run(body.query)
    except Exception as e:
        logger.error("Agent query failed", error=str(e))
        return ORJSONResponse(
            {
                "success": False,
                "error": "Agent query failed",
                "message": str(e),
                "timestamp": utc_now_iso()
            },
            status_code=500
        )
    duration_ms = int((time.perf_counter() - start) * 1000)

    data = {
        "query": body.query,
        "response": response,
        "duration": f"{duration_ms}ms",
        "timestamp": utc_now_iso()
    }
    await cache_response(request, data, {"query": body.query, "duration": duration_ms, "source": "agent"})
    return cache_envelope(data, message="Agent query executed successfully")


@router.post("/query", dependencies=[cache_middleware(CacheCategory.AGENT_RESPONSE)])
async def agent_query(
    request: Request,
    body: AgentQueryRequest,
    agent: AgentService = Depends(lambda: container.agent_service())
):
    """Answer a free-form question with the agent."""
    return await _run_query(request, body, agent)


@router.post("/test", dependencies=[cache_middleware(CacheCategory.AGENT_TEST)])
async def agent_test(
    request: Request,
    body: AgentQueryRequest,
    agent: AgentService = Depends(lambda: container.agent_service())
):
    """Smoke-test the agent with a query."""
    return await _run_query(request, body, agent)


@router.get("/status")
async def agent_status(
    agent: AgentService = Depends(lambda: container.agent_service())
):
    """Whether the agent is configured."""
    return {
        "success": True,
        "data": {
            "agentAvailable": agent.is_available,
            "model": agent.settings.agent_model,
            "timestamp": utc_now_iso()
        },
        "message": "Agent is available" if agent.is_available else "Agent is not available"
    }


@router.get("/tools", dependencies=[cache_middleware(CacheCategory.AGENT_TOOLS, ttl=TOOLS_CACHE_TTL)])
async def agent_tools(
    request: Request,
    agent: AgentService = Depends(lambda: container.agent_service())
):
    """Ask the agent to describe its tools."""
    if not agent.is_available:
        return _agent_missing()

    try:
        tools = await agent.run("List all available tools and their descriptions")
    except Exception as e:
        logger.error("Error fetching tools", error=str(e))
        return ORJSONResponse(
            {"success": False, "error": "Failed to fetch tools", "message": str(e)},
            status_code=500
        )

    data = {"tools": tools, "timestamp": utc_now_iso()}
    await cache_response(request, data, {"source": "agent"})
    return cache_envelope(data, message="Available tools retrieved successfully")


@router.post("/summary", dependencies=[cache_middleware(CacheCategory.AGENT_SUMMARY)])
async def agent_summary(
    request: Request,
    body: SummaryRequest,
    agent: AgentService = Depends(lambda: container.agent_service())
):
    """Summarize the day's emails and events in one paragraph."""
    if not agent.is_available:
        return _agent_missing()

    if body.emails is None or body.events is None:
        return ORJSONResponse(
            {
                "success": False,
                "error": "Missing data",
                "message": "Please provide both emails and events data"
            },
            status_code=400
        )

    logger.info("Generating summary", emails=len(body.emails), events=len(body.events))
    start = time.perf_counter()
    try:
        summary = await agent.run(build_summary_prompt(body.emails, body.events))
    except Exception as e:
        # Fallback text is returned but never cached
        logger.error("Summary generation failed", error=str(e))
        return cache_envelope(
            {"summary": FALLBACK_SUMMARY, "fallback": True, "timestamp": utc_now_iso()},
            message="Using fallback summary due to LLM unavailability"
        )
    duration_ms = int((time.perf_counter() - start) * 1000)

    data = {
        "summary": summary,
        "duration": f"{duration_ms}ms",
        "timestamp": utc_now_iso()
    }
    await cache_response(request, data, {
        "duration": duration_ms,
        "emailCount": len(body.emails),
        "eventCount": len(body.events),
        "source": "agent"
    })
    return cache_envelope(data, message="Summary generated successfully")
