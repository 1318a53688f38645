"""Cache subsystem exceptions and centralized FastAPI error handlers."""

from typing import Any, Iterable

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse


class CacheError(Exception):
    """Base exception for all cache-related errors."""


class StoreUnavailable(CacheError):
    """The backing store cannot be reached or rejected the operation."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"[{operation}] {message}")


class InvalidCategory(CacheError):
    """A category outside the closed set was requested."""

    def __init__(self, category: str, allowed: Iterable[str]):
        self.category = category
        self.allowed = sorted(allowed)
        super().__init__(f"Invalid cache category: {category}. Allowed: {self.allowed}")


class CachedResponse(Exception):
    """Raised by cache dependencies to short-circuit a route with a cached payload."""

    def __init__(self, key: str, payload: Any, stale: bool = False):
        self.key = key
        self.payload = payload
        self.stale = stale
        super().__init__(key)


class AgentUnavailableError(Exception):
    """The conversational agent is not configured."""


def register_error_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on the FastAPI app."""

    @app.exception_handler(InvalidCategory)
    async def handle_invalid_category(_request: Request, exc: InvalidCategory):
        return ORJSONResponse(
            {"success": False, "error": "Invalid cache category", "message": str(exc),
             "allowed": exc.allowed},
            status_code=400,
        )

    @app.exception_handler(AgentUnavailableError)
    async def handle_agent_unavailable(_request: Request, exc: AgentUnavailableError):
        return ORJSONResponse(
            {"success": False, "error": "Agent not available", "message": str(exc)},
            status_code=503,
        )
