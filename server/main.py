"""
FastAPI backend for the weekend dashboard.

Serves calendar, mail and agent summaries through a durable response cache
with TTL expiry, a periodic expiry sweep and stale-while-revalidate reads.
"""

# Performance: Install uvloop if available (Linux/macOS only)
try:
    import uvloop
    uvloop.install()
except ImportError:
    pass  # Windows - uvloop not available, use default asyncio

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.errors import register_error_handlers
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger, quiet_loggers
from middleware.cache import register_cache_handlers, utc_now_iso
from routers import agent, cache, events, mail

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)

quiet_loggers("apscheduler", "apscheduler.scheduler", "apscheduler.executors",
              "uvicorn.access", "httpx", "anthropic")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting Weekend Dashboard API")
    set_startup_time()

    connected = await container.database().startup()
    if not connected:
        logger.warning("Continuing without response cache")

    cleanup_service = container.cleanup_service()
    if settings.cache_cleanup_enabled:
        await cleanup_service.start()

    logger.info("Services started successfully",
                cache_connected=connected,
                cleanup_running=cleanup_service.is_running,
                agent_available=container.agent_service().is_available)
    yield

    # Shutdown: stop producers of cache writes before closing the store
    await cleanup_service.stop()
    await container.refresh_dispatcher().shutdown()
    await container.database().shutdown()
    logger.info("Services shutdown complete")


app = FastAPI(
    title="Weekend Dashboard API",
    version="1.0.0",
    description="Dashboard backend with agent integration and a durable response cache",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("Unhandled exception", error_type=type(e).__name__,
                         error=str(e), path=request.url.path, exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )


app.add_middleware(CatchAllExceptionsMiddleware)

# Add CORS middleware (must be AFTER exception middleware)
logger.info("Configuring CORS middleware", origins=settings.cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
register_cache_handlers(app)

app.include_router(cache.router)
app.include_router(agent.router)
app.include_router(mail.router)
app.include_router(events.router)


@app.get("/health")
async def health_check():
    """Detailed health check."""
    health = await get_health_status(
        container.database(),
        container.cache(),
        container.cleanup_service(),
        container.agent_service()
    )
    health["environment"] = "development" if settings.debug else "production"
    health["timestamp"] = utc_now_iso()
    return health


@app.get("/")
async def root():
    return {
        "message": "Weekend Dashboard Backend API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "events": "/api/events",
            "mail": "/api/mail",
            "agent": "/api/agent",
            "cache": "/api/cache"
        }
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting Weekend Dashboard API",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        workers=1 if settings.debug else settings.workers
    )
