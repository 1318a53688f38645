"""Pytest configuration and fixtures."""

from unittest.mock import AsyncMock

import httpx
import pytest
from dependency_injector import providers
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from core.cache import CacheService
from core.cleanup import CacheCleanupService
from core.config import Settings
from core.container import container
from core.database import Database
from core.entry_store import EntryStore
from core.errors import register_error_handlers
from core.refresh import RefreshDispatcher
from middleware.cache import register_cache_handlers
from routers import agent as agent_router
from routers import cache as cache_router
from routers import events as events_router
from routers import mail as mail_router

# 2025-10-09T08:53:20Z
START_TIME = 1_760_000_000.0


class FakeClock:
    """Deterministic replacement for time.time."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAgent:
    """Stands in for AgentService; `run` is an AsyncMock."""

    def __init__(self, settings: Settings, reply: str = "ok"):
        self.settings = settings
        self.is_available = True
        self.run = AsyncMock(return_value=reply)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path}/cache.db",
        cache_ttl_seconds=300,
        cache_stale_threshold_seconds=60,
        cache_cleanup_interval_minutes=15,
        anthropic_api_key=None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(settings):
    db = Database(settings)
    assert await db.startup()
    yield db
    await db.shutdown()


@pytest.fixture
def offline_database(settings) -> Database:
    """A database whose startup never ran."""
    return Database(settings)


@pytest.fixture
def store(database, clock) -> EntryStore:
    return EntryStore(database, clock=clock)


@pytest.fixture
def cache(settings, store) -> CacheService:
    return CacheService(settings, store)


@pytest.fixture
def offline_cache(settings, offline_database, clock) -> CacheService:
    return CacheService(settings, EntryStore(offline_database, clock=clock))


@pytest.fixture
async def dispatcher(cache):
    refresh_dispatcher = RefreshDispatcher(cache)
    yield refresh_dispatcher
    await refresh_dispatcher.shutdown()


@pytest.fixture
async def cleanup_service(cache, settings):
    service = CacheCleanupService(cache, settings)
    yield service
    await service.stop()


@pytest.fixture
def agent(settings) -> FakeAgent:
    return FakeAgent(settings)


@pytest.fixture
def app(settings, database, cache, dispatcher, cleanup_service, agent) -> FastAPI:
    """Routers wired to the test services through container overrides."""
    container.settings.override(providers.Object(settings))
    container.database.override(providers.Object(database))
    container.cache.override(providers.Object(cache))
    container.refresh_dispatcher.override(providers.Object(dispatcher))
    container.cleanup_service.override(providers.Object(cleanup_service))
    container.agent_service.override(providers.Object(agent))

    test_app = FastAPI(default_response_class=ORJSONResponse)
    register_error_handlers(test_app)
    register_cache_handlers(test_app)
    test_app.include_router(cache_router.router)
    test_app.include_router(agent_router.router)
    test_app.include_router(mail_router.router)
    test_app.include_router(events_router.router)

    yield test_app

    container.reset_override()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
