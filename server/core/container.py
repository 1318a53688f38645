"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from core.entry_store import EntryStore
from core.cache import CacheService
from core.refresh import RefreshDispatcher
from core.cleanup import CacheCleanupService
from services.agent import AgentService


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Backing store connection (process-wide)
    database = providers.Singleton(
        Database,
        settings=settings
    )

    entry_store = providers.Singleton(
        EntryStore,
        database=database
    )

    # Cache API used by routes and middleware
    cache = providers.Singleton(
        CacheService,
        settings=settings,
        store=entry_store
    )

    # Detached stale-while-revalidate refreshes
    refresh_dispatcher = providers.Singleton(
        RefreshDispatcher,
        cache=cache
    )

    # Periodic expiry sweep
    cleanup_service = providers.Singleton(
        CacheCleanupService,
        cache=cache,
        settings=settings
    )

    # Services
    agent_service = providers.Singleton(
        AgentService,
        settings=settings
    )


# Global container instance
container = Container()
