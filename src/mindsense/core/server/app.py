"""MindSense coaching MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from mindsense.core.analytics.tracker import AnalyticsTracker
from mindsense.core.config.settings import Settings, get_settings
from mindsense.core.storage.database import StateDatabase
from mindsense.core.storage.encryption import EncryptionError, FieldEncryptor
from mindsense.core.storage.repository import StateRepository
from mindsense.domains.coaching.catalog.registry import load_default_catalog
from mindsense.domains.coaching.state.persistence import StatePersistence
from mindsense.domains.coaching.state.store import CoachingStore
from mindsense.domains.coaching.tools.analytics_tools import register_analytics_tools
from mindsense.domains.coaching.tools.experiment_tools import register_experiment_tools
from mindsense.domains.coaching.tools.health_profile_tools import register_health_profile_tools
from mindsense.domains.coaching.tools.session_tools import register_session_tools
from mindsense.domains.coaching.tools.state_tools import register_state_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "MindSense Coaching"
SERVER_VERSION = "0.1.0"


def _in_memory_repository() -> StateRepository:
    db = StateDatabase(":memory:")
    db.initialize()
    return StateRepository(db)


def _open_repository(settings: Settings) -> StateRepository:
    if not settings.encryption_key:
        logger.warning(
            "No ENCRYPTION_KEY configured; coaching state is held in memory only. "
            "Set ENCRYPTION_KEY to persist it."
        )
        return _in_memory_repository()
    try:
        encryptor = FieldEncryptor(settings.encryption_key)
        db = StateDatabase(settings.db_path)
        db.initialize()
    except EncryptionError as exc:
        logger.error("Failed to initialize storage: %s", exc)
        logger.warning("Continuing with in-memory state; nothing will survive a restart")
        return _in_memory_repository()
    logger.info(
        "Coaching state store initialized: %s (schema v%d)",
        settings.db_path,
        db.get_schema_version(),
    )
    return StateRepository(db, encryptor)


def build_store(
    settings: Settings | None = None,
    *,
    repository: StateRepository | None = None,
) -> CoachingStore:
    """Build and load a coaching store over the configured state database.

    Without an encryption key (or with a bad one) the store runs on an
    in-memory database.
    """
    settings = settings or get_settings()
    if repository is None:
        repository = _open_repository(settings)

    catalog = load_default_catalog()
    tracker = AnalyticsTracker(
        repository,
        debounce_seconds=settings.analytics_debounce_seconds,
        max_events=settings.analytics_max_events,
        max_bytes=settings.analytics_max_bytes,
    )
    store = CoachingStore(StatePersistence(repository), catalog, tracker, settings=settings)
    store.load()
    return store


def create_app(
    *,
    store_override: CoachingStore | None = None,
    repository_override: StateRepository | None = None,
) -> FastMCP:
    """Create and configure the MindSense coaching MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Builds the coaching store (see build_store) unless one is supplied
    3. Registers all tools
    """
    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "MindSense adaptive state and recommendation engine. "
            "Tracks load, readiness and consistency, recommends short regulation "
            "sessions, runs multi-day experiments and explains what changed."
        ),
    )

    if store_override is not None:
        store = store_override
    else:
        store = build_store(repository=repository_override)

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        repo = store.persistence.repository
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "scenario": store.scenario,
            "day": store.day,
            "storage_encrypted": repo.encrypted,
            "keys_stored": len(repo.keys()),
            "data_issue": store.data_issue,
        }

    register_state_tools(server, store)
    register_session_tools(server, store)
    register_experiment_tools(server, store)
    register_health_profile_tools(server, store)
    register_analytics_tools(server, store)
    logger.info("Coaching tools registered (scenario %s, day %d)", store.scenario, store.day)

    return server


# Module-level instance for FastMCP discovery ("server": "...app.py:mcp").
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
