"""MindSense server entry point: ``python -m mindsense.core.server.main``.

Startup loads the coaching store before the transport opens, so a
corrupted state database is reported (or repaired, with
``REPAIR_ON_BOOT=true``) once at boot rather than on the first tool call.
Pending analytics are flushed when the server stops.
"""

from __future__ import annotations

import logging
from ipaddress import ip_address

from mindsense.core.config.settings import Settings, get_settings
from mindsense.core.server.app import build_store, create_app
from mindsense.core.storage.repository import StateRepository
from mindsense.domains.coaching.state.store import CoachingStore

logger = logging.getLogger(__name__)


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def boot_store(settings: Settings, repository: StateRepository | None = None) -> CoachingStore:
    """Load the coaching store, repairing it first if configured to."""
    store = build_store(settings, repository=repository)
    if store.data_issue is None:
        return store
    if settings.repair_on_boot:
        logger.warning("Repairing stored state at startup: %s", store.data_issue)
        store.repair_data()
    else:
        logger.warning(
            "Stored state loaded with a data issue (%s); the repair_data tool resets it",
            store.data_issue,
        )
    return store


def run() -> None:
    """Start the MindSense MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.mindsense_log_level.upper(), logging.INFO))

    if not settings.mindsense_allow_insecure_bind and not _is_loopback_host(settings.mindsense_host):
        raise RuntimeError(
            "Refusing to bind the coaching server to a non-loopback host: its tools carry no auth. "
            "Set MINDSENSE_ALLOW_INSECURE_BIND=true to override."
        )

    store = boot_store(settings)
    mcp = create_app(store_override=store)
    logger.info(
        "Serving scenario %s (day %d) on %s:%d",
        store.scenario,
        store.day,
        settings.mindsense_host,
        settings.mindsense_port,
    )
    try:
        mcp.run(
            transport="streamable-http",
            host=settings.mindsense_host,
            port=settings.mindsense_port,
        )
    finally:
        store.tracker.close()
        logger.info("Analytics flushed; coaching server stopped")


if __name__ == "__main__":
    run()
