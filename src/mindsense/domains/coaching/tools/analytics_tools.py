"""MCP tools for the KPI scorecard and the data repair log."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from mindsense.domains.coaching.state.store import CoachingStore

logger = logging.getLogger(__name__)


def register_analytics_tools(mcp: FastMCP, store: CoachingStore) -> None:
    """Register KPI and data-integrity tools on the MCP server."""

    @mcp.tool
    async def kpi_scorecard(ctx: Context) -> str:
        """Return activation, retention and session rates, and mark the scorecard reviewed."""
        store.tick()
        scorecard = store.kpi_scorecard()
        reviewed_at = store.mark_kpi_reviewed()
        return json.dumps({
            "status": "ok",
            "scorecard": scorecard.to_dict(),
            "reviewed_at": reviewed_at.isoformat(),
            "events_tracked": len(store.tracker.events),
        })

    @mcp.tool
    async def data_issue_history(ctx: Context, limit: int = 20) -> str:
        """List recovered decode failures, newest first.

        Args:
            limit: Maximum number of entries to return (1-200).
        """
        store.tick()
        limit = max(1, min(limit, 200))
        entries = store.persistence.repair_history(limit=limit)
        return json.dumps({
            "status": "ok",
            "current_issue": store.data_issue,
            "count": len(entries),
            "entries": entries,
        })
