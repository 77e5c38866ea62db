"""MCP tools for multi-day experiments."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from mindsense.domains.coaching.state.store import CoachingStore

logger = logging.getLogger(__name__)


def register_experiment_tools(mcp: FastMCP, store: CoachingStore) -> None:
    """Register experiment lifecycle tools on the MCP server."""

    def _unknown_or_rejected(experiment_id: str, reason: str) -> str:
        if store.experiment(experiment_id) is None:
            return json.dumps({"status": "not_found", "error": f"Unknown experiment: {experiment_id!r}"})
        return json.dumps({"status": "rejected", "reason": reason})

    @mcp.tool
    async def list_experiments(ctx: Context) -> str:
        """List the scenario's experiments with adherence and effect estimates."""
        store.tick()
        active = store.active_experiment
        return json.dumps({
            "status": "ok",
            "active_id": active.id if active else None,
            "experiments": [store.experiment_view(e) for e in store.experiments],
        })

    @mcp.tool
    async def start_experiment(ctx: Context, experiment_id: str) -> str:
        """Start a planned experiment. Any other active experiment returns to planned.

        Args:
            experiment_id: Id from list_experiments.
        """
        store.tick()
        experiment = store.start_experiment(experiment_id)
        if experiment is None:
            return _unknown_or_rejected(experiment_id, "Experiment is already active")
        return json.dumps({"status": "ok", "experiment": store.experiment_view(experiment)})

    @mcp.tool
    async def log_experiment_day(ctx: Context, experiment_id: str) -> str:
        """Log today's adherence for the active experiment.

        Args:
            experiment_id: Id of the active experiment.
        """
        store.tick()
        experiment = store.log_experiment_day(experiment_id)
        if experiment is None:
            return _unknown_or_rejected(experiment_id, "Experiment is not active")
        return json.dumps({
            "status": "ok",
            "experiment": store.experiment_view(experiment),
            "day": store.day,
            "metrics": store.metrics.to_dict(),
        })

    @mcp.tool
    async def complete_experiment(
        ctx: Context,
        experiment_id: str,
        perceived_change: int,
        summary: str = "",
    ) -> str:
        """Close the active experiment with a result.

        Args:
            experiment_id: Id of the active experiment.
            perceived_change: How much things changed, -5 (worse) to 5 (better).
            summary: Optional note appended to the generated result summary.
        """
        store.tick()
        experiment = store.complete_experiment(experiment_id, perceived_change, summary)
        if experiment is None:
            return _unknown_or_rejected(experiment_id, "Experiment is not active")
        return json.dumps({
            "status": "ok",
            "experiment": store.experiment_view(experiment),
            "metrics": store.metrics.to_dict(),
        })
