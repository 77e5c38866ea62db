"""MCP tools for the Today surface: dashboard, check-ins, scenario controls.

Scenario switching, fast-forward and stress injection are demo controls;
they drive the same delta/event pipeline as real user input.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from mindsense.domains.coaching.domain_logic.models import SCENARIO_IDS

if TYPE_CHECKING:
    from mindsense.domains.coaching.state.store import CoachingStore

logger = logging.getLogger(__name__)


def register_state_tools(mcp: FastMCP, store: CoachingStore) -> None:
    """Register dashboard and demo-control tools on the MCP server."""

    @mcp.tool
    async def coaching_dashboard(ctx: Context) -> str:
        """Return the full Today view: metrics, confidence, recommendation, drivers and summaries."""
        store.tick()
        return json.dumps({"status": "ok", **store.dashboard()})

    @mcp.tool
    async def switch_scenario(ctx: Context, scenario: str) -> str:
        """Activate a scenario and reset all state derived from it.

        Args:
            scenario: One of 'high_stress_day', 'balanced_day', 'recovery_week'.
        """
        store.tick()
        if scenario not in SCENARIO_IDS:
            return json.dumps({
                "status": "not_found",
                "error": f"Unknown scenario: {scenario!r}",
                "available": list(SCENARIO_IDS),
            })
        if not store.switch_scenario(scenario):
            return json.dumps({
                "status": "rejected",
                "reason": f"{scenario} is already active",
                "scenario": store.scenario,
            })
        return json.dumps({
            "status": "ok",
            "scenario": store.scenario,
            "day": store.day,
            "metrics": store.metrics.to_dict(),
            "banner": store.banner.to_dict() if store.banner else None,
        })

    @mcp.tool
    async def save_check_in(ctx: Context, load_score: int, tags: list[str] | None = None) -> str:
        """Record a 0-10 self-reported load check-in.

        Args:
            load_score: Perceived load from 0 (none) to 10 (overwhelmed). Clamped to range.
            tags: Optional context tags (e.g. 'deadline', 'sleep debt').
        """
        store.tick()
        event = store.save_check_in(load_score, tags or [])
        return json.dumps({
            "status": "ok",
            "event": event.to_dict(),
            "metrics": store.metrics.to_dict(),
            "recommendation": store.primary_recommendation().summary_line,
        })

    @mcp.tool
    async def quick_log(ctx: Context, tag: str) -> str:
        """Log a one-tap context entry such as 'Caffeine', 'Exercise' or 'Social'.

        Args:
            tag: The entry label. Unrecognized tags are recorded without a metric change.
        """
        store.tick()
        if not tag.strip():
            return json.dumps({"status": "rejected", "reason": "Tag must not be empty"})
        event = store.quick_log(tag.strip())
        return json.dumps({"status": "ok", "event": event.to_dict(), "metrics": store.metrics.to_dict()})

    @mcp.tool
    async def fast_forward_days(ctx: Context, days: int = 1) -> str:
        """Advance the simulated day counter (1-7 days) and apply the scenario drift."""
        store.tick()
        event = store.fast_forward(days)
        return json.dumps({
            "status": "ok",
            "day": store.day,
            "event": event.to_dict(),
            "metrics": store.metrics.to_dict(),
        })

    @mcp.tool
    async def inject_stress(ctx: Context) -> str:
        """Add an unexpected pressure block to the timeline."""
        store.tick()
        event = store.inject_stress()
        return json.dumps({"status": "ok", "event": event.to_dict(), "metrics": store.metrics.to_dict()})

    @mcp.tool
    async def reset_scenario(ctx: Context) -> str:
        """Reset the active scenario to its seeded defaults."""
        store.tick()
        store.reset_scenario()
        return json.dumps({
            "status": "ok",
            "scenario": store.scenario,
            "day": store.day,
            "metrics": store.metrics.to_dict(),
        })

    @mcp.tool
    async def repair_data(ctx: Context, screen: str = "") -> str:
        """Clear persisted state and reload the balanced defaults.

        Args:
            screen: Optional screen ('today', 'regulate', 'data') to retry. When
                given and no data issue is set, only that screen is re-resolved.
        """
        store.tick()
        previous_issue = store.data_issue
        if screen:
            if screen not in ("today", "regulate", "data"):
                return json.dumps({"status": "not_found", "error": f"Unknown screen: {screen!r}"})
            state = store.retry_screen(screen)
            return json.dumps({
                "status": "ok",
                "repaired": previous_issue is not None,
                "screen": screen,
                "screen_state": state.to_dict(),
            })
        store.repair_data()
        logger.info("Data repair requested via tool")
        return json.dumps({
            "status": "ok",
            "repaired": True,
            "previous_issue": previous_issue,
            "scenario": store.scenario,
        })

    @mcp.tool
    async def advance_guided_path(ctx: Context, action: str = "advance") -> str:
        """Drive the guided tour: Today -> Regulate -> Data -> Settings.

        Args:
            action: 'start', 'advance' or 'complete'.
        """
        store.tick()
        if action == "start":
            store.start_guided_path()
        elif action == "advance":
            if store.guided_step is None:
                return json.dumps({"status": "rejected", "reason": "Guided tour is not running"})
            store.advance_guided_path()
        elif action == "complete":
            if store.guided_step is None:
                return json.dumps({"status": "rejected", "reason": "Guided tour is not running"})
            store.complete_guided_path()
        else:
            return json.dumps({"status": "rejected", "reason": f"Unknown action: {action!r}"})
        return json.dumps({
            "status": "ok",
            "step": store.guided_step,
            "status_line": store.guided_status_line,
            "banner": store.banner.to_dict() if store.banner else None,
        })
