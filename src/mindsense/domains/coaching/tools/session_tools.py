"""MCP tools for regulate sessions and the post-activation paywall."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from mindsense.domains.coaching.domain_logic.models import (
    DIRECTIONS,
    HELPFULNESS_VALUES,
    PRESET_IDS,
)

if TYPE_CHECKING:
    from mindsense.domains.coaching.state.store import CoachingStore

logger = logging.getLogger(__name__)


def register_session_tools(mcp: FastMCP, store: CoachingStore) -> None:
    """Register regulate session lifecycle tools on the MCP server."""

    @mcp.tool
    async def start_session(ctx: Context, preset: str = "", source: str = "regulate") -> str:
        """Start a timed regulate session.

        Args:
            preset: 'calm_now', 'focus_prep' or 'sleep_downshift'. Defaults to the
                current primary recommendation.
            source: Where the session was launched from (e.g. 'today', 'regulate').
        """
        store.tick()
        preset = preset or store.primary_recommendation().preset
        if preset not in PRESET_IDS:
            return json.dumps({
                "status": "not_found",
                "error": f"Unknown preset: {preset!r}",
                "available": list(PRESET_IDS),
            })
        session = store.begin_session(preset, source)
        if session is None:
            return json.dumps({
                "status": "rejected",
                "reason": "A session is already active",
                "active_session": store.session_view(),
            })
        definition = store.preset_definition(preset)
        return json.dumps({
            "status": "ok",
            "session": store.session_view(),
            "protocol_steps": list(definition.protocol_steps) if definition else [],
            "measurement_plan": store.measurement_plan_line(),
        })

    @mcp.tool
    async def session_status(ctx: Context) -> str:
        """Return the active session with elapsed and remaining time."""
        store.tick()
        return json.dumps({
            "status": "ok",
            "active_session": store.session_view(),
            "resume_label": store.resume_label(),
            "latest_session_effect": store.latest_session_effect_line(),
            "banner": store.banner.to_dict() if store.banner else None,
        })

    @mcp.tool
    async def complete_session_early(ctx: Context) -> str:
        """Finish the running routine now and move to the impact check-in."""
        store.tick()
        session = store.complete_session_early()
        if session is None:
            return json.dumps({"status": "rejected", "reason": "No session in progress"})
        return json.dumps({"status": "ok", "session": store.session_view()})

    @mcp.tool
    async def cancel_session(ctx: Context) -> str:
        """Cancel the active session before its impact check-in."""
        store.tick()
        session = store.cancel_session()
        if session is None:
            return json.dumps({"status": "rejected", "reason": "No active session"})
        return json.dumps({
            "status": "ok",
            "session": session.to_dict(),
            "metrics": store.metrics.to_dict(),
        })

    @mcp.tool
    async def record_session_outcome(
        ctx: Context,
        direction: str,
        intensity: int,
        feel_rating: int = 3,
        helpfulness: str = "some",
    ) -> str:
        """Capture how the session landed and apply its effect.

        Args:
            direction: 'better', 'same' or 'worse'.
            intensity: How strong the shift felt, 1-5. Clamped to range.
            feel_rating: Overall feeling after the session, 1-5. Clamped to range.
            helpfulness: 'yes', 'some' or 'no'.
        """
        store.tick()
        if direction not in DIRECTIONS:
            return json.dumps({"status": "rejected", "reason": f"Unknown direction: {direction!r}"})
        if helpfulness not in HELPFULNESS_VALUES:
            return json.dumps({"status": "rejected", "reason": f"Unknown helpfulness: {helpfulness!r}"})
        session = store.record_outcome(direction, intensity, feel_rating, helpfulness)
        if session is None:
            return json.dumps({"status": "rejected", "reason": "No active session to record"})
        return json.dumps({
            "status": "ok",
            "session": session.to_dict(),
            "metrics": store.metrics.to_dict(),
            "day": store.day,
            "effect_line": store.latest_session_effect_line(),
            "paywall_pending": store.should_present_paywall,
        })

    @mcp.tool
    async def dismiss_paywall(ctx: Context, accepted: bool = False) -> str:
        """Dismiss the post-activation offer.

        Args:
            accepted: True if the user took the offer.
        """
        store.tick()
        store.dismiss_paywall(accepted)
        return json.dumps({"status": "ok", "accepted": accepted})
