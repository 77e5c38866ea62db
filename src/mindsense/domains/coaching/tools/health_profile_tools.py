"""MCP tools for the derived health profile and stress episodes.

The profile is simulated from scenario, day and recent activity; these
tools expose it and let the user label or correct stress episodes.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from mindsense.domains.coaching.domain_logic.health_models import ATTRIBUTION_FEEDBACK
from mindsense.domains.coaching.domain_logic.health_signal_engine import CONTEXT_TAGS

if TYPE_CHECKING:
    from mindsense.domains.coaching.state.store import CoachingStore

logger = logging.getLogger(__name__)


def register_health_profile_tools(mcp: FastMCP, store: CoachingStore) -> None:
    """Register health profile and stress episode tools on the MCP server."""

    def _profile_payload() -> dict:
        profile = store.health_profile
        pending = store.latest_episode_needing_context()
        return {
            "status": "ok",
            "profile": profile.to_dict(),
            "quality_score": profile.quality.score,
            "episode_needing_context": pending.to_dict() if pending else None,
            "episode_prompt": store.episode_prompt(pending) if pending else None,
        }

    @mcp.tool
    async def health_profile(ctx: Context) -> str:
        """Return permissions, data quality, the 12-hour timeline and stress episodes."""
        store.tick()
        payload = _profile_payload()
        payload["context_tags"] = list(CONTEXT_TAGS)
        return json.dumps(payload)

    @mcp.tool
    async def resync_health_profile(ctx: Context) -> str:
        """Re-derive the profile and stamp a fresh sync time."""
        store.tick()
        store.resync_health()
        return json.dumps(_profile_payload())

    @mcp.tool
    async def rebuild_health_profile(ctx: Context) -> str:
        """Rebuild the derived baseline from scenario seeds."""
        store.tick()
        store.rebuild_health()
        return json.dumps(_profile_payload())

    @mcp.tool
    async def delete_derived_health_data(ctx: Context) -> str:
        """Clear the timeline and stress episodes and zero data quality."""
        store.tick()
        store.delete_derived_health()
        logger.info("Derived health data deleted via tool")
        return json.dumps(_profile_payload())

    @mcp.tool
    async def save_episode_context(
        ctx: Context,
        episode_id: str,
        tags: list[str] | None = None,
        note: str = "",
    ) -> str:
        """Label a stress episode with context tags and an optional note.

        Args:
            episode_id: Id of the stress episode.
            tags: Context tags, e.g. 'Meeting', 'Caffeine', 'Commute'.
            note: Optional free-text note.
        """
        store.tick()
        episode = store.save_episode_context(episode_id, tags or [], note)
        if episode is None:
            return json.dumps({"status": "not_found", "error": f"Unknown episode: {episode_id!r}"})
        return json.dumps({"status": "ok", "episode": episode.to_dict()})

    @mcp.tool
    async def save_episode_feedback(ctx: Context, episode_id: str, feedback: str) -> str:
        """Mark whether an episode's attributed driver was accurate.

        Args:
            episode_id: Id of the stress episode.
            feedback: 'accurate' or 'inaccurate'.
        """
        store.tick()
        if feedback not in ATTRIBUTION_FEEDBACK:
            return json.dumps({"status": "rejected", "reason": f"Unknown feedback: {feedback!r}"})
        episode = store.save_episode_feedback(episode_id, feedback)
        if episode is None:
            return json.dumps({"status": "not_found", "error": f"Unknown episode: {episode_id!r}"})
        return json.dumps({"status": "ok", "episode": episode.to_dict()})
