"""Integration tests for the MindSense coaching MCP server."""

from __future__ import annotations

import asyncio

import pytest
from fastmcp import Client

from mindsense.core.server.app import create_app


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


ALL_EXPECTED_TOOLS = [
    "health_check",
    # state
    "coaching_dashboard",
    "switch_scenario",
    "save_check_in",
    "quick_log",
    "fast_forward_days",
    "inject_stress",
    "reset_scenario",
    "repair_data",
    "advance_guided_path",
    # sessions
    "start_session",
    "session_status",
    "complete_session_early",
    "cancel_session",
    "record_session_outcome",
    "dismiss_paywall",
    # experiments
    "list_experiments",
    "start_experiment",
    "log_experiment_day",
    "complete_experiment",
    # health profile
    "health_profile",
    "resync_health_profile",
    "rebuild_health_profile",
    "delete_derived_health_data",
    "save_episode_context",
    "save_episode_feedback",
    # analytics
    "kpi_scorecard",
    "data_issue_history",
]


@pytest.fixture
def client(store):
    """An MCP client bound to a server around the shared test store."""
    return Client(create_app(store_override=store))


def test_server_starts_and_lists_tools(client):
    """Server should start and expose all registered tools."""
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_returns_ok(client):
    """health_check tool should return status ok and the active scenario."""
    async def _check():
        async with client:
            result = await client.call_tool("health_check", {})
            result_text = str(result)
            assert "ok" in result_text
            assert "balanced_day" in result_text
    _run(_check())


def test_default_app_runs_in_memory():
    """Without an encryption key the server still starts, holding state in memory."""
    async def _check():
        async with Client(create_app()) as default_client:
            result = await default_client.call_tool("health_check", {})
            assert "storage_encrypted" in str(result)
    _run(_check())


def test_dashboard_reports_recommendation(client):
    async def _check():
        async with client:
            result = await client.call_tool("coaching_dashboard", {})
            result_text = str(result)
            assert "focus_prep" in result_text
            assert "Confidence Moderate 76%" in result_text
    _run(_check())


def test_session_round_trip(client, store):
    """Start the recommended preset, then record its outcome."""
    async def _check():
        async with client:
            await client.call_tool("start_session", {})
            assert store.active_session is not None
            assert store.active_session.preset == "focus_prep"

            rejected = await client.call_tool("start_session", {"preset": "calm_now"})
            assert "rejected" in str(rejected)

            await client.call_tool(
                "record_session_outcome",
                {"direction": "better", "intensity": 4, "feel_rating": 4, "helpfulness": "yes"},
            )
    _run(_check())
    assert store.active_session is None
    assert store.session_history[0].state == "completed"
    assert store.day == 8


def test_unknown_scenario_not_found(client, store):
    async def _check():
        async with client:
            result = await client.call_tool("switch_scenario", {"scenario": "weekend"})
            assert "not_found" in str(result)
            await client.call_tool("switch_scenario", {"scenario": "recovery_week"})
    _run(_check())
    assert store.scenario == "recovery_week"


def test_check_in_and_experiment_tools(client, store):
    experiment_id = store.experiments[0].id

    async def _check():
        async with client:
            await client.call_tool("save_check_in", {"load_score": 9, "tags": ["Meeting"]})
            await client.call_tool("start_experiment", {"experiment_id": experiment_id})
            await client.call_tool("log_experiment_day", {"experiment_id": experiment_id})
            missing = await client.call_tool("log_experiment_day", {"experiment_id": "missing"})
            assert "not_found" in str(missing)
    _run(_check())
    assert any(e.title == "Check-in 9/10" for e in store.events)
    assert store.experiment(experiment_id).check_in_days_completed == 1


def test_kpi_scorecard_marks_review(client, store):
    async def _check():
        async with client:
            result = await client.call_tool("kpi_scorecard", {})
            assert "session_start_rate" in str(result)
    _run(_check())
    assert store.kpi_last_reviewed_at is not None
    assert store.tracker.count("kpi_reviewed") == 1
