"""Tests for CoachingStore: the intent -> delta -> event -> persist loop."""

from __future__ import annotations

import json
import random

import pytest

from mindsense.domains.coaching.domain_logic import session_machine
from mindsense.domains.coaching.domain_logic.metrics import MetricSnapshot
from mindsense.domains.coaching.state.persistence import SESSION_HISTORY_KEY

from conftest import FIXED_NOW


def _finish_session(store, preset: str = "calm_now", direction: str = "better", intensity: int = 4):
    store.begin_session(preset, source="today")
    return store.record_outcome(direction, intensity, feel_rating=4, helpfulness="yes")


class TestLoad:
    def test_first_run_seeds_balanced_defaults(self, store):
        assert store.loaded
        assert store.scenario == "balanced_day"
        assert store.day == 7
        assert store.metrics == MetricSnapshot(load=50, readiness=74, consistency=78)
        assert [e.title for e in store.events] == [
            "Scenario loaded",
            "Morning check-in 4/10",
            "Exercise logged",
        ]
        assert len(store.experiments) == 3
        assert store.data_issue is None
        assert store.tracker.count("app_opened") == 1

    def test_screens_loading_until_loaded(self, store_factory):
        fresh = store_factory()
        assert fresh.screen_state("today").mode == "loading"
        fresh.load()
        assert all(fresh.screen_state(s).mode == "ready" for s in ("today", "regulate", "data"))

    def test_reload_restores_state(self, store, store_factory):
        store.save_check_in(6)
        store.fast_forward(2)
        reloaded = store_factory()
        reloaded.load()
        assert reloaded.metrics == store.metrics
        assert reloaded.day == store.day
        assert [e.id for e in reloaded.events] == [e.id for e in store.events]
        assert [e.id for e in reloaded.experiments] == [e.id for e in store.experiments]

    def test_active_session_survives_reload(self, store, store_factory):
        session = store.begin_session("focus_prep", source="today")
        reloaded = store_factory()
        reloaded.load()
        assert reloaded.active_session.id == session.id
        assert reloaded.active_session.state == "in_progress"

    def test_finished_active_session_is_dropped(self, persistence, store_factory):
        cancelled = session_machine.cancel(
            session_machine.begin("calm_now", "", FIXED_NOW, 180), FIXED_NOW
        )
        persistence.save_active_session(cancelled)
        store = store_factory()
        store.load()
        assert store.active_session is None
        assert not persistence.has_key("regulate.session.active.v1")

    def test_bootstrap_uses_configured_scenario(self, store_factory):
        store = store_factory(default_scenario="recovery_week")
        store.load()
        assert store.scenario == "recovery_week"
        assert store.day == 5


class TestDataIssues:
    def test_corrupted_history_surfaces_first_issue(self, store_factory, state_repository):
        state_repository.put(SESSION_HISTORY_KEY, {"not": "a list"})
        store = store_factory()
        store.load()
        assert store.data_issue == "Session history could not be restored."
        assert store.session_history == []
        state = store.screen_state("today")
        assert state.mode == "error"
        assert state.message == "Session history could not be restored."

    def test_non_object_history_items_fall_back(self, store_factory, state_repository, persistence):
        state_repository.put(SESSION_HISTORY_KEY, [1])
        store = store_factory()
        store.load()
        assert store.data_issue == "Session history could not be restored."
        assert store.session_history == []
        assert len(store.experiments) == 3
        assert [r["key"] for r in persistence.repair_history()] == [SESSION_HISTORY_KEY]

    def test_retry_repairs_and_clears_issue(self, store_factory, state_repository, persistence):
        state_repository.put(SESSION_HISTORY_KEY, "garbage")
        store = store_factory()
        store.load()
        assert store.retry_screen("data").mode == "ready"
        assert store.data_issue is None
        assert store.scenario == "balanced_day"
        assert store.banner.detail == "Data reloaded from defaults."
        assert store.tracker.count("data_repaired") == 1
        assert [r["key"] for r in persistence.repair_history()] == [SESSION_HISTORY_KEY]

    def test_retry_without_issue_only_reresolves(self, store):
        store.save_check_in(5)
        assert store.retry_screen("today").mode == "ready"
        assert store.tracker.count("data_repaired") == 0
        assert len(store.events) == 4


class TestUserInputs:
    def test_high_check_in_saves_insight_once_per_day(self, store):
        store.save_check_in(9, ["Meeting", "", "Meeting"])
        store.save_check_in(9)
        assert store.events[1].title == "Check-in 9/10"
        assert store.events[1].detail == "Tags: Meeting"
        titles = [i.title for i in store.saved_insights]
        assert titles == ["Check-in 9/10 captured"]
        assert store.tracker.count("check_in_saved") == 2

    def test_check_in_score_is_clamped(self, store):
        event = store.save_check_in(14)
        assert event.title == "Check-in 10/10"

    def test_mid_check_in_saves_no_insight(self, store):
        store.save_check_in(5)
        assert store.saved_insights == []
        assert store.banner.title == "Saved"

    def test_quick_log_applies_table_delta(self, store):
        store.quick_log("Caffeine")
        assert store.metrics == MetricSnapshot(load=52, readiness=73, consistency=78)
        assert store.events[0].title == "Caffeine logged"

    def test_unknown_quick_log_is_neutral(self, store):
        store.quick_log("Journaling")
        assert store.metrics == MetricSnapshot(load=50, readiness=74, consistency=78)

    def test_fast_forward_bounds(self, store):
        event = store.fast_forward(10)
        assert store.day == 14
        assert event.detail == "Fast-forwarded 7 days for storytelling."
        for _ in range(4):
            store.fast_forward(7)
        assert store.day == 35
        assert store.banner.detail == "Moved to day 35."

    def test_inject_stress(self, store):
        store.inject_stress()
        assert store.metrics == MetricSnapshot(load=56, readiness=70, consistency=76)
        assert store.events[0].kind == "system"
        assert store.tracker.count("stress_event_injected") == 1

    def test_events_are_capped(self, store):
        for _ in range(90):
            store.quick_log("Social")
        assert len(store.events) == 80


class TestMetricBounds:
    @pytest.mark.parametrize("seed", [1, 42, 913])
    def test_random_action_sequences_keep_metrics_in_bounds(self, store, clock, seed):
        rng = random.Random(seed)
        store.start_experiment(store.experiments[0].id)
        for _ in range(120):
            action = rng.choice(["outcome", "cancel", "fast_forward", "stress", "check_in", "quick_log", "log_day"])
            if action == "outcome":
                store.begin_session(rng.choice(["calm_now", "focus_prep", "sleep_downshift"]))
                store.record_outcome(rng.choice(["better", "same", "worse"]), rng.randint(1, 5))
            elif action == "cancel":
                store.begin_session("calm_now")
                store.cancel_session()
            elif action == "fast_forward":
                store.fast_forward(rng.randint(1, 7))
            elif action == "stress":
                store.inject_stress()
            elif action == "check_in":
                store.save_check_in(rng.randint(0, 10), ["Meeting"] if rng.random() < 0.5 else [])
            elif action == "quick_log":
                store.quick_log(rng.choice(["Caffeine", "Exercise", "Social"]))
            else:
                store.log_experiment_day(store.experiments[0].id)
            clock.advance(minutes=rng.randint(1, 90))

            assert 8 <= store.metrics.load <= 96
            assert 8 <= store.metrics.readiness <= 98
            assert 10 <= store.metrics.consistency <= 99
            assert 1 <= store.day <= 35


class TestSessions:
    def test_second_start_is_rejected(self, store):
        first = store.begin_session("calm_now", source="today")
        assert first is not None
        assert store.begin_session("focus_prep") is None
        assert store.active_session.id == first.id
        assert store.begin_session("box_breathing") is None

    def test_timer_poll_moves_to_check_in(self, store, clock):
        store.begin_session("calm_now", source="today")
        clock.advance(60)
        assert store.remaining_seconds() == 120
        clock.advance(120)
        store.tick()
        assert store.active_session.state == "awaiting_check_in"
        assert store.banner.detail == "Session complete. Save your impact check-in."
        assert store.resume_label() == "Resume post-session check-in"

    def test_outcome_applies_delta_and_bumps_day(self, store):
        completed = _finish_session(store)
        assert completed.state == "completed"
        assert store.active_session is None
        assert store.session_history[0].id == completed.id
        assert store.metrics == MetricSnapshot(load=42, readiness=82, consistency=79)
        assert store.day == 8
        assert completed.outcome.effect_metrics.quality == "live"
        assert store.events[0].title == "Calm now outcome saved"
        assert store.saved_insights[0].title == "Calm now: Better 4/5"
        assert store.latest_session_effect_line() == "HR -8 bpm • recovery Moderate • live"

    def test_outcome_rejects_invalid_values(self, store):
        store.begin_session("calm_now")
        assert store.record_outcome("great", 3) is None
        assert store.record_outcome("better", 3, helpfulness="maybe") is None
        assert store.active_session is not None

    def test_paywall_presented_once(self, store):
        _finish_session(store)
        assert store.should_present_paywall
        assert store.tracker.count("paywall_presented") == 1
        store.dismiss_paywall(accepted=False)
        assert not store.should_present_paywall
        _finish_session(store, preset="focus_prep")
        assert not store.should_present_paywall
        assert store.tracker.count("paywall_presented") == 1

    def test_cancel_archives_and_penalizes(self, store):
        store.begin_session("focus_prep")
        cancelled = store.cancel_session()
        assert cancelled.state == "cancelled"
        assert store.active_session is None
        assert store.session_history[0].state == "cancelled"
        assert store.metrics == MetricSnapshot(load=51, readiness=73, consistency=77)
        assert store.cancel_session() is None

    def test_complete_early(self, store, clock):
        store.begin_session("sleep_downshift")
        clock.advance(100)
        finished = store.complete_session_early()
        assert finished.state == "awaiting_check_in"
        clock.advance(600)
        assert store.elapsed_seconds() == 100
        assert store.complete_session_early() is None

    def test_session_history_is_capped(self, store):
        for _ in range(55):
            store.begin_session("calm_now")
            store.cancel_session()
        assert len(store.session_history) == 50


class TestScenarios:
    def test_switch_resets_dependent_state(self, store):
        store.save_check_in(9)
        store.begin_session("calm_now")
        assert store.switch_scenario("high_stress_day") is True
        assert store.scenario == "high_stress_day"
        assert store.metrics == MetricSnapshot(load=82, readiness=56, consistency=62)
        assert store.day == 11
        assert store.active_session is None
        assert store.session_history == []
        assert store.saved_insights == []
        assert store.primary_recommendation().preset == "calm_now"
        assert store.tracker.count("scenario_switched") == 1

    def test_switch_to_same_or_unknown(self, store):
        assert store.switch_scenario("balanced_day") is False
        assert store.switch_scenario("weekend") is False

    def test_reset_scenario(self, store):
        store.inject_stress()
        store.reset_scenario()
        assert store.metrics == MetricSnapshot(load=50, readiness=74, consistency=78)
        assert len(store.events) == 3
        assert store.banner.detail == "Balanced Day data reset."


class TestExperiments:
    def test_full_lifecycle(self, store):
        exp = store.experiments[0]
        assert store.start_experiment(exp.id) is exp
        assert store.resume_label() == "Resume day 1 experiment"

        store.log_experiment_day(exp.id)
        assert store.day == 8
        assert store.metrics == MetricSnapshot(load=48, readiness=75, consistency=79)
        assert store.saved_insights[0].title == "Precision midday reset: adherence 100%"

        done = store.complete_experiment(exp.id, 3, "Calmer afternoons.")
        assert done.status == "completed"
        assert done.result.summary.endswith("Calmer afternoons.")
        assert store.metrics == MetricSnapshot(load=45, readiness=76, consistency=80)
        assert store.saved_insights[0].title == "Precision midday reset result"
        assert store.tracker.count("experiment_completed") == 1

    def test_invalid_transitions(self, store):
        exp = store.experiments[1]
        assert store.log_experiment_day(exp.id) is None
        assert store.complete_experiment(exp.id, 1) is None
        assert store.start_experiment("missing") is None

    def test_experiment_view(self, store):
        exp = store.experiments[2]
        store.start_experiment(exp.id)
        view = store.experiment_view(exp)
        assert view["status"] == "active"
        assert view["adherence_percent"] == 0
        assert view["is_overdue"] is False
        assert view["effect_estimate"] == "Consistency +1 (low confidence)"


class TestHealth:
    def test_episode_needing_context(self, store):
        episode = store.latest_episode_needing_context()
        assert episode.likely_driver == "cognitive"
        saved = store.save_episode_context(episode.id, ["Meeting"], "Standup ran long")
        assert saved.user_tags == ["Meeting"]
        assert store.events[0].title == "Stress context captured"
        assert store.latest_episode_needing_context() is None

    def test_feedback(self, store):
        episode = store.health_profile.stress_episodes[0]
        assert store.save_episode_feedback(episode.id, "maybe") is None
        assert store.save_episode_feedback(episode.id, "inaccurate").attribution_feedback == "inaccurate"
        assert store.events[0].detail == "Marked not accurate for episode attribution."

    def test_delete_then_rebuild(self, store):
        store.delete_derived_health()
        assert store.health_profile.stress_episodes == []
        store.rebuild_health()
        assert len(store.health_profile.stress_episodes) == 2
        assert store.tracker.count("health_rebuilt") == 1

    def test_resync_moves_sync_time(self, store, clock):
        clock.advance(minutes=30)
        profile = store.resync_health()
        assert profile.sync.last_sync_at == clock()


class TestBannersAndGuidedPath:
    def test_banner_expires_on_tick(self, store, clock):
        store.save_check_in(5)
        clock.advance(2)
        store.tick()
        assert store.banner is not None
        clock.advance(1)
        store.tick()
        assert store.banner is None

    def test_newer_banner_replaces_older(self, store):
        store.save_check_in(5)
        store.inject_stress()
        assert store.banner.title == "Applied"

    def test_guided_path(self, store, persistence):
        assert store.advance_guided_path() is None
        store.start_guided_path()
        assert store.guided_status_line == "Guided tour 1/4: Today"
        assert store.advance_guided_path() == "regulate"
        assert store.banner.detail == "Step 2: Regulate."
        assert persistence.load_guided_step() == "regulate"
        store.advance_guided_path()
        store.advance_guided_path()
        assert store.guided_step == "settings"
        assert store.advance_guided_path() is None
        assert store.guided_step is None
        assert store.tracker.count("guided_tour_completed") == 1


class TestConfidenceAndSummaries:
    def test_initial_confidence(self, store):
        assert store.coverage_percent() == 12
        assert store.confidence_percent() == 76
        assert store.confidence_status_line() == "Confidence Moderate 76% • coverage 12%"

    def test_cancellations_lower_confidence(self, store):
        before = store.confidence_score()
        store.begin_session("calm_now")
        store.cancel_session()
        assert store.confidence_score() < before

    def test_delta_since_seeded_check_in(self, store):
        store.inject_stress()
        summary = store.delta_since_check_in()
        assert summary.baseline_title == "morning check-in 4/10"
        assert (summary.load_delta, summary.readiness_delta, summary.consistency_delta) == (6, -4, -2)
        assert summary.explanation == (
            "Load is up 6 points, readiness is down 4. "
            "consistency shifted -2, with 1 stress indicator still active."
        )
        assert store.insight_headline() == "Since morning check-in 4/10, load +6, readiness -4"

    def test_no_shift_right_after_check_in(self, store):
        store.save_check_in(5)
        assert store.delta_since_check_in().explanation.startswith("No major shift yet")

    def test_what_is_working_defaults(self, store):
        summary = store.what_is_working()
        assert summary.top_protocol == "Focus prep (5 min)"
        assert summary.top_trigger == "Workout"
        assert summary.best_recovery_window == "11:00-12:00"

    def test_what_is_working_prefers_rewarded_protocol(self, store):
        _finish_session(store, preset="sleep_downshift")
        assert store.what_is_working().top_protocol == "Sleep downshift (8 min)"

    def test_weekly_summary(self, store):
        summary = store.weekly_summary()
        assert summary.wins == ["Readiness is at or above baseline (74)."]
        assert summary.risks[0].startswith("No major risk spikes")
        store.begin_session("calm_now")
        store.cancel_session()
        store.inject_stress()
        store.inject_stress()
        risks = store.weekly_summary().risks
        assert risks[0] == "Load is running 13 points above baseline."
        assert risks[1] == "1 cancelled session reduced session quality."

    def test_saved_insights_view_generates_highlights(self, store):
        view = store.saved_insights_view()
        assert [i.title for i in view] == ["Next best action"]
        assert view[0].detail == "Run Focus prep before your deepest work block. (5 min)"


class TestKPI:
    def test_rates_follow_tracked_events(self, store):
        card = store.kpi_scorecard()
        assert card.session_start_rate == 0.0
        _finish_session(store)
        card = store.kpi_scorecard()
        assert card.session_start_rate == 1.0
        assert card.session_completion_rate == 1.0
        assert card.activation_rate == 0.0

    def test_day_one_retention(self, store, store_factory, clock):
        assert store.kpi_scorecard().d1_retention_rate == 0.0
        store.tracker.flush()
        clock.advance(days=1, hours=2)
        later = store_factory()
        later.load()
        assert later.kpi_scorecard().d1_retention_rate == 1.0
        assert later.kpi_scorecard().d7_retention_rate == 0.0

    def test_mark_reviewed_persists(self, store, persistence):
        when = store.mark_kpi_reviewed()
        assert persistence.kpi_reviewed_at() == when
        assert store.tracker.count("kpi_reviewed") == 1


class TestDashboard:
    def test_dashboard_is_json_ready(self, store):
        store.begin_session("calm_now", source="today")
        data = store.dashboard()
        json.dumps(data)
        assert data["scenario"]["id"] == "balanced_day"
        assert data["active_session"]["remaining_seconds"] == 180
        assert data["resume_label"] == "Resume active session"
        assert len(data["drivers"]["primary"]) == 3
        assert data["screens"]["today"] == {"mode": "ready"}

    @pytest.mark.parametrize("scenario", ["high_stress_day", "recovery_week"])
    def test_dashboard_for_each_scenario(self, store, scenario):
        store.switch_scenario(scenario)
        data = store.dashboard()
        assert data["scenario"]["id"] == scenario
        assert [p["id"] for p in data["ranked_presets"]][0] in ("calm_now", "focus_prep", "sleep_downshift")
        assert data["last_updated_at"] == FIXED_NOW.isoformat()
