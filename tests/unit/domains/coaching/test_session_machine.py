"""Tests for the regulate session lifecycle and legacy session decoding."""

from __future__ import annotations

from datetime import timedelta

from mindsense.domains.coaching.domain_logic import session_machine
from mindsense.domains.coaching.domain_logic.models import RegulateSession

from conftest import FIXED_NOW


def _begin(**overrides) -> RegulateSession:
    options = dict(preset="calm_now", source="today", now=FIXED_NOW, duration_seconds=180)
    options.update(overrides)
    return session_machine.begin(**options)


def _outcome(session, **overrides):
    options = dict(
        direction="better",
        intensity=4,
        feel_rating=4,
        helpfulness="yes",
        scenario="balanced_day",
        quality="estimated",
        now=FIXED_NOW + timedelta(minutes=4),
    )
    options.update(overrides)
    return session_machine.record_outcome(session, **options)


class TestBegin:
    def test_fresh_session(self):
        session = _begin()
        assert session.state == "in_progress"
        assert session.is_active
        assert session.planned_duration_seconds == 180
        assert session.source == "today"

    def test_missing_duration_defaults_to_three_minutes(self):
        assert _begin(duration_seconds=None).planned_duration_seconds == 180


class TestTimers:
    def test_elapsed_and_remaining(self):
        session = _begin()
        now = FIXED_NOW + timedelta(seconds=50)
        assert session_machine.elapsed_seconds(session, now) == 50
        assert session_machine.remaining_seconds(session, now) == 130

    def test_poll_before_deadline_is_noop(self):
        assert session_machine.poll(_begin(), FIXED_NOW + timedelta(seconds=179)) is None

    def test_poll_at_deadline_awaits_check_in(self):
        now = FIXED_NOW + timedelta(seconds=180)
        polled = session_machine.poll(_begin(), now)
        assert polled.state == "awaiting_check_in"
        assert polled.routine_completed_at == now

    def test_elapsed_freezes_after_routine(self):
        session = session_machine.complete_early(_begin(), FIXED_NOW + timedelta(seconds=40))
        later = FIXED_NOW + timedelta(hours=1)
        assert session_machine.elapsed_seconds(session, later) == 40
        assert session_machine.remaining_seconds(session, later) == 140


class TestTransitions:
    def test_complete_early_only_from_in_progress(self):
        session = session_machine.complete_early(_begin(), FIXED_NOW)
        assert session.state == "awaiting_check_in"
        assert session_machine.complete_early(session, FIXED_NOW) is None

    def test_cancel_sets_timestamps(self):
        now = FIXED_NOW + timedelta(seconds=30)
        cancelled = session_machine.cancel(_begin(), now)
        assert cancelled.state == "cancelled"
        assert cancelled.cancelled_at == now
        assert cancelled.completed_at == now
        assert cancelled.outcome is None
        assert not cancelled.is_completed

    def test_cancel_of_terminal_session_is_noop(self):
        cancelled = session_machine.cancel(_begin(), FIXED_NOW)
        assert session_machine.cancel(cancelled, FIXED_NOW) is None

    def test_outcome_from_in_progress_implicitly_finishes_routine(self):
        completed = _outcome(_begin())
        assert completed.state == "completed"
        assert completed.routine_completed_at is not None
        assert completed.is_completed
        assert completed.outcome.effect_metrics.heart_rate_downshift_bpm == 8

    def test_outcome_clamps_ratings(self):
        completed = _outcome(_begin(), intensity=9, feel_rating=-2)
        assert completed.outcome.intensity == 5
        assert completed.outcome.feel_rating == 1

    def test_outcome_on_completed_session_is_noop(self):
        completed = _outcome(_begin())
        assert _outcome(completed) is None

    def test_outcome_on_cancelled_session_is_noop(self):
        assert _outcome(session_machine.cancel(_begin(), FIXED_NOW)) is None


class TestLegacyDecoding:
    def _legacy(self, **fields):
        data = {"id": "s-1", "preset": "calm_now", "started_at": FIXED_NOW.isoformat()}
        data.update(fields)
        return data

    def test_missing_duration_and_state(self):
        session = RegulateSession.from_dict(self._legacy())
        assert session.planned_duration_seconds == 180
        assert session.state == "in_progress"

    def test_cancelled_inferred_first(self):
        session = RegulateSession.from_dict(
            self._legacy(
                cancelled_at=FIXED_NOW.isoformat(),
                routine_completed_at=FIXED_NOW.isoformat(),
            )
        )
        assert session.state == "cancelled"

    def test_outcome_infers_completed_with_defaults(self):
        session = RegulateSession.from_dict(
            self._legacy(
                completed_at=FIXED_NOW.isoformat(),
                outcome={
                    "direction": "worse",
                    "intensity": 2,
                    "captured_at": FIXED_NOW.isoformat(),
                },
            )
        )
        assert session.state == "completed"
        assert session.outcome.feel_rating == 3
        assert session.outcome.helpfulness == "no"
        assert session.outcome.effect_metrics.recovery_slope == "moderate"
        assert session.outcome.effect_metrics.quality == "estimated"

    def test_routine_completed_infers_awaiting(self):
        session = RegulateSession.from_dict(self._legacy(routine_completed_at=FIXED_NOW.isoformat()))
        assert session.state == "awaiting_check_in"

    def test_round_trip_preserves_state(self):
        completed = _outcome(_begin())
        assert RegulateSession.from_dict(completed.to_dict()) == completed
