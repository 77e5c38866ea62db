"""Tests for AnalyticsTracker: capping, debounced writes, load-time repair."""

from __future__ import annotations

import json
import time

import pytest

from mindsense.core.analytics.tracker import ANALYTICS_KEY, AnalyticsEvent, AnalyticsTracker
from mindsense.core.storage.repository import StateRepository


@pytest.fixture
def repo(state_db):
    return StateRepository(state_db)


def _make_tracker(repo, clock, **overrides) -> AnalyticsTracker:
    options = dict(debounce_seconds=60.0, max_events=400, max_bytes=350_000, clock=clock)
    options.update(overrides)
    return AnalyticsTracker(repo, **options)


class TestTrack:
    def test_track_stamps_the_record_not_the_metadata(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        event = tracker.track("session_started", {"source": "today"})
        assert event.metadata == {"source": "today"}
        assert event.timestamp == clock()
        tracker.clear()

    def test_caller_timestamp_field_is_preserved(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        metadata = {"timestamp": "2026-03-09T08:00:00+00:00"}
        event = tracker.track("check_in_saved", metadata)
        assert event.metadata["timestamp"] == "2026-03-09T08:00:00+00:00"
        assert metadata == {"timestamp": "2026-03-09T08:00:00+00:00"}
        tracker.clear()

    def test_metadata_values_are_stringified(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        event = tracker.track("check_in_saved", {"load_score": 8})
        assert event.metadata["load_score"] == "8"
        tracker.clear()

    def test_keeps_newest_events_when_capped(self, repo, clock):
        tracker = _make_tracker(repo, clock, max_events=5)
        for i in range(8):
            tracker.track(f"e{i}")
        assert [e.event for e in tracker.events] == ["e3", "e4", "e5", "e6", "e7"]
        tracker.clear()

    def test_count_and_of(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        tracker.track("app_opened")
        clock.advance(hours=1)
        tracker.track("session_started")
        tracker.track("app_opened")
        assert tracker.count("app_opened") == 2
        assert tracker.count("kpi_reviewed") == 0
        opens = tracker.of("app_opened")
        assert opens[0].timestamp < opens[1].timestamp
        tracker.clear()


class TestDebouncedWrite:
    def test_nothing_written_before_debounce(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        tracker.track("app_opened")
        assert tracker.has_pending_write
        assert repo.get(ANALYTICS_KEY) is None
        tracker.clear()

    def test_flush_writes_all_events(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        tracker.track("app_opened")
        tracker.track("session_started")
        tracker.flush()
        assert not tracker.has_pending_write
        stored = repo.get(ANALYTICS_KEY)
        assert [e["event"] for e in stored] == ["app_opened", "session_started"]

    def test_flush_without_pending_is_noop(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        tracker.flush()
        assert repo.get(ANALYTICS_KEY) is None

    def test_timer_fires_once_for_burst(self, repo, clock):
        tracker = _make_tracker(repo, clock, debounce_seconds=0.05)
        for _ in range(10):
            tracker.track("app_opened")
        deadline = time.monotonic() + 5
        stored = repo.get(ANALYTICS_KEY)
        while stored is None and time.monotonic() < deadline:
            time.sleep(0.02)
            stored = repo.get(ANALYTICS_KEY)
        assert stored is not None
        assert len(stored) == 10

    def test_clear_cancels_pending_write(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        tracker.track("app_opened")
        tracker.flush()
        tracker.track("session_started")
        tracker.clear()
        assert not tracker.has_pending_write
        assert tracker.events == []
        assert repo.get(ANALYTICS_KEY) is None

    def test_write_started_before_clear_does_not_restore_key(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        tracker.track("app_opened")
        stale_generation = tracker._generation
        snapshot = [e.to_dict() for e in tracker.events]
        tracker.clear()
        # what a timer thread already past its wait would do
        tracker._write(snapshot, stale_generation)
        assert repo.get(ANALYTICS_KEY) is None

    def test_events_after_clear_are_written(self, repo, clock):
        tracker = _make_tracker(repo, clock)
        tracker.track("app_opened")
        tracker.clear()
        tracker.track("session_started")
        tracker.flush()
        assert [e["event"] for e in repo.get(ANALYTICS_KEY)] == ["session_started"]

    def test_timer_cancelled_by_clear_never_writes(self, repo, clock):
        tracker = _make_tracker(repo, clock, debounce_seconds=0.05)
        tracker.track("app_opened")
        tracker.clear()
        time.sleep(0.2)
        assert repo.get(ANALYTICS_KEY) is None


class TestLoad:
    def test_load_restores_events(self, repo, clock):
        first = _make_tracker(repo, clock)
        first.track("app_opened")
        first.flush()
        second = _make_tracker(repo, clock)
        events = second.load()
        assert [e.event for e in events] == ["app_opened"]
        assert isinstance(events[0], AnalyticsEvent)

    def test_oversized_payload_is_discarded(self, repo, clock):
        repo.put(ANALYTICS_KEY, [{"padding": "x" * 2_000}])
        tracker = _make_tracker(repo, clock, max_bytes=1_000)
        assert tracker.load() == []
        assert repo.get(ANALYTICS_KEY) is None

    def test_over_cap_list_is_trimmed_and_written_back(self, repo, clock):
        seed = _make_tracker(repo, clock, max_events=50)
        for i in range(12):
            seed.track(f"e{i}")
        seed.flush()
        tracker = _make_tracker(repo, clock, max_events=4)
        events = tracker.load()
        assert [e.event for e in events] == ["e8", "e9", "e10", "e11"]
        assert tracker.has_pending_write
        tracker.flush()
        assert len(repo.get(ANALYTICS_KEY)) == 4

    def test_undecodable_payload_loads_empty(self, repo, clock, state_db):
        state_db.connection.execute(
            "INSERT INTO kv_store (key, payload, encrypted) VALUES (?, ?, 0)",
            (ANALYTICS_KEY, json.dumps([{"event": "missing_fields"}])),
        )
        tracker = _make_tracker(repo, clock)
        assert tracker.load() == []
