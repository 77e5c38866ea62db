"""Tests for the server entry point: bind guard, boot-time repair, shutdown flush."""

from __future__ import annotations

import pytest

from mindsense.core.analytics.tracker import ANALYTICS_KEY
from mindsense.core.config.settings import Settings
from mindsense.core.server import main
from mindsense.domains.coaching.state.persistence import SESSION_HISTORY_KEY


class _Stopped(Exception):
    pass


class _FakeServer:
    def __init__(self, store):
        self.store = store
        self.run_kwargs = None

    def run(self, **kwargs):
        self.run_kwargs = kwargs
        raise _Stopped()


def _make_settings(**overrides) -> Settings:
    options = dict(analytics_debounce_seconds=60.0)
    options.update(overrides)
    return Settings(**options)


class TestLoopbackGuard:
    @pytest.mark.parametrize("host", ["127.0.0.1", "localhost", "::1"])
    def test_loopback_hosts(self, host):
        assert main._is_loopback_host(host)

    @pytest.mark.parametrize("host", ["0.0.0.0", "10.0.0.4", "mindsense.example"])
    def test_other_hosts(self, host):
        assert not main._is_loopback_host(host)

    def test_run_refuses_public_bind(self, monkeypatch):
        monkeypatch.setenv("MINDSENSE_HOST", "0.0.0.0")
        with pytest.raises(RuntimeError, match="MINDSENSE_ALLOW_INSECURE_BIND"):
            main.run()


class TestBootStore:
    def test_clean_state_loads(self, state_repository):
        store = main.boot_store(_make_settings(), repository=state_repository)
        try:
            assert store.loaded
            assert store.data_issue is None
            assert store.tracker.count("data_repaired") == 0
        finally:
            store.tracker.clear()

    def test_issue_is_kept_without_repair(self, state_repository):
        state_repository.put(SESSION_HISTORY_KEY, "garbage")
        store = main.boot_store(_make_settings(), repository=state_repository)
        try:
            assert store.data_issue == "Session history could not be restored."
        finally:
            store.tracker.clear()

    def test_repair_on_boot_resets_state(self, state_repository):
        state_repository.put(SESSION_HISTORY_KEY, [1])
        store = main.boot_store(_make_settings(repair_on_boot=True), repository=state_repository)
        try:
            assert store.data_issue is None
            assert store.scenario == "balanced_day"
            assert store.tracker.count("data_repaired") == 1
            assert state_repository.get(SESSION_HISTORY_KEY) == []
        finally:
            store.tracker.clear()


class TestRun:
    def test_shutdown_flushes_analytics(self, monkeypatch):
        servers = []

        def _fake_create_app(*, store_override=None):
            server = _FakeServer(store_override)
            servers.append(server)
            return server

        monkeypatch.setattr(main, "create_app", _fake_create_app)
        with pytest.raises(_Stopped):
            main.run()

        server = servers[0]
        assert server.run_kwargs == {"transport": "streamable-http", "host": "127.0.0.1", "port": 8010}
        tracker = server.store.tracker
        assert not tracker.has_pending_write
        stored = server.store.persistence.repository.get(ANALYTICS_KEY)
        assert [e["event"] for e in stored] == ["app_opened"]
