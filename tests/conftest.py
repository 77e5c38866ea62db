"""Shared test fixtures for MindSense coaching tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DEFAULT_SCENARIO", "balanced_day")
    monkeypatch.setenv("ANALYTICS_DEBOUNCE_SECONDS", "60")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

FIXED_NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class FakeClock:
    """A manually advanced UTC clock."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.current = self.current + timedelta(seconds=seconds, **kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def state_db():
    """Create an in-memory StateDatabase for testing."""
    from mindsense.core.storage.database import StateDatabase

    db = StateDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from mindsense.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def state_repository(state_db, field_encryptor):
    """Create an encrypted StateRepository backed by in-memory SQLite."""
    from mindsense.core.storage.repository import StateRepository

    return StateRepository(state_db, field_encryptor)


@pytest.fixture
def persistence(state_repository):
    from mindsense.domains.coaching.state.persistence import StatePersistence

    return StatePersistence(state_repository)


@pytest.fixture(scope="session")
def catalog():
    """The shipped scenario catalog (loaded once per session)."""
    from mindsense.domains.coaching.catalog.registry import load_default_catalog

    return load_default_catalog()


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------

def make_store(persistence, catalog, clock, **settings_overrides):
    """Build a CoachingStore with a long analytics debounce so no timer fires mid-test."""
    from mindsense.core.analytics.tracker import AnalyticsTracker
    from mindsense.core.config.settings import Settings
    from mindsense.domains.coaching.state.store import CoachingStore

    settings = Settings(**{"analytics_debounce_seconds": 60.0, **settings_overrides})
    tracker = AnalyticsTracker(
        persistence.repository,
        debounce_seconds=settings.analytics_debounce_seconds,
        clock=clock,
    )
    return CoachingStore(persistence, catalog, tracker, settings=settings, clock=clock)


@pytest.fixture
def store_factory(persistence, catalog, clock):
    """Build unloaded stores sharing the test repository and clock."""
    built = []

    def _factory(**settings_overrides):
        coaching_store = make_store(persistence, catalog, clock, **settings_overrides)
        built.append(coaching_store)
        return coaching_store

    yield _factory
    for coaching_store in built:
        coaching_store.tracker.clear()


@pytest.fixture
def store(persistence, catalog, clock):
    """A loaded store on the balanced scenario with a fixed clock."""
    coaching_store = make_store(persistence, catalog, clock)
    coaching_store.load()
    yield coaching_store
    coaching_store.tracker.clear()
