"""Persistence adapter: versioned per-entity load/save over the state repository.

Each entity lives under its own key and is decoded independently. A key
that is absent is a first run and yields the fallback silently. A key
that is present but cannot be decoded yields the fallback *and* an issue
message, and the repair is recorded in the ``repair_log`` table. The
store keeps only the first issue of a load cycle.

Analytics events are not handled here; see
:class:`mindsense.core.analytics.tracker.AnalyticsTracker`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Generic, TypeVar

from mindsense.core.storage.repository import RepositoryError, StateRepository
from mindsense.domains.coaching.domain_logic.health_models import HealthProfile
from mindsense.domains.coaching.domain_logic.metrics import MetricSnapshot
from mindsense.domains.coaching.domain_logic.models import (
    GUIDED_STEPS,
    SCENARIO_IDS,
    EventRecord,
    Experiment,
    RegulateSession,
    SavedInsight,
    from_iso,
    to_iso,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

SESSION_HISTORY_KEY = "regulate.session.history.v1"
ACTIVE_SESSION_KEY = "regulate.session.active.v1"
EXPERIMENTS_KEY = "data.experiments.v1"
METRICS_KEY = "demo.metrics.v1"
EVENTS_KEY = "demo.events.v1"
HEALTH_PROFILE_KEY = "demo.health_profile.v1"
SAVED_INSIGHTS_KEY = "demo.saved_insights.v1"
GUIDED_STEP_KEY = "demo.guided_path.step.v1"
DAY_KEY = "demo.day.v1"
SCENARIO_KEY = "demo.scenario.v1"
LAST_UPDATED_KEY = "demo.last_updated.v1"
PAYWALL_SEEN_KEY = "paywall.post_activation.seen"
KPI_REVIEWED_KEY = "kpi.last_reviewed_at.v1"

# Prefixes wiped by clear_demo_state
DEMO_STATE_PREFIXES = ("demo.", "regulate.", "data.")

FALLBACK_SCENARIO = "balanced_day"

ISSUE_MESSAGES: dict[str, str] = {
    SESSION_HISTORY_KEY: "Session history could not be restored.",
    ACTIVE_SESSION_KEY: "Active session state could not be restored.",
    EXPERIMENTS_KEY: "Experiment data could not be restored.",
    METRICS_KEY: "Metrics could not be restored. Default metrics were loaded.",
    EVENTS_KEY: "Event history could not be restored.",
    HEALTH_PROFILE_KEY: "Health profile could not be restored.",
    SAVED_INSIGHTS_KEY: "Saved insights could not be restored.",
}

# AttributeError covers nested records stored as non-objects, OverflowError
# covers JSON Infinity reaching int().
_DECODE_ERRORS = (RepositoryError, KeyError, TypeError, ValueError, AttributeError, OverflowError)


@dataclass(frozen=True)
class LoadResult(Generic[T]):
    """A loaded value plus the issue message if a fallback was substituted."""

    value: T
    issue: str | None = None


def _list_of(decoder: Callable[[dict], T]) -> Callable[[Any], list[T]]:
    item_decoder = _record(decoder)

    def decode(data: Any) -> list[T]:
        if not isinstance(data, list):
            raise TypeError(f"Expected a list, got {type(data).__name__}")
        return [item_decoder(item) for item in data]

    return decode


def _record(decoder: Callable[[dict], T]) -> Callable[[Any], T]:
    def decode(data: Any) -> T:
        if not isinstance(data, dict):
            raise TypeError(f"Expected an object, got {type(data).__name__}")
        return decoder(data)

    return decode


class StatePersistence:
    """Load and save every coaching entity under its stable key.

    Usage::

        persistence = StatePersistence(repo)
        result = persistence.load_session_history()
        if result.issue:
            ...  # surface once, keep going with result.value
    """

    def __init__(self, repository: StateRepository) -> None:
        self._repo = repository

    @property
    def repository(self) -> StateRepository:
        return self._repo

    # ---------------------------------------------------------------
    # Generic decode with fallback
    # ---------------------------------------------------------------

    def _load(self, key: str, decode: Callable[[Any], T], fallback: T) -> LoadResult[T]:
        try:
            data = self._repo.get(key)
            if data is None:
                return LoadResult(fallback)
            return LoadResult(decode(data))
        except _DECODE_ERRORS as exc:
            message = ISSUE_MESSAGES[key]
            logger.warning("Could not decode %s (%s); using fallback", key, exc)
            self._repo.log_repair(key, message)
            return LoadResult(fallback, message)

    def _load_scalar(self, key: str) -> Any:
        """Scalar keys carry no issue message; an unreadable value reads as absent."""
        try:
            return self._repo.get(key)
        except RepositoryError as exc:
            logger.warning("Could not decode %s (%s); ignoring", key, exc)
            return None

    def has_key(self, key: str) -> bool:
        return self._repo.get_raw(key) is not None

    # ---------------------------------------------------------------
    # Sessions
    # ---------------------------------------------------------------

    def load_session_history(self) -> LoadResult[list[RegulateSession]]:
        return self._load(SESSION_HISTORY_KEY, _list_of(RegulateSession.from_dict), [])

    def save_session_history(self, history: list[RegulateSession]) -> None:
        self._repo.put(SESSION_HISTORY_KEY, [s.to_dict() for s in history])

    def load_active_session(self) -> LoadResult[RegulateSession | None]:
        return self._load(ACTIVE_SESSION_KEY, _record(RegulateSession.from_dict), None)

    def save_active_session(self, session: RegulateSession | None) -> None:
        self._repo.put(ACTIVE_SESSION_KEY, session.to_dict() if session is not None else None)

    # ---------------------------------------------------------------
    # Experiments
    # ---------------------------------------------------------------

    def load_experiments(self) -> LoadResult[list[Experiment]]:
        return self._load(EXPERIMENTS_KEY, _list_of(Experiment.from_dict), [])

    def save_experiments(self, experiments: list[Experiment]) -> None:
        self._repo.put(EXPERIMENTS_KEY, [e.to_dict() for e in experiments])

    # ---------------------------------------------------------------
    # Demo state
    # ---------------------------------------------------------------

    def load_metrics(self, fallback: MetricSnapshot) -> LoadResult[MetricSnapshot]:
        return self._load(METRICS_KEY, _record(MetricSnapshot.from_dict), fallback)

    def save_metrics(self, metrics: MetricSnapshot) -> None:
        self._repo.put(METRICS_KEY, metrics.to_dict())

    def load_events(self, fallback: list[EventRecord]) -> LoadResult[list[EventRecord]]:
        return self._load(EVENTS_KEY, _list_of(EventRecord.from_dict), fallback)

    def save_events(self, events: list[EventRecord]) -> None:
        self._repo.put(EVENTS_KEY, [e.to_dict() for e in events])

    def load_health_profile(self, fallback: HealthProfile) -> LoadResult[HealthProfile]:
        return self._load(HEALTH_PROFILE_KEY, _record(HealthProfile.from_dict), fallback)

    def save_health_profile(self, profile: HealthProfile) -> None:
        self._repo.put(HEALTH_PROFILE_KEY, profile.to_dict())

    def load_saved_insights(self) -> LoadResult[list[SavedInsight]]:
        return self._load(SAVED_INSIGHTS_KEY, _list_of(SavedInsight.from_dict), [])

    def save_saved_insights(self, insights: list[SavedInsight]) -> None:
        self._repo.put(SAVED_INSIGHTS_KEY, [i.to_dict() for i in insights])

    def load_scenario(self) -> str:
        value = self._load_scalar(SCENARIO_KEY)
        if value not in SCENARIO_IDS:
            if value is not None:
                logger.warning("Stored scenario %r is not recognized; using %s", value, FALLBACK_SCENARIO)
            return FALLBACK_SCENARIO
        return value

    def save_scenario(self, scenario: str) -> None:
        self._repo.put(SCENARIO_KEY, scenario)

    def load_day(self, fallback: int) -> int:
        value = self._load_scalar(DAY_KEY)
        if value is None:
            return fallback
        try:
            return max(1, int(value))
        except (TypeError, ValueError, OverflowError):
            return fallback

    def save_day(self, day: int) -> None:
        self._repo.put(DAY_KEY, day)

    def load_guided_step(self) -> str | None:
        value = self._load_scalar(GUIDED_STEP_KEY)
        return value if value in GUIDED_STEPS else None

    def save_guided_step(self, step: str | None) -> None:
        self._repo.put(GUIDED_STEP_KEY, step)

    def last_updated_at(self) -> datetime | None:
        return self._timestamp(LAST_UPDATED_KEY)

    def set_last_updated_at(self, when: datetime) -> None:
        self._repo.put(LAST_UPDATED_KEY, to_iso(when))

    # ---------------------------------------------------------------
    # Flags
    # ---------------------------------------------------------------

    @property
    def paywall_seen(self) -> bool:
        return self._load_scalar(PAYWALL_SEEN_KEY) is True

    def set_paywall_seen(self, seen: bool) -> None:
        self._repo.put(PAYWALL_SEEN_KEY, bool(seen))

    def kpi_reviewed_at(self) -> datetime | None:
        return self._timestamp(KPI_REVIEWED_KEY)

    def set_kpi_reviewed_at(self, when: datetime | None) -> None:
        self._repo.put(KPI_REVIEWED_KEY, to_iso(when))

    def _timestamp(self, key: str) -> datetime | None:
        try:
            return from_iso(self._load_scalar(key))
        except (TypeError, ValueError):
            return None

    # ---------------------------------------------------------------
    # Maintenance
    # ---------------------------------------------------------------

    def clear_demo_state(self) -> int:
        """Delete every demo, session and experiment key. Returns the key count."""
        removed = sum(self._repo.delete_prefix(prefix) for prefix in DEMO_STATE_PREFIXES)
        logger.info("Cleared %d persisted demo state keys", removed)
        return removed

    def repair_history(self, limit: int = 50) -> list[dict[str, Any]]:
        return self._repo.repair_history(limit=limit)
