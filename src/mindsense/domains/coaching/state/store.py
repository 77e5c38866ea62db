"""Application-state store: the single owner of all mutable coaching state.

The store is built with injected collaborators (persistence adapter,
scenario catalog, analytics tracker, clock) and exposes user intents as
methods. Every intent follows the same path::

    intent -> delta engine -> event appended -> health profile re-derived
           -> recommendation read on demand -> touched entities persisted

Invalid transitions and unknown ids are no-ops that return None or
False; nothing here raises on bad user input. Timer-driven behavior
(session poll, banner expiry) happens in :meth:`CoachingStore.tick`.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Literal

from mindsense.core.analytics.tracker import AnalyticsTracker
from mindsense.core.config.settings import Settings
from mindsense.domains.coaching.catalog.models import (
    DriverImpact,
    Recommendation,
    RegulatePreset,
    ScenarioProfile,
)
from mindsense.domains.coaching.catalog.registry import ScenarioCatalog
from mindsense.domains.coaching.domain_logic import (
    experiments as experiment_machine,
    health_signal_engine as health_engine,
    recommendation_engine as engine,
    screen_state as screens,
    session_machine,
)
from mindsense.domains.coaching.domain_logic.delta_engine import (
    QUICK_LOG_DELTAS,
    SESSION_CANCEL_DELTA,
    STRESS_INJECTION_DELTA,
    check_in_delta,
    experiment_check_in_delta,
    experiment_completion_delta,
    fast_forward_delta,
    session_outcome_delta,
)
from mindsense.domains.coaching.domain_logic.health_models import (
    ATTRIBUTION_FEEDBACK,
    EPISODE_DRIVER_TITLES,
    HealthProfile,
    StressEpisode,
)
from mindsense.domains.coaching.domain_logic.metrics import (
    ZERO_DELTA,
    MetricDelta,
    MetricSnapshot,
    clamp,
    clamp_int,
    round_half_away,
    signed,
)
from mindsense.domains.coaching.domain_logic.models import (
    DIRECTION_TITLES,
    DIRECTIONS,
    GUIDED_STEPS,
    HELPFULNESS_VALUES,
    PRESET_IDS,
    PRESET_TITLES,
    EventRecord,
    Experiment,
    RegulateSession,
    SavedInsight,
    new_id,
    utcnow,
)
from mindsense.domains.coaching.domain_logic.screen_state import ScreenState
from mindsense.domains.coaching.state.persistence import (
    FALLBACK_SCENARIO,
    SCENARIO_KEY,
    LoadResult,
    StatePersistence,
)

logger = logging.getLogger(__name__)

MAX_EVENTS = 80
MAX_SESSION_HISTORY = 50
MAX_SAVED_INSIGHTS = 40
DAY_BOUNDS = (1, 35)
CHECK_IN_BOUNDS = (0, 10)
FAST_FORWARD_BOUNDS = (1, 7)
EPISODE_CONTEXT_WINDOW = timedelta(hours=8)
WEEK_WINDOW = timedelta(days=6)

BannerSeverity = Literal["info", "success", "warning", "error"]

# verb -> (banner title, severity)
_FEEDBACK_VERBS: dict[str, tuple[str, str]] = {
    "saved": ("Saved", "success"),
    "updated": ("Updated", "success"),
    "applied": ("Applied", "info"),
}

_GUIDED_ADVANCE_BANNERS: dict[str, str] = {
    "today": "Step 2: Regulate.",
    "regulate": "Step 3: Data.",
    "data": "Step 4: Open QA Tools from the profile menu.",
}

_TRIGGER_LABELS: dict[str, str] = {
    "meeting": "Meeting load",
    "caffeine": "Caffeine timing",
    "commute": "Commute pressure",
    "conflict": "Social conflict",
    "noise": "Environmental noise",
    "screen overload": "Screen overload",
    "unknown": "Unknown context",
}


# ---------------------------------------------------------------------------
# View records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Banner:
    """A transient user-facing message with an auto-dismiss deadline."""

    title: str
    detail: str
    severity: BannerSeverity
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "detail": self.detail,
            "severity": self.severity,
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class CheckInDeltaSummary:
    baseline_title: str
    baseline_timestamp: datetime
    load_delta: int
    readiness_delta: int
    consistency_delta: int
    explanation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseline_title": self.baseline_title,
            "baseline_timestamp": self.baseline_timestamp.isoformat(),
            "load_delta": self.load_delta,
            "readiness_delta": self.readiness_delta,
            "consistency_delta": self.consistency_delta,
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class WhatIsWorkingSummary:
    top_protocol: str
    top_trigger: str
    best_recovery_window: str

    def to_dict(self) -> dict[str, str]:
        return {
            "top_protocol": self.top_protocol,
            "top_trigger": self.top_trigger,
            "best_recovery_window": self.best_recovery_window,
        }


@dataclass(frozen=True)
class WeeklySummary:
    wins: list[str] = field(default_factory=list)
    risks: list[str] = field(default_factory=list)
    next_best_action: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "wins": list(self.wins),
            "risks": list(self.risks),
            "next_best_action": self.next_best_action,
        }


@dataclass(frozen=True)
class KPIScorecard:
    activation_rate: float
    d1_retention_rate: float
    d7_retention_rate: float
    session_start_rate: float
    session_completion_rate: float
    generated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "activation_rate": round(self.activation_rate, 4),
            "d1_retention_rate": round(self.d1_retention_rate, 4),
            "d7_retention_rate": round(self.d7_retention_rate, 4),
            "session_start_rate": round(self.session_start_rate, 4),
            "session_completion_rate": round(self.session_completion_rate, 4),
            "generated_at": self.generated_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Seeds
# ---------------------------------------------------------------------------

def seeded_events(profile: ScenarioProfile, now: datetime) -> list[EventRecord]:
    """The scenario's starter history, newest first, 45 minutes apart."""
    events = [
        EventRecord(
            id=new_id(),
            timestamp=now - timedelta(seconds=(index + 1) * 2_700),
            title=seed.title,
            detail=seed.detail,
            kind=seed.kind,
            metric_snapshot=profile.base_metrics if seed.kind == "check_in" else None,
            demo_day=max(1, profile.default_day - min(index, 2)),
        )
        for index, seed in enumerate(profile.seed_events)
    ]
    return sorted(events, key=lambda e: e.timestamp, reverse=True)


def _ratio(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


# ---------------------------------------------------------------------------
# CoachingStore
# ---------------------------------------------------------------------------

class CoachingStore:
    """Owns metrics, sessions, experiments, events, health profile and insights.

    Usage::

        store = CoachingStore(persistence, catalog, tracker, settings=settings)
        store.load()
        session = store.begin_session("calm_now", source="today")
        store.tick()                        # poll timers
        store.record_outcome("better", intensity=4, feel_rating=4, helpfulness="yes")
    """

    def __init__(
        self,
        persistence: StatePersistence,
        catalog: ScenarioCatalog,
        tracker: AnalyticsTracker,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._persistence = persistence
        self._catalog = catalog
        self._tracker = tracker
        self._clock = clock or utcnow
        self._banner_seconds = settings.banner_seconds if settings is not None else 3.0
        self._bootstrap_scenario = (
            settings.default_scenario if settings is not None else FALLBACK_SCENARIO
        )

        now = self._clock()
        fallback = catalog.require(FALLBACK_SCENARIO)
        self.scenario: str = fallback.id
        self.metrics: MetricSnapshot = fallback.base_metrics
        self.day: int = fallback.default_day
        self.session_history: list[RegulateSession] = []
        self.active_session: RegulateSession | None = None
        self.experiments: list[Experiment] = []
        self.events: list[EventRecord] = []
        self.health_profile: HealthProfile = health_engine.seeded_profile(
            fallback.id, fallback.default_day, now
        )
        self.saved_insights: list[SavedInsight] = []
        self.guided_step: str | None = None
        self.data_issue: str | None = None
        self.last_updated_at: datetime = now
        self.kpi_last_reviewed_at: datetime | None = None
        self.should_present_paywall: bool = False
        self.banner: Banner | None = None
        self.loaded: bool = False
        self._screen_states: dict[str, ScreenState] = {}

    # ---------------------------------------------------------------
    # Basics
    # ---------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    @property
    def tracker(self) -> AnalyticsTracker:
        return self._tracker

    @property
    def persistence(self) -> StatePersistence:
        return self._persistence

    @property
    def profile(self) -> ScenarioProfile:
        return self._catalog.require(self.scenario)

    @property
    def presets(self) -> list[RegulatePreset]:
        return list(self.profile.presets)

    def preset_definition(self, preset: str) -> RegulatePreset | None:
        return self.profile.preset(preset)

    def experiment(self, experiment_id: str) -> Experiment | None:
        return experiment_machine.find(self.experiments, experiment_id)

    @property
    def active_experiment(self) -> Experiment | None:
        return experiment_machine.active_experiment(self.experiments)

    @property
    def completed_experiments(self) -> list[Experiment]:
        return [e for e in self.experiments if e.status == "completed"]

    def adherence(self, experiment: Experiment) -> int:
        return experiment_machine.adherence_percent(experiment, self.now())

    @property
    def active_adherence(self) -> int:
        active = self.active_experiment
        return self.adherence(active) if active is not None else 0

    @property
    def completed_sessions(self) -> list[RegulateSession]:
        return [s for s in self.session_history if s.is_completed]

    @property
    def latest_completed_session(self) -> RegulateSession | None:
        return next((s for s in self.session_history if s.is_completed), None)

    # ---------------------------------------------------------------
    # Load cycle
    # ---------------------------------------------------------------

    def _bootstrap_if_needed(self, now: datetime) -> None:
        """Seed defaults for a store that has never held a scenario."""
        p = self._persistence
        if p.has_key(SCENARIO_KEY):
            return
        profile = self._catalog.require(self._bootstrap_scenario)
        logger.info("No stored scenario; seeding %s defaults", profile.id)
        p.save_scenario(profile.id)
        p.save_day(profile.default_day)
        p.set_last_updated_at(now)
        p.save_metrics(profile.base_metrics)
        p.save_events(seeded_events(profile, now))
        p.save_health_profile(health_engine.seeded_profile(profile.id, profile.default_day, now))
        p.save_saved_insights([])

    def _mark_issue(self, result: LoadResult) -> Any:
        if result.issue is not None and self.data_issue is None:
            self.data_issue = result.issue
        return result.value

    def load(self) -> None:
        """Restore every entity independently; the first decode failure is surfaced."""
        now = self.now()
        p = self._persistence
        self.data_issue = None
        self._bootstrap_if_needed(now)

        self._tracker.load()
        self.kpi_last_reviewed_at = p.kpi_reviewed_at()
        self.active_session = self._mark_issue(p.load_active_session())
        self.session_history = self._mark_issue(p.load_session_history())
        self.scenario = p.load_scenario()
        profile = self.profile
        self.metrics = self._mark_issue(p.load_metrics(profile.base_metrics))
        self.events = self._mark_issue(p.load_events(seeded_events(profile, now)))
        self.saved_insights = self._mark_issue(p.load_saved_insights())
        self.day = p.load_day(profile.default_day)
        self.health_profile = self._mark_issue(
            p.load_health_profile(health_engine.seeded_profile(self.scenario, self.day, now))
        )
        self.guided_step = p.load_guided_step()
        self.last_updated_at = p.last_updated_at() or now
        self.experiments = self._mark_issue(p.load_experiments())
        if not self.experiments:
            self.experiments = experiment_machine.seed_experiments(profile.experiments)
            p.save_experiments(self.experiments)

        if self.active_session is not None and not self.active_session.is_active:
            logger.info("Dropping finished active session %s", self.active_session.id)
            self.active_session = None
            p.save_active_session(None)

        self.should_present_paywall = False
        self.sync_session(now)
        self._refresh_health(update_sync=False)
        self._refresh_screens()
        self.loaded = True
        if self.data_issue is not None:
            logger.warning("Coaching state loaded with data issue: %s", self.data_issue)
        else:
            logger.info("Coaching state loaded: scenario=%s day=%d", self.scenario, self.day)
        self._tracker.track("app_opened", {"state": "ready"})

    # ---------------------------------------------------------------
    # Timers
    # ---------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> None:
        """Deliver a clock tick: session poll plus banner expiry."""
        now = now or self.now()
        self.sync_session(now)
        if self.banner is not None and now >= self.banner.expires_at:
            self.banner = None

    def sync_session(self, now: datetime | None = None) -> None:
        if self.active_session is None:
            return
        now = now or self.now()
        updated = session_machine.poll(self.active_session, now)
        if updated is None:
            return
        self.active_session = updated
        self._persistence.save_active_session(updated)
        self.show_feedback("updated", "Session complete. Save your impact check-in.")

    # ---------------------------------------------------------------
    # Banners
    # ---------------------------------------------------------------

    def show_banner(self, title: str, detail: str, severity: BannerSeverity) -> Banner:
        """Replace any current banner; the new one expires after banner_seconds."""
        self.banner = Banner(
            title=title,
            detail=detail,
            severity=severity,
            expires_at=self.now() + timedelta(seconds=self._banner_seconds),
        )
        return self.banner

    def show_feedback(self, verb: str, detail: str) -> Banner:
        title, severity = _FEEDBACK_VERBS[verb]
        return self.show_banner(title, detail, severity)

    def clear_banner(self) -> None:
        self.banner = None

    # ---------------------------------------------------------------
    # Metrics, days and events
    # ---------------------------------------------------------------

    def apply_metric_delta(self, delta: MetricDelta) -> MetricSnapshot:
        self.metrics = self.metrics.applying(delta)
        self._persistence.save_metrics(self.metrics)
        return self.metrics

    def bump_day(self, days: int) -> int:
        if days == 0:
            return self.day
        self.day = clamp_int(self.day + days, *DAY_BOUNDS)
        self._persistence.save_day(self.day)
        return self.day

    def _touch(self) -> None:
        self.last_updated_at = self.now()
        self._persistence.set_last_updated_at(self.last_updated_at)

    def append_event(
        self,
        title: str,
        detail: str,
        kind: str,
        delta: MetricDelta = ZERO_DELTA,
    ) -> EventRecord:
        """Apply ``delta``, record the event with a metric snapshot, re-derive health."""
        self.apply_metric_delta(delta)
        event = EventRecord(
            id=new_id(),
            timestamp=self.now(),
            title=title,
            detail=detail,
            kind=kind,
            metric_snapshot=self.metrics,
            demo_day=self.day,
        )
        self.events.insert(0, event)
        del self.events[MAX_EVENTS:]
        self._persistence.save_events(self.events)
        self._refresh_health(update_sync=False)
        self._touch()
        return event

    # ---------------------------------------------------------------
    # User inputs
    # ---------------------------------------------------------------

    def save_check_in(self, score: int, tags: Iterable[str] = (), *, show_feedback: bool = True) -> EventRecord:
        bounded = clamp_int(int(score), *CHECK_IN_BOUNDS)
        tag_set = sorted({t for t in tags if t})
        tag_line = ", ".join(tag_set) if tag_set else "No context tags"
        event = self.append_event(
            f"Check-in {bounded}/10",
            f"Tags: {tag_line}",
            "check_in",
            check_in_delta(bounded, bool(tag_set)),
        )
        if bounded <= 3 or bounded >= 8:
            self.save_insight(
                f"Check-in {bounded}/10 captured",
                "High-load signal captured. Prioritize short downshifts before next pressure block."
                if bounded >= 8
                else "Low-load window captured. This is a leverage moment for focus quality.",
            )
        if show_feedback:
            self.show_feedback("saved", "Check-in captured and model state updated.")
        self._tracker.track("check_in_saved", {"load_score": bounded})
        return event

    def quick_log(self, tag: str) -> EventRecord:
        delta = QUICK_LOG_DELTAS.get(tag.lower(), ZERO_DELTA)
        event = self.append_event(
            f"{tag} logged", "Added to today's context history.", "reflection", delta
        )
        self.show_feedback("saved", f"{tag} entry added.")
        return event

    def fast_forward(self, days: int = 1) -> EventRecord:
        bounded = clamp_int(int(days), *FAST_FORWARD_BOUNDS)
        self.bump_day(bounded)
        event = self.append_event(
            "Day advanced",
            f"Fast-forwarded {_plural(bounded, 'day')} for storytelling.",
            "system",
            fast_forward_delta(bounded, self.scenario),
        )
        self.show_feedback("applied", f"Moved to day {self.day}.")
        self._tracker.track("day_fast_forwarded", {"days": bounded})
        return event

    def inject_stress(self) -> EventRecord:
        event = self.append_event(
            "Stress event injected",
            "Unexpected pressure block added to simulate real-world volatility.",
            "system",
            STRESS_INJECTION_DELTA,
        )
        self.show_feedback("applied", "Stress event injected into timeline.")
        self._tracker.track("stress_event_injected")
        return event

    # ---------------------------------------------------------------
    # Scenario and data resets
    # ---------------------------------------------------------------

    def _reset_to(self, profile: ScenarioProfile) -> None:
        now = self.now()
        self.scenario = profile.id
        self.metrics = profile.base_metrics
        self.day = profile.default_day
        self.session_history = []
        self.active_session = None
        self.experiments = experiment_machine.seed_experiments(profile.experiments)
        self.events = seeded_events(profile, now)
        self.health_profile = health_engine.seeded_profile(profile.id, profile.default_day, now)
        self.saved_insights = []

    def _persist_all(self) -> None:
        p = self._persistence
        p.save_scenario(self.scenario)
        p.save_metrics(self.metrics)
        p.save_day(self.day)
        p.save_active_session(self.active_session)
        p.save_session_history(self.session_history)
        p.save_experiments(self.experiments)
        p.save_events(self.events)
        p.save_health_profile(self.health_profile)
        p.save_saved_insights(self.saved_insights)
        p.save_guided_step(self.guided_step)

    def switch_scenario(self, scenario: str) -> bool:
        """Activate another scenario, resetting all dependent state.

        Returns False when the scenario is unknown or already active.
        """
        if scenario == self.scenario or scenario not in self._catalog:
            return False
        if self.active_session is not None:
            self.cancel_session(reason="scenario_switched")

        profile = self._catalog.require(scenario)
        self._reset_to(profile)
        self.guided_step = None
        self.data_issue = None
        self._persist_all()
        self._touch()
        self._refresh_screens()
        logger.info("Switched scenario to %s", scenario)
        self.show_feedback("applied", f"{profile.title} is now active.")
        self._tracker.track("scenario_switched", {"scenario": scenario})
        return True

    def reset_scenario(self) -> None:
        if self.active_session is not None:
            self.cancel_session(reason="data_reset")
        profile = self.profile
        self._reset_to(profile)
        self._persist_all()
        self._touch()
        self._refresh_screens()
        logger.info("Reset %s to scenario defaults", self.scenario)
        self.show_feedback("updated", f"{profile.title} data reset.")
        self._tracker.track("data_reset", {"scenario": self.scenario})

    def repair_data(self) -> None:
        """Clear persisted state and reload balanced defaults."""
        previous_issue = self.data_issue
        self._persistence.clear_demo_state()
        self.data_issue = None
        self.guided_step = None
        self._reset_to(self._catalog.require(FALLBACK_SCENARIO))
        self._persist_all()
        self._touch()
        self._refresh_screens()
        logger.info("Repaired coaching data (issue was: %s)", previous_issue)
        self.show_feedback("updated", "Data reloaded from defaults.")
        self._tracker.track("data_repaired", {"issue": previous_issue or ""})

    # ---------------------------------------------------------------
    # Saved insights
    # ---------------------------------------------------------------

    def save_insight(self, title: str, detail: str) -> SavedInsight | None:
        """Prepend an insight unless it is blank or its title was already saved today."""
        title = title.strip()
        detail = detail.strip()
        if not title or not detail:
            return None
        now = self.now()
        if any(i.title == title and i.timestamp.date() == now.date() for i in self.saved_insights):
            return None
        insight = SavedInsight(
            id=new_id(), timestamp=now, scenario=self.scenario, title=title, detail=detail
        )
        self.saved_insights.insert(0, insight)
        del self.saved_insights[MAX_SAVED_INSIGHTS:]
        self._persistence.save_saved_insights(self.saved_insights)
        return insight

    def saved_insights_view(self) -> list[SavedInsight]:
        """Saved insights newest first, or generated highlights when none exist."""
        if self.saved_insights:
            return sorted(self.saved_insights, key=lambda i: i.timestamp, reverse=True)

        now = self.now()
        insights = [
            SavedInsight(
                id=new_id(),
                timestamp=now,
                scenario=self.scenario,
                title="Next best action",
                detail=self.primary_recommendation().summary_line,
            )
        ]
        latest = self.latest_completed_session
        if latest is not None and latest.outcome is not None:
            insights.append(
                SavedInsight(
                    id=new_id(),
                    timestamp=latest.completed_at or now,
                    scenario=self.scenario,
                    title="Latest regulate outcome",
                    detail=(
                        f"Outcome was {latest.outcome.direction} at {latest.outcome.intensity}/5."
                    ),
                )
            )
        finished = [e for e in self.completed_experiments if e.result is not None]
        if finished:
            newest = max(finished, key=lambda e: e.result.completed_at)
            insights.append(
                SavedInsight(
                    id=new_id(),
                    timestamp=newest.result.completed_at,
                    scenario=self.scenario,
                    title=f"{newest.title} result",
                    detail=newest.result.summary,
                )
            )
        return insights

    # ---------------------------------------------------------------
    # Health profile
    # ---------------------------------------------------------------

    def _refresh_health(self, *, update_sync: bool) -> None:
        self.health_profile = health_engine.refreshed_profile(
            self.health_profile,
            scenario=self.scenario,
            metrics=self.metrics,
            demo_day=self.day,
            completed_session_count=len(self.completed_sessions),
            active_experiment_adherence=self.active_adherence,
            now=self.now(),
            update_sync=update_sync,
        )
        self._persistence.save_health_profile(self.health_profile)

    def resync_health(self) -> HealthProfile:
        self._refresh_health(update_sync=True)
        self.show_feedback("updated", "Health data resynced.")
        self._tracker.track("health_resync")
        return self.health_profile

    def rebuild_health(self) -> HealthProfile:
        self.health_profile = health_engine.rebuilt_profile(
            self.health_profile, self.scenario, self.day, self.now()
        )
        self._persistence.save_health_profile(self.health_profile)
        self.show_feedback("updated", "Derived health baseline rebuilt.")
        self._tracker.track("health_rebuilt")
        return self.health_profile

    def delete_derived_health(self) -> HealthProfile:
        self.health_profile = health_engine.deleting_derived(self.health_profile, self.now())
        self._persistence.save_health_profile(self.health_profile)
        self.show_feedback("saved", "Health-derived metrics cleared.")
        self._tracker.track("health_derived_deleted")
        return self.health_profile

    def save_episode_context(
        self, episode_id: str, tags: Iterable[str], note: str = ""
    ) -> StressEpisode | None:
        episode = health_engine.with_episode_context(
            self.health_profile, episode_id, [t for t in tags if t], note
        )
        if episode is None:
            return None
        self._persistence.save_health_profile(self.health_profile)
        if episode.has_context:
            tag_line = ", ".join(episode.user_tags) if episode.user_tags else "No tags"
            self.append_event(
                "Stress context captured", f"Episode labeled with {tag_line}.", "reflection"
            )
        self.show_feedback("saved", "Stress context saved and applied to attribution.")
        self._tracker.track("stress_context_saved")
        return episode

    def save_episode_feedback(self, episode_id: str, feedback: str) -> StressEpisode | None:
        if feedback not in ATTRIBUTION_FEEDBACK:
            return None
        episode = health_engine.with_episode_feedback(self.health_profile, episode_id, feedback)
        if episode is None:
            return None
        self._persistence.save_health_profile(self.health_profile)
        label = "accurate" if feedback == "accurate" else "not accurate"
        self.append_event(
            "Episode attribution reviewed",
            f"Marked {label} for episode attribution.",
            "reflection",
        )
        self.show_feedback("saved", "Episode feedback captured.")
        self._tracker.track("stress_episode_feedback_saved", {"feedback": feedback})
        return episode

    def latest_episode_needing_context(self) -> StressEpisode | None:
        """Newest finished episode from the last 8 hours with no user context."""
        now = self.now()
        return next(
            (
                e
                for e in self.health_profile.sorted_episodes
                if not e.has_context and e.end <= now and now - e.end <= EPISODE_CONTEXT_WINDOW
            ),
            None,
        )

    # ---------------------------------------------------------------
    # Regulate sessions
    # ---------------------------------------------------------------

    def begin_session(self, preset: str, source: str = "") -> RegulateSession | None:
        """Start a session. None if the preset is unknown or a session is active."""
        if preset not in PRESET_IDS:
            return None
        if self.active_session is not None and self.active_session.is_active:
            logger.warning(
                "Rejected start of %s: session %s is still %s",
                preset,
                self.active_session.id,
                self.active_session.state,
            )
            return None

        definition = self.preset_definition(preset)
        duration = definition.duration_seconds if definition is not None else None
        session = session_machine.begin(preset, source, self.now(), duration)
        self.active_session = session
        self._persistence.save_active_session(session)
        self.append_event(
            f"{PRESET_TITLES[preset]} started",
            f"Timer set for {session.planned_duration_seconds // 60} min.",
            "session",
        )
        logger.info("Session %s started (%s, %ds)", session.id, preset, session.planned_duration_seconds)
        self._tracker.track("session_started", {"source": source, "preset": preset})
        return session

    def elapsed_seconds(self) -> int:
        if self.active_session is None:
            return 0
        return session_machine.elapsed_seconds(self.active_session, self.now())

    def remaining_seconds(self) -> int:
        if self.active_session is None:
            return 0
        return session_machine.remaining_seconds(self.active_session, self.now())

    def complete_session_early(self) -> RegulateSession | None:
        if self.active_session is None:
            return None
        updated = session_machine.complete_early(self.active_session, self.now())
        if updated is None:
            return None
        self.active_session = updated
        self._persistence.save_active_session(updated)
        self.append_event(
            f"{PRESET_TITLES[updated.preset]} finished",
            "Session completed. Awaiting post-session check-in.",
            "session",
        )
        self.show_feedback("updated", "Session finished. Capture outcome now.")
        return updated

    def _archive_session(self, session: RegulateSession) -> None:
        self.active_session = None
        self.session_history.insert(0, session)
        del self.session_history[MAX_SESSION_HISTORY:]
        self._persistence.save_active_session(None)
        self._persistence.save_session_history(self.session_history)

    def cancel_session(self, reason: str = "user_cancelled") -> RegulateSession | None:
        if self.active_session is None:
            return None
        cancelled = session_machine.cancel(self.active_session, self.now())
        if cancelled is None:
            return None
        self._archive_session(cancelled)
        self.append_event(
            f"{PRESET_TITLES[cancelled.preset]} cancelled",
            "Session cancelled before impact check-in.",
            "session",
            SESSION_CANCEL_DELTA,
        )
        logger.info("Session %s cancelled (%s)", cancelled.id, reason)
        self.show_feedback("updated", "Session cancelled.")
        self._tracker.track("session_cancelled", {"reason": reason, "preset": cancelled.preset})
        return cancelled

    def record_outcome(
        self,
        direction: str,
        intensity: int,
        feel_rating: int = 3,
        helpfulness: str = "some",
    ) -> RegulateSession | None:
        """Capture the post-session check-in and apply its effect."""
        if self.active_session is None:
            return None
        if direction not in DIRECTIONS or helpfulness not in HELPFULNESS_VALUES:
            return None

        preset = self.active_session.preset
        completed = session_machine.record_outcome(
            self.active_session,
            direction=direction,
            intensity=intensity,
            feel_rating=feel_rating,
            helpfulness=helpfulness,
            scenario=self.scenario,
            quality=engine.measurement_quality(preset, self.health_profile.quality.score),
            now=self.now(),
        )
        if completed is None:
            return None

        outcome = completed.outcome
        effect = outcome.effect_metrics
        self._archive_session(completed)
        self.apply_metric_delta(session_outcome_delta(direction, outcome.intensity))

        title = PRESET_TITLES[preset]
        bpm = effect.heart_rate_downshift_bpm
        heart_line = f"HR downshift -{bpm} bpm" if bpm >= 0 else f"HR drift +{abs(bpm)} bpm"
        self.append_event(
            f"{title} outcome saved",
            f"{heart_line}, recovery {effect.recovery_slope.title()}, rating {outcome.feel_rating}/5.",
            "session",
        )
        self.save_insight(
            f"{title}: {DIRECTION_TITLES[direction]} {outcome.intensity}/5",
            f"Context {self.profile.title}. {heart_line}. HRV shift +{effect.hrv_shift_ms} ms.",
        )
        self.bump_day(1)
        logger.info("Session %s completed: %s %d/5", completed.id, direction, outcome.intensity)
        self._tracker.track(
            "session_outcome_recorded",
            {
                "intensity": outcome.intensity,
                "preset": preset,
                "helpfulness": helpfulness,
                "feeling": outcome.feel_rating,
            },
        )
        self.show_feedback("saved", "Session impact applied across Today and Data.")
        self._maybe_present_paywall()
        return completed

    # ---------------------------------------------------------------
    # Experiments
    # ---------------------------------------------------------------

    def start_experiment(self, experiment_id: str) -> Experiment | None:
        experiment = experiment_machine.start(self.experiments, experiment_id, self.now())
        if experiment is None:
            return None
        self._persistence.save_experiments(self.experiments)
        self.append_event(
            f"{experiment.title} started",
            f"Day 1 of {experiment.duration_days} is ready.",
            "experiment",
        )
        logger.info("Experiment %s started", experiment.id)
        self.show_feedback("applied", "Experiment started.")
        self._tracker.track("experiment_started", {"id": experiment.id})
        return experiment

    def log_experiment_day(self, experiment_id: str) -> Experiment | None:
        experiment = experiment_machine.log_day(self.experiments, experiment_id, self.now())
        if experiment is None:
            return None
        self.bump_day(1)
        self.apply_metric_delta(experiment_check_in_delta(experiment.focus))
        self._persistence.save_experiments(self.experiments)
        adherence = self.adherence(experiment)
        self.append_event(
            f"{experiment.title} day {experiment.check_in_days_completed} logged",
            f"Adherence {adherence}%.",
            "experiment",
        )
        if adherence >= 70:
            self.save_insight(
                f"{experiment.title}: adherence {adherence}%",
                "Consistent logging is increasing your confidence coverage.",
            )
        self.show_feedback("updated", "Experiment day logged.")
        self._tracker.track(
            "experiment_day_logged",
            {"id": experiment.id, "days": experiment.check_in_days_completed},
        )
        return experiment

    def complete_experiment(
        self, experiment_id: str, perceived_change: int, summary: str = ""
    ) -> Experiment | None:
        completed = experiment_machine.complete(
            self.experiments,
            experiment_id,
            int(perceived_change),
            summary,
            self.profile.title,
            self.now(),
        )
        if completed is None:
            return None
        experiment, adherence = completed
        self.apply_metric_delta(
            experiment_completion_delta(experiment.focus, experiment.result.perceived_change)
        )
        self._persistence.save_experiments(self.experiments)
        self.append_event(
            f"{experiment.title} completed",
            f"Result captured with adherence {adherence}%.",
            "experiment",
        )
        self.save_insight(f"{experiment.title} result", experiment.result.summary)
        logger.info("Experiment %s completed at %d%% adherence", experiment.id, adherence)
        self.show_feedback("saved", "Experiment result saved.")
        self._tracker.track("experiment_completed", {"id": experiment.id})
        return experiment

    def experiment_effect_estimate(self, experiment: Experiment) -> str:
        return experiment_machine.effect_estimate(experiment, self.adherence(experiment))

    # ---------------------------------------------------------------
    # Paywall and KPI review
    # ---------------------------------------------------------------

    def _maybe_present_paywall(self) -> None:
        if self.latest_completed_session is None or self._persistence.paywall_seen:
            return
        if self.should_present_paywall:
            return
        self.should_present_paywall = True
        self._tracker.track("paywall_presented", {"action": "post_activation_offer"})

    def dismiss_paywall(self, accepted: bool = False) -> None:
        self.should_present_paywall = False
        self._persistence.set_paywall_seen(True)
        self._tracker.track("paywall_dismissed", {"action": "accepted" if accepted else "dismissed"})

    def mark_kpi_reviewed(self) -> datetime:
        now = self.now()
        self.kpi_last_reviewed_at = now
        self._persistence.set_kpi_reviewed_at(now)
        self._tracker.track("kpi_reviewed")
        return now

    def kpi_scorecard(self) -> KPIScorecard:
        t = self._tracker
        opens = t.count("app_opened")
        starts = t.count("session_started")
        return KPIScorecard(
            activation_rate=_ratio(t.count("onboarding_completed"), opens),
            d1_retention_rate=self._retention_rate(1),
            d7_retention_rate=self._retention_rate(7),
            session_start_rate=_ratio(starts, opens),
            session_completion_rate=_ratio(t.count("session_outcome_recorded"), starts),
            generated_at=self.now(),
        )

    def _retention_rate(self, day_offset: int) -> float:
        """1.0 if the app was opened during day N after the first open, else 0.0."""
        opens = self._tracker.of("app_opened")
        if not opens:
            return 0.0
        day_start = opens[0].timestamp + timedelta(days=day_offset)
        day_end = day_start + timedelta(days=1)
        return 1.0 if any(day_start <= o.timestamp < day_end for o in opens) else 0.0

    # ---------------------------------------------------------------
    # Guided path
    # ---------------------------------------------------------------

    def start_guided_path(self) -> None:
        self.guided_step = GUIDED_STEPS[0]
        self._persistence.save_guided_step(self.guided_step)
        self.show_feedback("applied", "Guided tour started: Today -> Regulate -> Data -> QA Tools.")
        self._tracker.track("guided_tour_started")

    def advance_guided_path(self) -> str | None:
        """Move to the next step; advancing past the last step ends the tour."""
        step = self.guided_step
        if step is None:
            return None
        if step == GUIDED_STEPS[-1]:
            self.complete_guided_path()
            return None
        self.guided_step = GUIDED_STEPS[GUIDED_STEPS.index(step) + 1]
        self._persistence.save_guided_step(self.guided_step)
        self.show_feedback("updated", _GUIDED_ADVANCE_BANNERS[step])
        self._tracker.track("guided_tour_advanced", {"step": GUIDED_STEPS.index(step) + 2})
        return self.guided_step

    def complete_guided_path(self) -> None:
        self.guided_step = None
        self._persistence.save_guided_step(None)
        self.show_feedback("saved", "Guided tour completed.")
        self._tracker.track("guided_tour_completed")

    @property
    def guided_status_line(self) -> str | None:
        if self.guided_step is None:
            return None
        index = GUIDED_STEPS.index(self.guided_step) + 1
        return f"Guided tour {index}/{len(GUIDED_STEPS)}: {self.guided_step.title()}"

    # ---------------------------------------------------------------
    # Screens
    # ---------------------------------------------------------------

    def _resolve_screen(self, screen: str) -> ScreenState:
        has_content = {
            "today": bool(self.primary_drivers()),
            "regulate": bool(self.presets),
            "data": bool(self.experiments),
        }[screen]
        return screens.resolve(screen, self.data_issue, has_content)

    def _refresh_screens(self) -> None:
        for screen in screens.SCREEN_IDS:
            self._screen_states[screen] = self._resolve_screen(screen)

    def screen_state(self, screen: str) -> ScreenState:
        if not self.loaded:
            return screens.LOADING
        return self._screen_states.get(screen) or self._resolve_screen(screen)

    def retry_screen(self, screen: str) -> ScreenState:
        """Repair when a data issue is set, otherwise re-resolve the screen."""
        if self.data_issue is not None:
            self.repair_data()
        else:
            self._screen_states[screen] = self._resolve_screen(screen)
        return self.screen_state(screen)

    # ---------------------------------------------------------------
    # Recommendation views
    # ---------------------------------------------------------------

    def recommendation_context(self) -> engine.RecommendationContext:
        counts = engine.count_signals(self.events)
        return engine.RecommendationContext(
            scenario=self.scenario,
            metrics=self.metrics,
            base_metrics=self.profile.base_metrics,
            confidence=self.confidence_score(),
            stress_signals=counts.stress,
            recovery_signals=counts.recovery,
            caffeine_signals=counts.caffeine,
        )

    def primary_recommendation(self) -> Recommendation:
        profile = self.profile
        return engine.primary_recommendation(
            self.recommendation_context(), profile.presets, profile.fallback_recommendation
        )

    def ranked_presets(self) -> list[RegulatePreset]:
        return engine.ranked_presets(self.presets, self.scenario, self.metrics, self.session_history)

    def ranked_drivers(self) -> list[DriverImpact]:
        return engine.rank_drivers(self.profile.drivers, self.recommendation_context())

    def primary_drivers(self) -> list[DriverImpact]:
        return self.ranked_drivers()[:3]

    def secondary_drivers(self) -> list[DriverImpact]:
        return self.ranked_drivers()[3:6]

    def projected_load_delta(self, preset: str) -> int:
        return engine.projected_load_delta(preset, self.recommendation_context())

    def projected_load(self, preset: str) -> int:
        return engine.projected_load(preset, self.recommendation_context())

    def expected_effect_confidence(self, preset: str) -> int:
        return engine.expected_effect_confidence(
            preset,
            self.scenario,
            self.metrics,
            self.session_history,
            self.health_profile.quality.score,
        )

    def what_if_line(self) -> str:
        preset = self.primary_recommendation().preset
        return engine.what_if_line(PRESET_TITLES[preset], preset, self.recommendation_context())

    def cognitive_prompt(self) -> str:
        return engine.COGNITIVE_PROMPTS[self.primary_recommendation().preset]

    def episode_prompt(self, episode: StressEpisode) -> str:
        return engine.episode_cognitive_prompt(episode.likely_driver, episode.recommended_preset)

    def measurement_plan_line(self) -> str:
        if self.health_profile.quality.score >= 72:
            return "Measurement plan: track HR downshift + recovery slope and capture a 1-tap reflection."
        return "Measurement plan: estimate physiological shift from nearest samples, then capture 1-tap reflection."

    # ---------------------------------------------------------------
    # Confidence
    # ---------------------------------------------------------------

    def coverage_score(self) -> float:
        event_coverage = min(len(self.events) / 18, 1.0)
        check_in_coverage = min(sum(1 for e in self.events if e.kind == "check_in") / 6, 1.0)
        session_coverage = min(len(self.completed_sessions) / 3, 1.0)
        experiment_coverage = min(sum(e.check_in_days_completed for e in self.experiments) / 7, 1.0)
        return clamp(
            event_coverage * 0.35
            + check_in_coverage * 0.25
            + session_coverage * 0.25
            + experiment_coverage * 0.15,
            0.12,
            1.0,
        )

    def coverage_percent(self) -> int:
        return round_half_away(self.coverage_score() * 100)

    def _completed_loop_today(self) -> bool:
        latest = self.latest_completed_session
        return latest is not None and latest.started_at.date() == self.now().date()

    def confidence_score(self) -> float:
        coverage_factor = (self.coverage_score() - 0.5) * 0.22
        loop_factor = 0.05 if self._completed_loop_today() else 0.0
        adherence_factor = self.active_adherence / 320
        cancelled = sum(1 for s in self.session_history if s.state == "cancelled")
        penalty = min(cancelled * 0.012, 0.09)
        return clamp(
            self.profile.confidence_base + coverage_factor + loop_factor + adherence_factor - penalty,
            0.42,
            0.98,
        )

    def confidence_percent(self) -> int:
        return round_half_away(self.confidence_score() * 100)

    def confidence_label(self) -> str:
        percent = self.confidence_percent()
        if percent >= 82:
            return "Strong"
        if percent >= 62:
            return "Moderate"
        return "Emerging"

    def confidence_status_line(self) -> str:
        return (
            f"Confidence {self.confidence_label()} {self.confidence_percent()}% "
            f"• coverage {self.coverage_percent()}%"
        )

    # ---------------------------------------------------------------
    # Summaries
    # ---------------------------------------------------------------

    def delta_since_check_in(self) -> CheckInDeltaSummary | None:
        """Metric shift since the newest check-in that carries a snapshot."""
        index, baseline = next(
            (
                (i, e)
                for i, e in enumerate(self.events)
                if e.kind == "check_in" and e.metric_snapshot is not None
            ),
            (None, None),
        )
        if baseline is None:
            return None
        snapshot = baseline.metric_snapshot
        delta = MetricDelta(
            load=self.metrics.load - snapshot.load,
            readiness=self.metrics.readiness - snapshot.readiness,
            consistency=self.metrics.consistency - snapshot.consistency,
        )
        return CheckInDeltaSummary(
            baseline_title=baseline.title.lower(),
            baseline_timestamp=baseline.timestamp,
            load_delta=delta.load,
            readiness_delta=delta.readiness,
            consistency_delta=delta.consistency,
            explanation=self._delta_explanation(delta, self.events[:index]),
        )

    @staticmethod
    def _delta_explanation(delta: MetricDelta, since: list[EventRecord]) -> str:
        fragments: list[str] = []
        if delta.load < 0:
            fragments.append(f"Load is down {abs(delta.load)} points")
        elif delta.load > 0:
            fragments.append(f"Load is up {delta.load} points")
        if delta.readiness > 0:
            fragments.append(f"readiness is up {delta.readiness}")
        elif delta.readiness < 0:
            fragments.append(f"readiness is down {abs(delta.readiness)}")
        if delta.consistency != 0:
            fragments.append(f"consistency shifted {signed(delta.consistency)}")

        outcomes = sum(1 for e in since if "outcome saved" in e.title.lower())
        experiment_logs = sum(1 for e in since if e.kind == "experiment")
        stress = sum(1 for e in since if "stress" in e.text or "cancelled" in e.text)
        if outcomes:
            fragments.append(f"driven by {_plural(outcomes, 'completed regulate session')}")
        if experiment_logs:
            fragments.append(f"reinforced by {_plural(experiment_logs, 'experiment log')}")
        if stress:
            fragments.append(f"with {_plural(stress, 'stress indicator')} still active")

        if not fragments:
            return (
                "No major shift yet since the last check-in. Add one regulate session "
                "or experiment log to create measurable change."
            )
        headline = ", ".join(fragments[:2])
        if len(fragments) <= 2:
            return f"{headline}."
        return f"{headline}. {', '.join(fragments[2:])}."

    def insight_headline(self) -> str:
        summary = self.delta_since_check_in()
        if summary is None:
            return self.profile.insight_line
        return (
            f"Since {summary.baseline_title}, load {signed(summary.load_delta)}, "
            f"readiness {signed(summary.readiness_delta)}"
        )

    def insight_detail(self) -> str:
        summary = self.delta_since_check_in()
        return summary.explanation if summary is not None else self.profile.narrative

    def _week_start(self) -> datetime:
        return self.now() - WEEK_WINDOW

    def what_is_working(self) -> WhatIsWorkingSummary:
        start = self._week_start()
        recent = [s for s in self.completed_sessions if (s.completed_at or s.started_at) >= start]
        fallback = self.primary_recommendation()

        top_protocol: str | None = None
        ranked: list[tuple[float, int, str]] = []
        for preset in PRESET_IDS:
            sessions = [s for s in recent if s.preset == preset]
            reward = engine.mean_reward([s.outcome for s in sessions if s.outcome is not None])
            if reward is not None:
                ranked.append((reward, len(sessions), preset))
        if ranked:
            best = max(ranked, key=lambda r: (r[0], r[1]))[2]
            definition = self.preset_definition(best)
            if definition is not None:
                top_protocol = f"{definition.title} ({definition.duration_label})"
        if top_protocol is None:
            definition = self.preset_definition(fallback.preset)
            duration = definition.duration_label if definition is not None else f"{fallback.time_minutes} min"
            top_protocol = f"{PRESET_TITLES[fallback.preset]} ({duration})"

        weekly = [e for e in self.health_profile.sorted_episodes if e.end >= start]
        triggers: dict[str, int] = {}
        for episode in weekly:
            for tag in episode.user_tags:
                if tag:
                    triggers[tag] = triggers.get(tag, 0) + 1
        if not triggers:
            for episode in weekly:
                label = f"{EPISODE_DRIVER_TITLES[episode.likely_driver]} load"
                triggers[label] = triggers.get(label, 0) + 1
        if triggers:
            top_trigger = max(triggers.items(), key=lambda item: item[1])[0]
        else:
            top_trigger = "No dominant trigger pattern yet"

        return WhatIsWorkingSummary(
            top_protocol=top_protocol,
            top_trigger=_TRIGGER_LABELS.get(top_trigger.lower(), top_trigger),
            best_recovery_window=self._best_recovery_window(),
        )

    def _best_recovery_window(self) -> str:
        segments = sorted(
            (s for s in self.health_profile.timeline_segments if s.state == "recovery"),
            key=lambda s: s.start,
        )
        if not segments:
            return "No clear recovery window yet"
        runs: list[list[datetime]] = []
        for segment in segments:
            if runs and abs((segment.start - runs[-1][1]).total_seconds()) <= 1:
                runs[-1][1] = segment.end
            else:
                runs.append([segment.start, segment.end])
        start, end = max(runs, key=lambda run: run[1] - run[0])
        return f"{start:%H:%M}-{end:%H:%M}"

    def weekly_summary(self) -> WeeklySummary:
        start = self._week_start()
        completed = [s for s in self.completed_sessions if (s.completed_at or s.started_at) >= start]
        improved = [s for s in completed if s.outcome is not None and s.outcome.direction == "better"]
        cancelled = [
            s
            for s in self.session_history
            if s.state == "cancelled" and (s.cancelled_at or s.started_at) >= start
        ]
        adherence = self.active_adherence
        base = self.profile.base_metrics

        wins: list[str] = []
        if improved:
            wins.append(f"{_plural(len(improved), 'regulate outcome')} improved after completion.")
        if adherence >= 65:
            wins.append(f"Experiment adherence reached {adherence}%, improving data reliability.")
        if self.metrics.readiness >= base.readiness:
            wins.append(f"Readiness is at or above baseline ({self.metrics.readiness}).")
        if not wins:
            wins = [
                "You are still building baseline coverage. One completed regulate session "
                "can create your first measurable win."
            ]

        risks: list[str] = []
        if self.metrics.load >= base.load + 8:
            risks.append(f"Load is running {self.metrics.load - base.load} points above baseline.")
        if cancelled:
            risks.append(f"{_plural(len(cancelled), 'cancelled session')} reduced session quality.")
        if self.active_experiment is not None and 0 < adherence < 50:
            risks.append(f"Experiment adherence is {adherence}% and may weaken result confidence.")
        counts = engine.count_signals(self.events)
        if counts.stress > counts.recovery + 1:
            risks.append("Recent stress markers outweigh recovery actions.")
        if not risks:
            risks = ["No major risk spikes detected; maintain routine consistency to hold trend stability."]

        return WeeklySummary(
            wins=wins[:2],
            risks=risks[:2],
            next_best_action=self.primary_recommendation().summary_line,
        )

    # ---------------------------------------------------------------
    # Session views
    # ---------------------------------------------------------------

    def latest_session_effect_line(self) -> str | None:
        latest = self.latest_completed_session
        if latest is None or latest.outcome is None:
            return None
        effect = latest.outcome.effect_metrics
        bpm = effect.heart_rate_downshift_bpm
        heart = f"-{bpm} bpm" if bpm >= 0 else f"+{abs(bpm)} bpm"
        return f"HR {heart} • recovery {effect.recovery_slope.title()} • {effect.quality}"

    def resume_label(self) -> str | None:
        session = self.active_session
        if session is not None:
            if session.state == "in_progress":
                return "Resume active session"
            if session.state == "awaiting_check_in":
                return "Resume post-session check-in"
        experiment = self.active_experiment
        if experiment is not None:
            day = min(experiment.check_in_days_completed + 1, experiment.duration_days)
            return f"Resume day {day} experiment"
        return None

    def session_view(self) -> dict[str, Any] | None:
        session = self.active_session
        if session is None:
            return None
        data = session.to_dict()
        data["elapsed_seconds"] = self.elapsed_seconds()
        data["remaining_seconds"] = self.remaining_seconds()
        return data

    def experiment_view(self, experiment: Experiment) -> dict[str, Any]:
        data = experiment.to_dict()
        data["adherence_percent"] = self.adherence(experiment)
        data["is_overdue"] = experiment_machine.is_overdue(experiment, self.now())
        data["effect_estimate"] = self.experiment_effect_estimate(experiment)
        data["correlation_insight"] = experiment_machine.correlation_insight(experiment)
        return data

    # ---------------------------------------------------------------
    # Dashboard
    # ---------------------------------------------------------------

    def dashboard(self) -> dict[str, Any]:
        """Everything the Today screen reads, in one JSON-ready dict."""
        profile = self.profile
        recommendation = self.primary_recommendation()
        drivers = self.ranked_drivers()
        delta = self.delta_since_check_in()
        return {
            "scenario": {"id": profile.id, "title": profile.title, "subtitle": profile.subtitle},
            "day": self.day,
            "metrics": self.metrics.to_dict(),
            "confidence": {
                "score": round(self.confidence_score(), 4),
                "percent": self.confidence_percent(),
                "label": self.confidence_label(),
                "coverage_percent": self.coverage_percent(),
                "status_line": self.confidence_status_line(),
            },
            "recommendation": {
                "preset": recommendation.preset,
                "what": recommendation.what,
                "why": recommendation.why,
                "expected_effect": recommendation.expected_effect,
                "time_minutes": recommendation.time_minutes,
                "what_if": self.what_if_line(),
                "cognitive_prompt": self.cognitive_prompt(),
                "measurement_plan": self.measurement_plan_line(),
            },
            "ranked_presets": [
                {
                    "id": p.id,
                    "title": p.title,
                    "duration": p.duration_label,
                    "expected_effect_confidence": self.expected_effect_confidence(p.id),
                    "projected_load": self.projected_load(p.id),
                }
                for p in self.ranked_presets()
            ],
            "drivers": {
                "primary": [asdict(d) for d in drivers[:3]],
                "secondary": [asdict(d) for d in drivers[3:6]],
            },
            "insight": {"headline": self.insight_headline(), "detail": self.insight_detail()},
            "delta_since_check_in": delta.to_dict() if delta is not None else None,
            "what_is_working": self.what_is_working().to_dict(),
            "weekly_summary": self.weekly_summary().to_dict(),
            "active_session": self.session_view(),
            "latest_session_effect": self.latest_session_effect_line(),
            "resume_label": self.resume_label(),
            "guided_path": {"step": self.guided_step, "status_line": self.guided_status_line},
            "banner": self.banner.to_dict() if self.banner is not None else None,
            "data_issue": self.data_issue,
            "screens": {s: self.screen_state(s).to_dict() for s in screens.SCREEN_IDS},
            "paywall_pending": self.should_present_paywall,
            "last_updated_at": self.last_updated_at.isoformat(),
        }
