"""Coaching domain records: sessions, outcomes, experiments, events, insights.

Every record round-trips through ``to_dict`` / ``from_dict``. ``from_dict``
raises KeyError, TypeError or ValueError on a record it cannot make sense
of; the persistence adapter turns those into a fallback plus a data issue.
Older session records without an explicit ``state`` are migrated here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from mindsense.domains.coaching.domain_logic.metrics import SIGNAL_FOCI, MetricSnapshot

# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

ScenarioID = Literal["high_stress_day", "balanced_day", "recovery_week"]
PresetID = Literal["calm_now", "focus_prep", "sleep_downshift"]
Direction = Literal["worse", "same", "better"]
Helpfulness = Literal["yes", "some", "no"]
RecoverySlope = Literal["slow", "moderate", "strong"]
MeasurementQuality = Literal["estimated", "live"]
SessionState = Literal["in_progress", "awaiting_check_in", "completed", "cancelled"]
ExperimentStatus = Literal["planned", "active", "completed"]
EventKind = Literal["scenario", "check_in", "reflection", "session", "experiment", "system"]
GuidedStep = Literal["today", "regulate", "data", "settings"]

SCENARIO_IDS: tuple[str, ...] = ("high_stress_day", "balanced_day", "recovery_week")
PRESET_IDS: tuple[str, ...] = ("calm_now", "focus_prep", "sleep_downshift")
DIRECTIONS: tuple[str, ...] = ("worse", "same", "better")
HELPFULNESS_VALUES: tuple[str, ...] = ("yes", "some", "no")
RECOVERY_SLOPES: tuple[str, ...] = ("slow", "moderate", "strong")
MEASUREMENT_QUALITIES: tuple[str, ...] = ("estimated", "live")
SESSION_STATES: tuple[str, ...] = ("in_progress", "awaiting_check_in", "completed", "cancelled")
EXPERIMENT_STATUSES: tuple[str, ...] = ("planned", "active", "completed")
EVENT_KINDS: tuple[str, ...] = ("scenario", "check_in", "reflection", "session", "experiment", "system")
GUIDED_STEPS: tuple[str, ...] = ("today", "regulate", "data", "settings")

PRESET_TITLES: dict[str, str] = {
    "calm_now": "Calm now",
    "focus_prep": "Focus prep",
    "sleep_downshift": "Sleep downshift",
}

DIRECTION_TITLES: dict[str, str] = {"worse": "Worse", "same": "Same", "better": "Better"}

# Helpfulness assumed for outcomes saved before helpfulness was captured
_LEGACY_HELPFULNESS: dict[str, str] = {"better": "yes", "same": "some", "worse": "no"}

DEFAULT_PLANNED_DURATION_SECONDS = 180


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def from_iso(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Expected ISO timestamp string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def required_iso(value: Any) -> datetime:
    """Like :func:`from_iso` but a missing timestamp is an error."""
    if value is None:
        raise ValueError("Missing required timestamp")
    return from_iso(value)


def choice(value: Any, allowed: tuple[str, ...], name: str) -> str:
    """Validate that ``value`` is one of ``allowed``."""
    if value not in allowed:
        raise ValueError(f"Unknown {name}: {value!r}")
    return value


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EffectMetrics:
    """Simulated physiological effect of one session."""

    heart_rate_downshift_bpm: int
    hrv_shift_ms: int
    recovery_slope: RecoverySlope
    quality: MeasurementQuality

    def to_dict(self) -> dict[str, Any]:
        return {
            "heart_rate_downshift_bpm": self.heart_rate_downshift_bpm,
            "hrv_shift_ms": self.hrv_shift_ms,
            "recovery_slope": self.recovery_slope,
            "quality": self.quality,
        }

    @classmethod
    def from_dict(cls, data: dict) -> EffectMetrics:
        return cls(
            heart_rate_downshift_bpm=int(data["heart_rate_downshift_bpm"]),
            hrv_shift_ms=int(data["hrv_shift_ms"]),
            recovery_slope=choice(data["recovery_slope"], RECOVERY_SLOPES, "recovery slope"),
            quality=choice(data["quality"], MEASUREMENT_QUALITIES, "measurement quality"),
        )


NEUTRAL_EFFECT = EffectMetrics(
    heart_rate_downshift_bpm=0, hrv_shift_ms=0, recovery_slope="moderate", quality="estimated"
)


@dataclass(frozen=True)
class SessionOutcome:
    """Post-session check-in. Exists iff the session is completed."""

    direction: Direction
    intensity: int               # 1-5
    captured_at: datetime
    feel_rating: int = 3         # 1-5
    helpfulness: Helpfulness = "some"
    effect_metrics: EffectMetrics = NEUTRAL_EFFECT

    def to_dict(self) -> dict[str, Any]:
        return {
            "direction": self.direction,
            "intensity": self.intensity,
            "captured_at": to_iso(self.captured_at),
            "feel_rating": self.feel_rating,
            "helpfulness": self.helpfulness,
            "effect_metrics": self.effect_metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> SessionOutcome:
        """Decode an outcome, filling fields that older records lack."""
        direction = choice(data["direction"], DIRECTIONS, "direction")
        helpfulness = data.get("helpfulness") or _LEGACY_HELPFULNESS[direction]
        effect_data = data.get("effect_metrics")
        return cls(
            direction=direction,
            intensity=int(data["intensity"]),
            captured_at=required_iso(data["captured_at"]),
            feel_rating=int(data.get("feel_rating", 3)),
            helpfulness=choice(helpfulness, HELPFULNESS_VALUES, "helpfulness"),
            effect_metrics=(
                EffectMetrics.from_dict(effect_data) if effect_data is not None else NEUTRAL_EFFECT
            ),
        )


@dataclass
class RegulateSession:
    """One regulation-exercise attempt and its lifecycle state."""

    id: str
    preset: PresetID
    started_at: datetime
    planned_duration_seconds: int = DEFAULT_PLANNED_DURATION_SECONDS
    routine_completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    state: SessionState = "in_progress"
    completed_at: datetime | None = None
    source: str = ""
    outcome: SessionOutcome | None = None

    @property
    def is_active(self) -> bool:
        return self.state in ("in_progress", "awaiting_check_in")

    @property
    def is_completed(self) -> bool:
        return (
            self.state == "completed"
            and self.completed_at is not None
            and self.outcome is not None
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "preset": self.preset,
            "started_at": to_iso(self.started_at),
            "planned_duration_seconds": self.planned_duration_seconds,
            "routine_completed_at": to_iso(self.routine_completed_at),
            "cancelled_at": to_iso(self.cancelled_at),
            "state": self.state,
            "completed_at": to_iso(self.completed_at),
            "source": self.source,
            "outcome": self.outcome.to_dict() if self.outcome is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RegulateSession:
        """Decode a session, migrating records written before ``state`` existed.

        A missing state is inferred from the timestamps that are present:
        cancelled, then completed (has outcome), then awaiting check-in.
        """
        outcome_data = data.get("outcome")
        outcome = SessionOutcome.from_dict(outcome_data) if outcome_data is not None else None
        cancelled_at = from_iso(data.get("cancelled_at"))
        routine_completed_at = from_iso(data.get("routine_completed_at"))

        state = data.get("state")
        if state is None:
            if cancelled_at is not None:
                state = "cancelled"
            elif outcome is not None:
                state = "completed"
            elif routine_completed_at is not None:
                state = "awaiting_check_in"
            else:
                state = "in_progress"

        return cls(
            id=str(data["id"]),
            preset=choice(data["preset"], PRESET_IDS, "preset"),
            started_at=required_iso(data["started_at"]),
            planned_duration_seconds=int(
                data.get("planned_duration_seconds") or DEFAULT_PLANNED_DURATION_SECONDS
            ),
            routine_completed_at=routine_completed_at,
            cancelled_at=cancelled_at,
            state=choice(state, SESSION_STATES, "session state"),
            completed_at=from_iso(data.get("completed_at")),
            source=data.get("source", ""),
            outcome=outcome,
        )


# ---------------------------------------------------------------------------
# Experiments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExperimentResult:
    perceived_change: int        # -5..5
    summary: str
    completed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "perceived_change": self.perceived_change,
            "summary": self.summary,
            "completed_at": to_iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ExperimentResult:
        return cls(
            perceived_change=int(data["perceived_change"]),
            summary=str(data["summary"]),
            completed_at=required_iso(data["completed_at"]),
        )


@dataclass
class Experiment:
    """A multi-day behavior trial with adherence tracking."""

    id: str
    title: str
    duration_days: int
    hypothesis: str
    focus: str                   # load | readiness | consistency
    next_step: str = ""
    estimate: str = ""
    rationale: str = ""
    status: ExperimentStatus = "planned"
    started_at: datetime | None = None
    target_end_date: datetime | None = None
    check_in_days_completed: int = 0
    check_in_log: list[datetime] = field(default_factory=list)
    result: ExperimentResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "duration_days": self.duration_days,
            "hypothesis": self.hypothesis,
            "focus": self.focus,
            "next_step": self.next_step,
            "estimate": self.estimate,
            "rationale": self.rationale,
            "status": self.status,
            "started_at": to_iso(self.started_at),
            "target_end_date": to_iso(self.target_end_date),
            "check_in_days_completed": self.check_in_days_completed,
            "check_in_log": [to_iso(ts) for ts in self.check_in_log],
            "result": self.result.to_dict() if self.result is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Experiment:
        result_data = data.get("result")
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            duration_days=int(data["duration_days"]),
            hypothesis=str(data.get("hypothesis", "")),
            focus=choice(data["focus"], SIGNAL_FOCI, "focus"),
            next_step=data.get("next_step", ""),
            estimate=data.get("estimate", ""),
            rationale=data.get("rationale", ""),
            status=choice(data.get("status", "planned"), EXPERIMENT_STATUSES, "experiment status"),
            started_at=from_iso(data.get("started_at")),
            target_end_date=from_iso(data.get("target_end_date")),
            check_in_days_completed=int(data.get("check_in_days_completed", 0)),
            check_in_log=[from_iso(ts) for ts in data.get("check_in_log", [])],
            result=ExperimentResult.from_dict(result_data) if result_data is not None else None,
        )


# ---------------------------------------------------------------------------
# Event history and saved insights
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EventRecord:
    """Append-only history entry; the ground truth for derived summaries."""

    id: str
    timestamp: datetime
    title: str
    detail: str
    kind: EventKind
    metric_snapshot: MetricSnapshot | None = None
    demo_day: int | None = None

    @property
    def text(self) -> str:
        """Lower-cased title and detail, for keyword matching."""
        return f"{self.title} {self.detail}".lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "title": self.title,
            "detail": self.detail,
            "kind": self.kind,
            "metric_snapshot": (
                self.metric_snapshot.to_dict() if self.metric_snapshot is not None else None
            ),
            "demo_day": self.demo_day,
        }

    @classmethod
    def from_dict(cls, data: dict) -> EventRecord:
        snapshot = data.get("metric_snapshot")
        day = data.get("demo_day")
        return cls(
            id=str(data["id"]),
            timestamp=required_iso(data["timestamp"]),
            title=str(data["title"]),
            detail=str(data["detail"]),
            kind=choice(data["kind"], EVENT_KINDS, "event kind"),
            metric_snapshot=MetricSnapshot.from_dict(snapshot) if snapshot is not None else None,
            demo_day=int(day) if day is not None else None,
        )


@dataclass(frozen=True)
class SavedInsight:
    id: str
    timestamp: datetime
    scenario: ScenarioID
    title: str
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "scenario": self.scenario,
            "title": self.title,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SavedInsight:
        return cls(
            id=str(data["id"]),
            timestamp=required_iso(data["timestamp"]),
            scenario=choice(data["scenario"], SCENARIO_IDS, "scenario"),
            title=str(data["title"]),
            detail=str(data["detail"]),
        )
