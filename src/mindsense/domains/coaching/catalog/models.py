"""Data models for scenario profiles and their preset catalogs."""

from __future__ import annotations

from dataclasses import dataclass, field

from mindsense.domains.coaching.domain_logic.metrics import MetricSnapshot


@dataclass(frozen=True)
class DriverImpact:
    """A named contextual factor with a re-rankable impact weight in [0, 1]."""

    id: str
    name: str
    detail: str
    impact: float


@dataclass(frozen=True)
class RegulatePreset:
    """A named regulation protocol as offered in one scenario."""

    id: str
    title: str
    subtitle: str
    duration_minutes: int
    expected_effect: str
    why_now: str
    protocol_steps: list[str] = field(default_factory=list)
    icon: str = ""

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def duration_label(self) -> str:
        return f"{self.duration_minutes} min"


@dataclass(frozen=True)
class Recommendation:
    """The single best next action, with its reasoning."""

    preset: str
    what: str
    why: str
    expected_effect: str
    time_minutes: int

    @property
    def summary_line(self) -> str:
        return f"{self.what} ({self.time_minutes} min)"


@dataclass(frozen=True)
class ExperimentTemplate:
    """Fixed text of an experiment seeded for a scenario."""

    title: str
    duration_days: int
    focus: str
    hypothesis: str
    next_step: str = ""
    estimate: str = ""
    rationale: str = ""


@dataclass(frozen=True)
class SeedEvent:
    title: str
    detail: str
    kind: str


@dataclass(frozen=True)
class ScenarioProfile:
    """Everything a scenario parameterizes: baselines, drivers, presets, seeds."""

    id: str
    version: str
    title: str
    subtitle: str
    insight_line: str
    narrative: str
    default_day: int
    confidence_base: float
    base_metrics: MetricSnapshot
    fallback_recommendation: Recommendation
    primary_drivers: list[DriverImpact] = field(default_factory=list)
    secondary_drivers: list[DriverImpact] = field(default_factory=list)
    presets: list[RegulatePreset] = field(default_factory=list)
    signal_narratives: dict[str, str] = field(default_factory=dict)
    experiments: list[ExperimentTemplate] = field(default_factory=list)
    seed_events: list[SeedEvent] = field(default_factory=list)

    @property
    def drivers(self) -> list[DriverImpact]:
        return [*self.primary_drivers, *self.secondary_drivers]

    def preset(self, preset_id: str) -> RegulatePreset | None:
        """Look up a preset by id in this scenario's catalog."""
        for preset in self.presets:
            if preset.id == preset_id:
                return preset
        return None
