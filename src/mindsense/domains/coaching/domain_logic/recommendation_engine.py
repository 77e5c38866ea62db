"""Rule-based recommendation, preset ranking and driver re-ranking.

Reads the live metric triple plus signal counts derived from the most
recent events. Thresholds are literal and scenario-specific; they are
not derived from the metric clamp bounds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from mindsense.domains.coaching.catalog.models import (
    DriverImpact,
    Recommendation,
    RegulatePreset,
)
from mindsense.domains.coaching.domain_logic.metrics import (
    MetricSnapshot,
    clamp,
    clamp_int,
    round_half_away,
    signed,
)
from mindsense.domains.coaching.domain_logic.models import (
    EventRecord,
    RegulateSession,
    SessionOutcome,
)

RECENT_EVENT_WINDOW = 12

_STRESS_KEYWORDS = ("stress", "deadline", "conflict", "cancelled", "caffeine")
_RECOVERY_KEYWORDS = ("exercise", "wind-down", "outcome saved", "completed")

DRIVER_IMPACT_BOUNDS = (0.05, 0.62)
INFLUENCE_THRESHOLD = 0.03

# 2h load projection base, by (scenario, preset)
PROJECTION_BASE_DELTA: dict[tuple[str, str], int] = {
    ("high_stress_day", "calm_now"): -6,
    ("high_stress_day", "focus_prep"): -4,
    ("high_stress_day", "sleep_downshift"): -3,
    ("balanced_day", "calm_now"): -4,
    ("balanced_day", "focus_prep"): -3,
    ("balanced_day", "sleep_downshift"): -2,
    ("recovery_week", "calm_now"): -3,
    ("recovery_week", "focus_prep"): -2,
    ("recovery_week", "sleep_downshift"): -2,
}

SCENARIO_AFFINITY: dict[tuple[str, str], float] = {
    ("high_stress_day", "calm_now"): 1.0,
    ("high_stress_day", "focus_prep"): 0.82,
    ("high_stress_day", "sleep_downshift"): 0.66,
    ("balanced_day", "focus_prep"): 1.0,
    ("balanced_day", "calm_now"): 0.88,
    ("balanced_day", "sleep_downshift"): 0.72,
    ("recovery_week", "sleep_downshift"): 1.0,
    ("recovery_week", "focus_prep"): 0.8,
    ("recovery_week", "calm_now"): 0.77,
}

HISTORY_REWARD_WEIGHT = 0.32

DIRECTION_SCORE = {"better": 1.0, "same": 0.42, "worse": -0.45}
HELPFULNESS_SCORE = {"yes": 0.42, "some": 0.14, "no": -0.3}

COGNITIVE_PROMPTS: dict[str, str] = {
    "calm_now": (
        "Shift from urgency to control: what is the next 2-minute action you can finish well?"
    ),
    "focus_prep": (
        "Anchor process over pressure: what single input will make this block successful?"
    ),
    "sleep_downshift": (
        "Trade stimulation for recovery: what can you reduce in the next 30 minutes?"
    ),
}


# ---------------------------------------------------------------------------
# Signal counts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SignalCounts:
    stress: int = 0
    recovery: int = 0
    caffeine: int = 0


def is_stress_signal(event: EventRecord) -> bool:
    text = event.text
    if any(keyword in text for keyword in _STRESS_KEYWORDS):
        return True
    return event.kind == "system" and "injected" in text


def is_recovery_signal(event: EventRecord) -> bool:
    text = event.text
    if any(keyword in text for keyword in _RECOVERY_KEYWORDS):
        return True
    return event.kind == "experiment" and "logged" in text


def count_signals(events: Sequence[EventRecord]) -> SignalCounts:
    """Count stress, recovery and caffeine markers in the newest events.

    ``events`` is expected newest first; only the first
    RECENT_EVENT_WINDOW entries are read.
    """
    window = list(events[:RECENT_EVENT_WINDOW])
    return SignalCounts(
        stress=sum(1 for e in window if is_stress_signal(e)),
        recovery=sum(1 for e in window if is_recovery_signal(e)),
        caffeine=sum(1 for e in window if "caffeine" in e.text),
    )


# ---------------------------------------------------------------------------
# Primary recommendation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RecommendationContext:
    """Everything the decision tree and projections read."""

    scenario: str
    metrics: MetricSnapshot
    base_metrics: MetricSnapshot
    confidence: float
    stress_signals: int = 0
    recovery_signals: int = 0
    caffeine_signals: int = 0


def _decide(context: RecommendationContext) -> tuple[str, str, str]:
    """Walk the scenario decision tree. Returns (preset, what, why)."""
    load = context.metrics.load
    readiness = context.metrics.readiness
    consistency = context.metrics.consistency

    if context.scenario == "high_stress_day":
        if load >= 78 or context.stress_signals >= 3:
            return (
                "calm_now",
                "Run Calm now before your next pressure block.",
                f"Load is elevated ({load}) and recent stress markers are stacking.",
            )
        if readiness >= 66 and load <= 72:
            return (
                "focus_prep",
                "Run Focus prep before your next high-consequence task.",
                "Readiness has recovered enough to convert this window into higher output quality.",
            )
        return (
            "sleep_downshift",
            "Protect tonight with Sleep downshift before bed.",
            f"Consistency is at {consistency}, so evening regulation prevents next-day carryover.",
        )

    if context.scenario == "recovery_week":
        if consistency < 82 or context.stress_signals >= 2:
            return (
                "sleep_downshift",
                "Prioritize Sleep downshift to protect recovery momentum tonight.",
                "Recovery scenarios lose gains fastest when consistency softens.",
            )
        if readiness >= 82 and load <= 45:
            return (
                "focus_prep",
                "Run Focus prep before one intentional performance block.",
                "Readiness is high while load is contained, creating a low-cost performance window.",
            )
        return (
            "calm_now",
            "Run Calm now between task transitions.",
            "Short regulation reps preserve low arousal and prevent rebound strain.",
        )

    # balanced_day
    if readiness - load >= 16 and consistency >= 72:
        return (
            "focus_prep",
            "Run Focus prep before your deepest work block.",
            f"Readiness is stronger than load right now ({readiness - load}), "
            "creating a good window for focused work.",
        )
    if load >= 65 or context.stress_signals > context.recovery_signals:
        return (
            "calm_now",
            "Run Calm now to keep this balanced day from drifting upward.",
            "Current load and recent stress actions are pushing the trend above baseline.",
        )
    return (
        "sleep_downshift",
        "Use Sleep downshift to lock in today's stable rhythm.",
        "Consistency compounding is your strongest lever in this scenario.",
    )


def primary_recommendation(
    context: RecommendationContext,
    presets: Sequence[RegulatePreset],
    fallback: Recommendation,
) -> Recommendation:
    """Pick the single best next action for the current state.

    Falls back to the scenario's static recommendation when the chosen
    preset is not in the catalog.
    """
    preset_id, what, why = _decide(context)
    preset = next((p for p in presets if p.id == preset_id), None)
    if preset is None:
        return fallback

    effect_line = preset.expected_effect.replace("Expected effect: ", "").strip()
    projection = projected_load_delta(preset_id, context)
    return Recommendation(
        preset=preset_id,
        what=what,
        why=why,
        expected_effect=f"{effect_line} 2h projected load shift: {signed(projection)}.",
        time_minutes=preset.duration_minutes,
    )


def projected_load_delta(preset: str, context: RecommendationContext) -> int:
    """Two-hour load shift if ``preset`` is run now, clamped to [-12, 2]."""
    base = PROJECTION_BASE_DELTA.get((context.scenario, preset), 0)
    confidence_boost = round_half_away((context.confidence - 0.65) * 10)
    stress_penalty = max(0, context.stress_signals - context.recovery_signals)
    return clamp_int(base + confidence_boost - stress_penalty, -12, 2)


def projected_load(preset: str, context: RecommendationContext) -> int:
    return clamp_int(context.metrics.load + projected_load_delta(preset, context), 8, 96)


def what_if_line(preset_title: str, preset: str, context: RecommendationContext) -> str:
    projected = projected_load(preset, context)
    delta = projected_load_delta(preset, context)
    return f"If you run {preset_title} now, projected load in 2h: {projected} ({signed(delta)})."


# ---------------------------------------------------------------------------
# Driver re-ranking
# ---------------------------------------------------------------------------

def _adjusted_impact(driver: DriverImpact, context: RecommendationContext) -> float:
    stress = context.stress_signals
    recovery = context.recovery_signals
    caffeine = context.caffeine_signals
    load_delta = (context.metrics.load - context.base_metrics.load) / 100
    readiness_delta = (context.metrics.readiness - context.base_metrics.readiness) / 100
    consistency_delta = (context.metrics.consistency - context.base_metrics.consistency) / 100

    impact = driver.impact
    if driver.id in ("sleep_fragmentation", "stable_sleep", "sleep_rebound"):
        impact += stress * 0.015 - readiness_delta * 0.18
    elif driver.id in ("deadline_density", "meeting_stack", "moderate_meeting_load"):
        impact += stress * 0.024 + load_delta * 0.22
    elif driver.id in ("late_caffeine", "caffeine_timing", "reduced_stimulus"):
        impact += caffeine * 0.04 - recovery * 0.012
    elif driver.id in ("training_response", "movement_consistency"):
        impact += recovery * 0.028 - stress * 0.01
    elif driver.id == "hydration_drag":
        impact += stress * 0.018 + load_delta * 0.16
    elif driver.id == "screen_exposure":
        impact += stress * 0.012 - consistency_delta * 0.1
    elif driver.id == "load_taper":
        impact += recovery * 0.016 - stress * 0.016
    elif driver.id == "evening_routine":
        impact += consistency_delta * 0.2 + recovery * 0.01
    else:
        impact += (stress - recovery) * 0.01
    return clamp(impact, *DRIVER_IMPACT_BOUNDS)


def rank_drivers(
    base_drivers: Iterable[DriverImpact],
    context: RecommendationContext,
) -> list[DriverImpact]:
    """Re-score drivers from recent signals and sort by impact, then name."""
    ranked: list[DriverImpact] = []
    for driver in base_drivers:
        impact = _adjusted_impact(driver, context)
        shift = impact - driver.impact
        if shift > INFLUENCE_THRESHOLD:
            influence = "rising influence"
        elif shift < -INFLUENCE_THRESHOLD:
            influence = "falling influence"
        else:
            influence = "stable influence"
        ranked.append(
            DriverImpact(
                id=driver.id,
                name=driver.name,
                detail=f"{driver.detail} • {influence}",
                impact=impact,
            )
        )
    ranked.sort(key=lambda d: (-d.impact, d.name))
    return ranked


# ---------------------------------------------------------------------------
# Preset ranking
# ---------------------------------------------------------------------------

def session_reward(outcome: SessionOutcome) -> float:
    """Scalar reward for one outcome; higher means the session helped more."""
    effect = outcome.effect_metrics
    return (
        DIRECTION_SCORE[outcome.direction]
        + effect.heart_rate_downshift_bpm / 12.0
        + effect.hrv_shift_ms / 16.0
        + (outcome.feel_rating - 3) / 3.0
        + HELPFULNESS_SCORE[outcome.helpfulness]
    )


def completed_outcomes(history: Iterable[RegulateSession], preset: str) -> list[SessionOutcome]:
    return [
        s.outcome
        for s in history
        if s.preset == preset and s.state == "completed" and s.outcome is not None
    ]


def mean_reward(outcomes: Sequence[SessionOutcome]) -> float | None:
    if not outcomes:
        return None
    return sum(session_reward(o) for o in outcomes) / len(outcomes)


def state_adjustment(preset: str, metrics: MetricSnapshot) -> float:
    if preset == "calm_now":
        return 0.2 if metrics.load > 70 else -0.06
    if preset == "focus_prep":
        return 0.2 if metrics.readiness - metrics.load > 8 else 0.0
    return 0.16 if metrics.consistency < 70 else 0.06


def preset_rank_score(
    preset: str,
    scenario: str,
    metrics: MetricSnapshot,
    history: Iterable[RegulateSession],
) -> float:
    affinity = SCENARIO_AFFINITY.get((scenario, preset), 0.0)
    reward = mean_reward(completed_outcomes(history, preset))
    history_adjustment = reward * HISTORY_REWARD_WEIGHT if reward is not None else 0.0
    return affinity + history_adjustment + state_adjustment(preset, metrics)


def ranked_presets(
    presets: Sequence[RegulatePreset],
    scenario: str,
    metrics: MetricSnapshot,
    history: Sequence[RegulateSession],
) -> list[RegulatePreset]:
    """Order the catalog by rank score; ties keep declaration order."""
    return sorted(
        presets,
        key=lambda p: preset_rank_score(p.id, scenario, metrics, history),
        reverse=True,
    )


def expected_effect_confidence(
    preset: str,
    scenario: str,
    metrics: MetricSnapshot,
    history: Sequence[RegulateSession],
    quality_score: int,
) -> int:
    """0-100 confidence that ``preset`` will deliver its stated effect."""
    outcomes = completed_outcomes(history, preset)
    baseline = 54.0 + quality_score * 0.12
    if not outcomes:
        score = baseline + preset_rank_score(preset, scenario, metrics, history) * 6
        return clamp_int(round_half_away(score), 42, 95)

    reward = mean_reward(outcomes) or 0.0
    score = baseline + reward * 18 + min(len(outcomes), 8) * 2.2
    return clamp_int(round_half_away(score), 45, 97)


def measurement_quality(preset: str, quality_score: int) -> str:
    """Only Calm now on a high-quality data stream is measured live."""
    if preset == "calm_now" and quality_score >= 78:
        return "live"
    return "estimated"


def episode_cognitive_prompt(driver: str, preset: str) -> str:
    if driver == "cognitive":
        if preset == "focus_prep":
            return (
                "Switch from outcome pressure to process control: "
                "what single input matters most in the next 10 minutes?"
            )
        if preset == "calm_now":
            return (
                "Slow the pace before you push: take one longer exhale, "
                "then choose one task to finish fully."
            )
        return (
            "Lower stimulation before recovery: what can you pause now "
            "so your system can settle earlier tonight?"
        )
    if driver == "social":
        return (
            "Reset after social load: unclench shoulders, then decide what "
            "boundary keeps the next block clean."
        )
    if driver == "environmental":
        return (
            "Reduce sensory drag: name one distraction to remove in the next "
            "2 minutes and do it now."
        )
    return (
        "Downshift body tension first: soften jaw, lengthen exhale, and let "
        "attention settle on one anchor."
    )
