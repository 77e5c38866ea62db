"""Deterministic action -> metric delta mapping.

This module is the single place that encodes how user actions move the
load / readiness / consistency triple and what physiological effect a
session is shown to have. All functions are pure: no clock, no state.
The store applies the returned deltas, which re-clamps the metrics.
"""

from __future__ import annotations

from mindsense.domains.coaching.domain_logic.metrics import (
    MetricDelta,
    clamp_int,
    trunc_div,
)
from mindsense.domains.coaching.domain_logic.models import EffectMetrics

# Base-score boosts used by session_effect_metrics
PRESET_EFFECT_BOOST: dict[str, int] = {
    "calm_now": 2,
    "focus_prep": 1,
    "sleep_downshift": 3,
}
SCENARIO_EFFECT_BOOST: dict[str, int] = {
    "high_stress_day": 2,
    "balanced_day": 1,
    "recovery_week": 1,
}

PERCEIVED_CHANGE_BOUNDS = (-5, 5)
INTENSITY_BOUNDS = (1, 5)

SESSION_CANCEL_DELTA = MetricDelta(load=1, readiness=-1, consistency=-1)
STRESS_INJECTION_DELTA = MetricDelta(load=6, readiness=-4, consistency=-2)

QUICK_LOG_DELTAS: dict[str, MetricDelta] = {
    "caffeine": MetricDelta(load=2, readiness=-1, consistency=0),
    "exercise": MetricDelta(load=-2, readiness=2, consistency=1),
    "social": MetricDelta(load=-1, readiness=1, consistency=1),
}


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def session_outcome_delta(direction: str, intensity: int) -> MetricDelta:
    """Metric shift after a session outcome is captured.

    better -> load -2i, readiness +2i, consistency +1
    same   -> load -1, readiness +1, consistency +1
    worse  -> load +2i, readiness -2i, consistency -1
    """
    if direction == "better":
        return MetricDelta(load=-2 * intensity, readiness=2 * intensity, consistency=1)
    if direction == "worse":
        return MetricDelta(load=2 * intensity, readiness=-2 * intensity, consistency=-1)
    return MetricDelta(load=-1, readiness=1, consistency=1)


def session_effect_metrics(
    direction: str,
    intensity: int,
    preset: str,
    scenario: str,
    quality: str,
) -> EffectMetrics:
    """Simulated heart-rate downshift, HRV shift and recovery slope for a session.

    ``better`` scales with base = clamp(intensity, 1, 5) + preset boost +
    scenario boost and keeps the measured ``quality``. ``same`` and ``worse``
    scale with the clamped intensity alone and report ``estimated``;
    ``worse`` inverts the sign of both shifts.
    """
    bounded = clamp_int(intensity, *INTENSITY_BOUNDS)
    base = bounded + PRESET_EFFECT_BOOST.get(preset, 0) + SCENARIO_EFFECT_BOOST.get(scenario, 0)

    if direction == "better":
        return EffectMetrics(
            heart_rate_downshift_bpm=min(14, base + 1),
            hrv_shift_ms=min(18, base + 3),
            recovery_slope="strong" if base >= 8 else "moderate",
            quality=quality,
        )
    if direction == "worse":
        return EffectMetrics(
            heart_rate_downshift_bpm=-max(2, bounded + 1),
            hrv_shift_ms=-max(1, bounded // 2),
            recovery_slope="slow",
            quality="estimated",
        )
    return EffectMetrics(
        heart_rate_downshift_bpm=max(1, bounded // 2),
        hrv_shift_ms=max(1, bounded // 2),
        recovery_slope="moderate",
        quality="estimated",
    )


# ---------------------------------------------------------------------------
# Experiments
# ---------------------------------------------------------------------------

def experiment_check_in_delta(focus: str) -> MetricDelta:
    """Daily experiment log: improve the focus axis, nudge the others."""
    if focus == "load":
        return MetricDelta(load=-2, readiness=1, consistency=1)
    if focus == "readiness":
        return MetricDelta(load=-1, readiness=2, consistency=1)
    return MetricDelta(load=-1, readiness=1, consistency=2)


def experiment_completion_delta(focus: str, perceived_change: int) -> MetricDelta:
    """Completion shift, scaled by the clamped perceived change."""
    change = clamp_int(perceived_change, *PERCEIVED_CHANGE_BOUNDS)
    if focus == "load":
        return MetricDelta(load=-change, readiness=max(0, trunc_div(change, 2)), consistency=1)
    if focus == "readiness":
        return MetricDelta(load=-1, readiness=change, consistency=1)
    return MetricDelta(load=-1, readiness=1, consistency=change)


def experiment_completion_summary(
    scenario_title: str,
    focus_title: str,
    adherence: int,
    perceived_change: int,
) -> str:
    """One-sentence result line for a completed experiment."""
    if perceived_change > 0:
        trend = "improvement"
    elif perceived_change < 0:
        trend = "decline"
    else:
        trend = "stable outcome"
    return (
        f"{scenario_title}: {focus_title} experiment finished with "
        f"{adherence}% adherence and {trend} ({perceived_change})."
    )


# ---------------------------------------------------------------------------
# Simulated time
# ---------------------------------------------------------------------------

def fast_forward_delta(days: int, scenario: str) -> MetricDelta:
    """Drift applied when the simulated day counter jumps ahead."""
    half = trunc_div(days, 2)
    if scenario == "high_stress_day":
        return MetricDelta(
            load=min(8, days + 2),
            readiness=-min(6, days + 1),
            consistency=-max(1, half),
        )
    if scenario == "recovery_week":
        return MetricDelta(
            load=-min(4, days),
            readiness=min(5, days + 1),
            consistency=min(4, days),
        )
    return MetricDelta(
        load=max(-1, half),
        readiness=min(4, days),
        consistency=min(3, max(1, half)),
    )


def check_in_delta(score: int, has_tags: bool) -> MetricDelta:
    """Shift from a 0-10 self-reported load check-in (score already clamped)."""
    return MetricDelta(
        load=clamp_int(score - 5, -3, 5),
        readiness=clamp_int(4 - score, -4, 2),
        consistency=1 if has_tags else 0,
    )
