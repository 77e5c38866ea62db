"""Deterministic health-signal simulator.

Stands in for a device pipeline. Every profile is a pure function of
(scenario, demo day, live metrics, completed session count, active
experiment adherence, now). Nothing here is statistical.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Sequence

from mindsense.domains.coaching.domain_logic.health_models import (
    SIGNAL_TYPES,
    HealthProfile,
    PermissionStatus,
    QualityBreakdown,
    StressEpisode,
    SyncSnapshot,
    TimelineSegment,
)
from mindsense.domains.coaching.domain_logic.metrics import (
    MetricSnapshot,
    clamp_int,
    trunc_div,
)
from mindsense.domains.coaching.domain_logic.models import new_id

SOURCE_LABEL = "Apple Watch (Demo)"

CONTEXT_TAGS: tuple[str, ...] = (
    "Meeting",
    "Caffeine",
    "Workout",
    "Commute",
    "Conflict",
    "Noise",
    "Screen overload",
    "Unknown",
)

MAX_EPISODES = 12
TIMELINE_HOURS = 12
SEGMENT_SECONDS = 3_600
RECOVERY_WINDOW_SECONDS = 5_400
STALE_EPISODE_SECONDS = 3 * 3_600

CLEARED_HINT = "Derived metrics cleared. Run Resync now to rebuild your state model."

# Signals that are not "granted" per scenario; everything else is granted.
_PERMISSION_OVERRIDES: dict[str, dict[str, str]] = {
    "high_stress_day": {
        "hrv": "missing",
        "respiratory_rate": "missing",
        "environmental_audio": "unsupported",
    },
    "balanced_day": {
        "respiratory_rate": "missing",
        "environmental_audio": "unsupported",
    },
    "recovery_week": {
        "environmental_audio": "unsupported",
    },
}

_BASE_QUALITY: dict[str, QualityBreakdown] = {
    "high_stress_day": QualityBreakdown(
        sleep_coverage=72,
        heart_rate_density=84,
        hrv_availability=48,
        watch_wear=68,
        action_hint="Grant HRV permission to improve stress detection confidence.",
    ),
    "balanced_day": QualityBreakdown(
        sleep_coverage=86,
        heart_rate_density=82,
        hrv_availability=78,
        watch_wear=80,
        action_hint="Wear your watch overnight to keep baseline confidence strong.",
    ),
    "recovery_week": QualityBreakdown(
        sleep_coverage=90,
        heart_rate_density=79,
        hrv_availability=86,
        watch_wear=88,
        action_hint="Data quality is strong. Keep overnight wear consistent.",
    ),
}


@dataclass(frozen=True)
class _EpisodeSeed:
    start_hours_ago: float
    end_hours_ago: float
    intensity: int
    confidence: int
    driver: str
    preset: str
    tags: tuple[str, ...] = ()
    note: str | None = None


_SEEDED_EPISODES: dict[str, tuple[_EpisodeSeed, ...]] = {
    "high_stress_day": (
        _EpisodeSeed(4.8, 4.2, 79, 78, "cognitive", "calm_now", ("Meeting",), "Stacked deadline handoff."),
        _EpisodeSeed(2.4, 1.9, 73, 70, "social", "calm_now"),
        _EpisodeSeed(0.9, 0.2, 84, 76, "cognitive", "focus_prep"),
    ),
    "balanced_day": (
        _EpisodeSeed(4.1, 3.6, 56, 69, "physical", "calm_now", ("Workout",), "Lunch run."),
        _EpisodeSeed(1.6, 0.9, 63, 71, "cognitive", "focus_prep"),
    ),
    "recovery_week": (
        _EpisodeSeed(3.5, 2.8, 44, 74, "environmental", "calm_now", ("Commute",)),
        _EpisodeSeed(1.2, 0.5, 51, 68, "social", "calm_now"),
    ),
}

# (driver, intensity, confidence, preset) for a synthesized episode
_GENERATED_EPISODE: dict[str, tuple[str, int, int, str]] = {
    "high_stress_day": ("cognitive", 78, 74, "calm_now"),
    "balanced_day": ("social", 62, 72, "focus_prep"),
    "recovery_week": ("environmental", 49, 70, "focus_prep"),
}


def default_permissions(scenario: str) -> list[PermissionStatus]:
    overrides = _PERMISSION_OVERRIDES.get(scenario, {})
    return [
        PermissionStatus(signal=signal, state=overrides.get(signal, "granted"))
        for signal in SIGNAL_TYPES
    ]


def base_quality(scenario: str) -> QualityBreakdown:
    return replace(_BASE_QUALITY[scenario])


def adjusted_quality(quality: QualityBreakdown, demo_day: int) -> QualityBreakdown:
    """Lift (or sink) the base quality by how far into the demo we are."""
    lift = clamp_int(demo_day - 6, -4, 8)
    half_lift = trunc_div(lift, 2)
    return QualityBreakdown(
        sleep_coverage=clamp_int(quality.sleep_coverage + lift, 36, 99),
        heart_rate_density=clamp_int(quality.heart_rate_density + half_lift, 36, 99),
        hrv_availability=clamp_int(quality.hrv_availability + half_lift, 24, 98),
        watch_wear=clamp_int(quality.watch_wear + lift, 30, 99),
        action_hint=quality.action_hint,
    )


def quality_action_hint(quality: QualityBreakdown, permissions: Sequence[PermissionStatus]) -> str:
    """The single most useful next step for improving data quality."""
    states = {p.signal: p.state for p in permissions}
    if states.get("hrv") != "granted":
        return "Grant HRV permission to improve stress episode confidence."
    if states.get("sleep") != "granted":
        return "Grant Sleep permission so readiness can be calibrated."
    if quality.sleep_coverage < 68:
        return "Wear your watch overnight for the next 3 nights."
    if quality.heart_rate_density < 68:
        return "Enable Background App Refresh to increase heart-rate coverage."
    if quality.watch_wear < 68:
        return "Keep your watch on during the day to improve state updates."
    return "Data quality is strong."


def _hrv_granted(permissions: Sequence[PermissionStatus]) -> bool:
    return any(p.signal == "hrv" and p.state == "granted" for p in permissions)


def seeded_episodes(scenario: str, now: datetime) -> list[StressEpisode]:
    return [
        StressEpisode(
            id=new_id(),
            start=now - timedelta(hours=seed.start_hours_ago),
            end=now - timedelta(hours=seed.end_hours_ago),
            intensity=seed.intensity,
            confidence=seed.confidence,
            likely_driver=seed.driver,
            recommended_preset=seed.preset,
            user_tags=list(seed.tags),
            user_note=seed.note,
        )
        for seed in _SEEDED_EPISODES[scenario]
    ]


def generated_episode(scenario: str, now: datetime) -> StressEpisode:
    driver, intensity, confidence, preset = _GENERATED_EPISODE[scenario]
    return StressEpisode(
        id=new_id(),
        start=now - timedelta(seconds=3_200),
        end=now - timedelta(seconds=900),
        intensity=intensity,
        confidence=confidence,
        likely_driver=driver,
        recommended_preset=preset,
    )


def _overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def timeline_segments(episodes: Sequence[StressEpisode], now: datetime) -> list[TimelineSegment]:
    """Twelve one-hour buckets covering the trailing twelve hours."""
    window_start = now - timedelta(seconds=TIMELINE_HOURS * SEGMENT_SECONDS)
    recovery = timedelta(seconds=RECOVERY_WINDOW_SECONDS)
    segments: list[TimelineSegment] = []
    for index in range(TIMELINE_HOURS):
        seg_start = window_start + timedelta(seconds=index * SEGMENT_SECONDS)
        seg_end = seg_start + timedelta(seconds=SEGMENT_SECONDS)
        if any(_overlaps(seg_start, seg_end, e.start, e.end) for e in episodes):
            state = "activated"
        elif any(_overlaps(seg_start, seg_end, e.end, e.end + recovery) for e in episodes):
            state = "recovery"
        else:
            state = "stable"
        segments.append(TimelineSegment(id=new_id(), start=seg_start, end=seg_end, state=state))
    return segments


def seeded_profile(scenario: str, demo_day: int, now: datetime) -> HealthProfile:
    """The profile a scenario starts from."""
    permissions = default_permissions(scenario)
    episodes = seeded_episodes(scenario, now)
    return HealthProfile(
        is_connected=True,
        sync=SyncSnapshot(
            source_label=SOURCE_LABEL,
            last_sync_at=now - timedelta(seconds=480),
            last_sleep_import_at=now - timedelta(seconds=4_500),
            last_hrv_sample_at=(
                now - timedelta(seconds=2_800) if _hrv_granted(permissions) else None
            ),
        ),
        quality=adjusted_quality(base_quality(scenario), demo_day),
        permissions=permissions,
        timeline_segments=timeline_segments(episodes, now),
        stress_episodes=episodes,
    )


def refreshed_profile(
    existing: HealthProfile,
    *,
    scenario: str,
    metrics: MetricSnapshot,
    demo_day: int,
    completed_session_count: int,
    active_experiment_adherence: int,
    now: datetime,
    update_sync: bool,
) -> HealthProfile:
    """Re-derive quality, episodes and timeline from the live state.

    When every episode ended more than three hours ago, one new episode
    is synthesized so the timeline never goes quiet.
    """
    baseline = adjusted_quality(base_quality(scenario), demo_day)
    session_boost = min(completed_session_count * 2, 10)
    adherence_boost = min(active_experiment_adherence // 12, 8)
    load_penalty = max(0, trunc_div(metrics.load - 72, 4))

    quality = QualityBreakdown(
        sleep_coverage=clamp_int(baseline.sleep_coverage + adherence_boost - load_penalty, 42, 99),
        heart_rate_density=clamp_int(
            baseline.heart_rate_density + session_boost - (4 if metrics.load > 86 else 0), 48, 99
        ),
        hrv_availability=clamp_int(
            baseline.hrv_availability + (2 if metrics.readiness > 74 else -1), 28, 97
        ),
        watch_wear=clamp_int(
            baseline.watch_wear
            + (2 if demo_day > 10 else 0)
            - (3 if metrics.consistency < 58 else 0),
            38,
            99,
        ),
    )
    quality.action_hint = quality_action_hint(quality, existing.permissions)

    sync = replace(existing.sync)
    if update_sync:
        sync.last_sync_at = now
        sync.last_sleep_import_at = now - timedelta(seconds=2_400)
        sync.last_hrv_sample_at = (
            now - timedelta(seconds=1_900) if _hrv_granted(existing.permissions) else None
        )

    episodes = list(existing.stress_episodes)
    if all((now - e.end).total_seconds() > STALE_EPISODE_SECONDS for e in episodes):
        episodes.insert(0, generated_episode(scenario, now))
    episodes = sorted(episodes, key=lambda e: e.start, reverse=True)[:MAX_EPISODES]

    return HealthProfile(
        is_connected=existing.is_connected,
        sync=sync,
        quality=quality,
        permissions=list(existing.permissions),
        timeline_segments=timeline_segments(episodes, now),
        stress_episodes=episodes,
    )


def rebuilt_profile(
    existing: HealthProfile, scenario: str, demo_day: int, now: datetime
) -> HealthProfile:
    """Reseed everything but keep the user's permission grants."""
    rebuilt = seeded_profile(scenario, demo_day, now)
    rebuilt.permissions = list(existing.permissions)
    rebuilt.quality.action_hint = quality_action_hint(rebuilt.quality, rebuilt.permissions)
    return rebuilt


def deleting_derived(existing: HealthProfile, now: datetime) -> HealthProfile:
    """Drop episodes and timeline and sink quality to fixed floors."""
    sync = replace(existing.sync, last_sync_at=now)
    return HealthProfile(
        is_connected=existing.is_connected,
        sync=sync,
        quality=QualityBreakdown(
            sleep_coverage=35,
            heart_rate_density=30,
            hrv_availability=22,
            watch_wear=28,
            action_hint=CLEARED_HINT,
        ),
        permissions=list(existing.permissions),
        timeline_segments=[],
        stress_episodes=[],
    )


def with_episode_context(
    profile: HealthProfile, episode_id: str, tags: Sequence[str], note: str
) -> StressEpisode | None:
    """Attach user tags and note to an episode in place. None if unknown."""
    episode = next((e for e in profile.stress_episodes if e.id == episode_id), None)
    if episode is None:
        return None
    cleaned = note.strip()
    episode.user_tags = sorted(set(tags))
    episode.user_note = cleaned or None
    return episode


def with_episode_feedback(
    profile: HealthProfile, episode_id: str, feedback: str
) -> StressEpisode | None:
    episode = next((e for e in profile.stress_episodes if e.id == episode_id), None)
    if episode is None:
        return None
    episode.attribution_feedback = feedback
    return episode
