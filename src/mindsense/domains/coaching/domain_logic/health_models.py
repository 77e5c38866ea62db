"""Simulated device-integration state: sync, data quality, permissions, episodes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from mindsense.domains.coaching.domain_logic.metrics import clamp_int, round_half_away
from mindsense.domains.coaching.domain_logic.models import (
    PRESET_IDS,
    PresetID,
    choice,
    from_iso,
    required_iso,
    to_iso,
)

SignalType = Literal[
    "sleep",
    "heart_rate",
    "hrv",
    "resting_heart_rate",
    "workouts",
    "activity",
    "respiratory_rate",
    "mindful_minutes",
    "environmental_audio",
]
PermissionState = Literal["granted", "missing", "unsupported"]
TimelineState = Literal["stable", "activated", "recovery"]
EpisodeDriver = Literal["cognitive", "physical", "social", "environmental"]
AttributionFeedback = Literal["accurate", "inaccurate"]

SIGNAL_TYPES: tuple[str, ...] = (
    "sleep",
    "heart_rate",
    "hrv",
    "resting_heart_rate",
    "workouts",
    "activity",
    "respiratory_rate",
    "mindful_minutes",
    "environmental_audio",
)
PERMISSION_STATES: tuple[str, ...] = ("granted", "missing", "unsupported")
TIMELINE_STATES: tuple[str, ...] = ("stable", "activated", "recovery")
EPISODE_DRIVERS: tuple[str, ...] = ("cognitive", "physical", "social", "environmental")
ATTRIBUTION_FEEDBACK: tuple[str, ...] = ("accurate", "inaccurate")

EPISODE_DRIVER_TITLES: dict[str, str] = {
    "cognitive": "Cognitive",
    "physical": "Physical",
    "social": "Social",
    "environmental": "Environmental",
}

# Sub-score weights: sleep coverage, heart-rate density, HRV availability, watch wear
QUALITY_WEIGHTS = (0.34, 0.27, 0.22, 0.17)


@dataclass(frozen=True)
class PermissionStatus:
    signal: SignalType
    state: PermissionState

    def to_dict(self) -> dict[str, str]:
        return {"signal": self.signal, "state": self.state}

    @classmethod
    def from_dict(cls, data: dict) -> PermissionStatus:
        return cls(
            signal=choice(data["signal"], SIGNAL_TYPES, "signal type"),
            state=choice(data["state"], PERMISSION_STATES, "permission state"),
        )


@dataclass
class SyncSnapshot:
    source_label: str
    last_sync_at: datetime
    last_sleep_import_at: datetime
    last_hrv_sample_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_label": self.source_label,
            "last_sync_at": to_iso(self.last_sync_at),
            "last_sleep_import_at": to_iso(self.last_sleep_import_at),
            "last_hrv_sample_at": to_iso(self.last_hrv_sample_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> SyncSnapshot:
        return cls(
            source_label=str(data["source_label"]),
            last_sync_at=required_iso(data["last_sync_at"]),
            last_sleep_import_at=required_iso(data["last_sleep_import_at"]),
            last_hrv_sample_at=from_iso(data.get("last_hrv_sample_at")),
        )


@dataclass
class QualityBreakdown:
    """Four 0-100 data-quality sub-scores and a next-step hint."""

    sleep_coverage: int
    heart_rate_density: int
    hrv_availability: int
    watch_wear: int
    action_hint: str = ""

    @property
    def score(self) -> int:
        """Weighted quality score in [0, 100]."""
        w_sleep, w_hr, w_hrv, w_wear = QUALITY_WEIGHTS
        weighted = (
            self.sleep_coverage * w_sleep
            + self.heart_rate_density * w_hr
            + self.hrv_availability * w_hrv
            + self.watch_wear * w_wear
        )
        return clamp_int(round_half_away(weighted), 0, 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sleep_coverage": self.sleep_coverage,
            "heart_rate_density": self.heart_rate_density,
            "hrv_availability": self.hrv_availability,
            "watch_wear": self.watch_wear,
            "action_hint": self.action_hint,
        }

    @classmethod
    def from_dict(cls, data: dict) -> QualityBreakdown:
        return cls(
            sleep_coverage=int(data["sleep_coverage"]),
            heart_rate_density=int(data["heart_rate_density"]),
            hrv_availability=int(data["hrv_availability"]),
            watch_wear=int(data["watch_wear"]),
            action_hint=str(data.get("action_hint", "")),
        )


@dataclass(frozen=True)
class TimelineSegment:
    id: str
    start: datetime
    end: datetime
    state: TimelineState

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start": to_iso(self.start),
            "end": to_iso(self.end),
            "state": self.state,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TimelineSegment:
        return cls(
            id=str(data["id"]),
            start=required_iso(data["start"]),
            end=required_iso(data["end"]),
            state=choice(data["state"], TIMELINE_STATES, "timeline state"),
        )


@dataclass
class StressEpisode:
    """A simulated period of elevated stress, optionally labeled by the user."""

    id: str
    start: datetime
    end: datetime
    intensity: int
    confidence: int
    likely_driver: EpisodeDriver
    recommended_preset: PresetID
    user_tags: list[str] = field(default_factory=list)
    user_note: str | None = None
    attribution_feedback: AttributionFeedback | None = None

    @property
    def has_context(self) -> bool:
        return bool(self.user_tags) or bool((self.user_note or "").strip())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start": to_iso(self.start),
            "end": to_iso(self.end),
            "intensity": self.intensity,
            "confidence": self.confidence,
            "likely_driver": self.likely_driver,
            "recommended_preset": self.recommended_preset,
            "user_tags": list(self.user_tags),
            "user_note": self.user_note,
            "attribution_feedback": self.attribution_feedback,
        }

    @classmethod
    def from_dict(cls, data: dict) -> StressEpisode:
        feedback = data.get("attribution_feedback")
        return cls(
            id=str(data["id"]),
            start=required_iso(data["start"]),
            end=required_iso(data["end"]),
            intensity=int(data["intensity"]),
            confidence=int(data["confidence"]),
            likely_driver=choice(data["likely_driver"], EPISODE_DRIVERS, "episode driver"),
            recommended_preset=choice(data["recommended_preset"], PRESET_IDS, "preset"),
            user_tags=[str(tag) for tag in data.get("user_tags", [])],
            user_note=data.get("user_note"),
            attribution_feedback=(
                choice(feedback, ATTRIBUTION_FEEDBACK, "attribution feedback")
                if feedback is not None
                else None
            ),
        )


@dataclass
class HealthProfile:
    """Connection flag, sync stamps, quality, permissions, timeline and episodes."""

    is_connected: bool
    sync: SyncSnapshot
    quality: QualityBreakdown
    permissions: list[PermissionStatus]
    timeline_segments: list[TimelineSegment] = field(default_factory=list)
    stress_episodes: list[StressEpisode] = field(default_factory=list)

    @property
    def sorted_episodes(self) -> list[StressEpisode]:
        """Episodes, newest start first."""
        return sorted(self.stress_episodes, key=lambda e: e.start, reverse=True)

    def permission_state(self, signal: str) -> str:
        for permission in self.permissions:
            if permission.signal == signal:
                return permission.state
        return "missing"

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "sync": self.sync.to_dict(),
            "quality": self.quality.to_dict(),
            "permissions": [p.to_dict() for p in self.permissions],
            "timeline_segments": [s.to_dict() for s in self.timeline_segments],
            "stress_episodes": [e.to_dict() for e in self.stress_episodes],
        }

    @classmethod
    def from_dict(cls, data: dict) -> HealthProfile:
        return cls(
            is_connected=bool(data["is_connected"]),
            sync=SyncSnapshot.from_dict(data["sync"]),
            quality=QualityBreakdown.from_dict(data["quality"]),
            permissions=[PermissionStatus.from_dict(p) for p in data["permissions"]],
            timeline_segments=[
                TimelineSegment.from_dict(s) for s in data.get("timeline_segments", [])
            ],
            stress_episodes=[StressEpisode.from_dict(e) for e in data.get("stress_episodes", [])],
        )
