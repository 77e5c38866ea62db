"""The bounded load / readiness / consistency triple and its clamp rules.

Every mutation goes through :meth:`MetricSnapshot.applying`, which re-clamps
after each change, so a snapshot held by the store is always in range.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

SignalFocus = Literal["load", "readiness", "consistency"]

SIGNAL_FOCI: tuple[SignalFocus, ...] = ("load", "readiness", "consistency")

FOCUS_TITLES: dict[str, str] = {
    "load": "Load",
    "readiness": "Readiness",
    "consistency": "Consistency",
}

# (floor, ceiling) per metric
LOAD_BOUNDS = (8, 96)
READINESS_BOUNDS = (8, 98)
CONSISTENCY_BOUNDS = (10, 99)


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp a value to [lo, hi]."""
    return max(lo, min(hi, value))


def clamp_int(value: int, lo: int, hi: int) -> int:
    """Clamp an integer to [lo, hi]."""
    return max(lo, min(hi, value))


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def trunc_div(numerator: int, denominator: int) -> int:
    """Integer division truncating toward zero (-5 / 2 -> -2)."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def signed(value: int) -> str:
    """Format an integer with an explicit plus sign when positive."""
    return f"+{value}" if value > 0 else str(value)


@dataclass(frozen=True)
class MetricDelta:
    """A transient change to the metric triple. Never persisted."""

    load: int = 0
    readiness: int = 0
    consistency: int = 0

    @property
    def is_zero(self) -> bool:
        return self.load == 0 and self.readiness == 0 and self.consistency == 0


ZERO_DELTA = MetricDelta()


@dataclass(frozen=True)
class MetricSnapshot:
    """Load, readiness and consistency, each held inside its bounds."""

    load: int
    readiness: int
    consistency: int

    def clamped(self) -> MetricSnapshot:
        return MetricSnapshot(
            load=clamp_int(self.load, *LOAD_BOUNDS),
            readiness=clamp_int(self.readiness, *READINESS_BOUNDS),
            consistency=clamp_int(self.consistency, *CONSISTENCY_BOUNDS),
        )

    def applying(self, delta: MetricDelta) -> MetricSnapshot:
        """Return a new snapshot with ``delta`` added and bounds re-applied."""
        return MetricSnapshot(
            load=self.load + delta.load,
            readiness=self.readiness + delta.readiness,
            consistency=self.consistency + delta.consistency,
        ).clamped()

    def value(self, focus: str) -> int:
        return getattr(self, focus)

    def to_dict(self) -> dict[str, int]:
        return {"load": self.load, "readiness": self.readiness, "consistency": self.consistency}

    @classmethod
    def from_dict(cls, data: dict) -> MetricSnapshot:
        """Decode a stored snapshot. Missing keys raise KeyError."""
        return cls(
            load=int(data["load"]),
            readiness=int(data["readiness"]),
            consistency=int(data["consistency"]),
        ).clamped()
