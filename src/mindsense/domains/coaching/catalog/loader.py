"""Scenario loader: reads scenario profile YAML definitions from disk."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from mindsense.domains.coaching.catalog.models import (
    DriverImpact,
    ExperimentTemplate,
    Recommendation,
    RegulatePreset,
    ScenarioProfile,
    SeedEvent,
)
from mindsense.domains.coaching.catalog.registry import ScenarioCatalog
from mindsense.domains.coaching.domain_logic.metrics import MetricSnapshot

logger = logging.getLogger(__name__)

# Catalog order is fixed so rankings fall back to declaration order.
_SCENARIO_ORDER = ("high_stress_day", "balanced_day", "recovery_week")


def load_scenario_directory(directory: str | Path, catalog: ScenarioCatalog) -> int:
    """Load all YAML scenario definitions from a directory.

    Returns the number of scenarios loaded. Files starting with an
    underscore are skipped.
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning("Scenario directory does not exist: %s", directory)
        return 0

    profiles: list[ScenarioProfile] = []
    for path in sorted(directory.glob("*.yaml")):
        if path.name.startswith("_"):
            continue
        try:
            profiles.append(load_scenario_file(path))
        except Exception:
            logger.exception("Failed to load scenario from %s", path)

    def _order(profile: ScenarioProfile) -> int:
        try:
            return _SCENARIO_ORDER.index(profile.id)
        except ValueError:
            return len(_SCENARIO_ORDER)

    for profile in sorted(profiles, key=_order):
        catalog.register(profile)
        logger.info("Loaded scenario: %s (v%s)", profile.id, profile.version)
    return len(profiles)


def _driver(data: dict[str, Any]) -> DriverImpact:
    return DriverImpact(
        id=data["id"],
        name=data["name"],
        detail=str(data.get("detail", "")),
        impact=float(data["impact"]),
    )


def load_scenario_file(path: Path) -> ScenarioProfile:
    """Parse a YAML file into a ScenarioProfile instance."""
    with open(path) as f:
        data: dict[str, Any] = yaml.safe_load(f)

    base = data["base_metrics"]
    fallback = data["fallback_recommendation"]

    return ScenarioProfile(
        id=data["id"],
        version=str(data.get("version", "1.0.0")),
        title=data["title"],
        subtitle=data.get("subtitle", ""),
        insight_line=data.get("insight_line", ""),
        narrative=data.get("narrative", ""),
        default_day=int(data["default_day"]),
        confidence_base=float(data["confidence_base"]),
        base_metrics=MetricSnapshot(
            load=int(base["load"]),
            readiness=int(base["readiness"]),
            consistency=int(base["consistency"]),
        ),
        fallback_recommendation=Recommendation(
            preset=fallback["preset"],
            what=fallback["what"],
            why=fallback["why"],
            expected_effect=fallback["expected_effect"],
            time_minutes=int(fallback["time_minutes"]),
        ),
        primary_drivers=[_driver(d) for d in data.get("primary_drivers", [])],
        secondary_drivers=[_driver(d) for d in data.get("secondary_drivers", [])],
        presets=[
            RegulatePreset(
                id=p["id"],
                title=p["title"],
                subtitle=p.get("subtitle", ""),
                duration_minutes=int(p["duration_minutes"]),
                expected_effect=p.get("expected_effect", ""),
                why_now=p.get("why_now", ""),
                protocol_steps=[str(step) for step in p.get("protocol_steps", [])],
                icon=p.get("icon", ""),
            )
            for p in data.get("presets", [])
        ],
        signal_narratives=dict(data.get("signal_narratives", {})),
        experiments=[
            ExperimentTemplate(
                title=e["title"],
                duration_days=int(e.get("duration_days", 7)),
                focus=e["focus"],
                hypothesis=e.get("hypothesis", ""),
                next_step=e.get("next_step", ""),
                estimate=e.get("estimate", ""),
                rationale=e.get("rationale", ""),
            )
            for e in data.get("experiments", [])
        ],
        seed_events=[
            SeedEvent(title=ev["title"], detail=ev["detail"], kind=ev["kind"])
            for ev in data.get("seed_events", [])
        ],
    )
