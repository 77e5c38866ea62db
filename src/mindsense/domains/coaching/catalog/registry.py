"""Scenario catalog: in-memory index of loaded scenario profiles."""

from __future__ import annotations

import logging
from pathlib import Path

from mindsense.domains.coaching.catalog.models import ScenarioProfile

logger = logging.getLogger(__name__)

SCENARIO_DIR = Path(__file__).resolve().parent / "scenarios"


class ScenarioCatalog:
    """Registry of scenario profiles, in declaration order."""

    def __init__(self) -> None:
        self._profiles: dict[str, ScenarioProfile] = {}

    def register(self, profile: ScenarioProfile) -> None:
        if profile.id in self._profiles:
            raise ValueError(f"Duplicate scenario id registered: {profile.id!r}")
        self._profiles[profile.id] = profile

    def get(self, scenario_id: str) -> ScenarioProfile | None:
        return self._profiles.get(scenario_id)

    def require(self, scenario_id: str) -> ScenarioProfile:
        """Look up a scenario, raising KeyError if it is not registered."""
        profile = self._profiles.get(scenario_id)
        if profile is None:
            raise KeyError(f"Unknown scenario: {scenario_id!r}")
        return profile

    def __contains__(self, scenario_id: object) -> bool:
        return scenario_id in self._profiles

    def ids(self) -> list[str]:
        return list(self._profiles)

    def all(self) -> list[ScenarioProfile]:
        return list(self._profiles.values())


def load_default_catalog() -> ScenarioCatalog:
    """Build a catalog from the scenario YAML shipped with the package."""
    from mindsense.domains.coaching.catalog.loader import load_scenario_directory

    catalog = ScenarioCatalog()
    count = load_scenario_directory(SCENARIO_DIR, catalog)
    logger.info("Loaded %d scenario profiles from %s", count, SCENARIO_DIR)
    return catalog
