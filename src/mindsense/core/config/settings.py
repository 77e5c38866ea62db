"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """MindSense coaching server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: there is no auth layer in front of the tools.
    mindsense_host: str = "127.0.0.1"
    mindsense_port: int = 8010
    mindsense_log_level: str = "info"
    mindsense_allow_insecure_bind: bool = False

    # Storage (coaching state)
    db_path: str = "~/.mindsense/state.db"

    # Encryption. Empty means state lives in an in-memory database only.
    encryption_key: str = ""

    # Coaching engine
    default_scenario: Literal["high_stress_day", "balanced_day", "recovery_week"] = "balanced_day"
    banner_seconds: float = 3.0
    # Reset to defaults at startup when stored state could not be restored.
    repair_on_boot: bool = False

    # Analytics persistence
    analytics_debounce_seconds: float = 1.0
    analytics_max_events: int = 400
    analytics_max_bytes: int = 350_000


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
