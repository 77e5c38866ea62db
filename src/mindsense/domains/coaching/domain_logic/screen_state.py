"""View state for the three core screens: loading, ready, empty or error."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

ScreenID = Literal["today", "regulate", "data"]
ScreenMode = Literal["loading", "ready", "empty", "error"]

SCREEN_IDS: tuple[str, ...] = ("today", "regulate", "data")

_EMPTY_MESSAGES: dict[str, tuple[str, str]] = {
    "today": (
        "No driver data yet",
        "Refresh data or add a check-in to rebuild today's context.",
    ),
    "regulate": (
        "No protocols available",
        "Refresh data to load a regulate protocol set.",
    ),
    "data": (
        "No experiments available",
        "Refresh data to load experiment templates.",
    ),
}


@dataclass(frozen=True)
class ScreenState:
    mode: ScreenMode
    title: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"mode": self.mode}
        if self.title is not None:
            data["title"] = self.title
            data["message"] = self.message
        return data


LOADING = ScreenState(mode="loading")
READY = ScreenState(mode="ready")


def resolve(screen: str, data_issue: str | None, has_content: bool) -> ScreenState:
    """A data issue always wins; otherwise empty when the screen has nothing to show."""
    if data_issue is not None:
        return ScreenState(mode="error", title="Data issue", message=data_issue)
    if not has_content:
        title, message = _EMPTY_MESSAGES[screen]
        return ScreenState(mode="empty", title=title, message=message)
    return READY
