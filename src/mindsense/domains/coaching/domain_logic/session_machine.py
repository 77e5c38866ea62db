"""Regulate session lifecycle.

    in_progress -> awaiting_check_in -> completed
    in_progress | awaiting_check_in -> cancelled

Transitions take the current time explicitly and return the updated
session, or None when the transition is not valid from the session's
state. The caller owns the session and decides what to do with a None.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from mindsense.domains.coaching.domain_logic.delta_engine import (
    INTENSITY_BOUNDS,
    session_effect_metrics,
)
from mindsense.domains.coaching.domain_logic.metrics import clamp_int
from mindsense.domains.coaching.domain_logic.models import (
    DEFAULT_PLANNED_DURATION_SECONDS,
    RegulateSession,
    SessionOutcome,
    new_id,
)

logger = logging.getLogger(__name__)

FEEL_RATING_BOUNDS = (1, 5)


def begin(
    preset: str,
    source: str,
    now: datetime,
    duration_seconds: int | None = None,
) -> RegulateSession:
    """Create a fresh in-progress session."""
    return RegulateSession(
        id=new_id(),
        preset=preset,
        started_at=now,
        planned_duration_seconds=duration_seconds or DEFAULT_PLANNED_DURATION_SECONDS,
        state="in_progress",
        source=source,
    )


def elapsed_seconds(session: RegulateSession, now: datetime) -> int:
    """Seconds the routine ran; frozen once the routine is finished."""
    if session.routine_completed_at is not None:
        return int((session.routine_completed_at - session.started_at).total_seconds())
    return max(0, int((now - session.started_at).total_seconds()))


def remaining_seconds(session: RegulateSession, now: datetime) -> int:
    return max(0, session.planned_duration_seconds - elapsed_seconds(session, now))


def poll(session: RegulateSession, now: datetime) -> RegulateSession | None:
    """Timer tick: move to awaiting_check_in once the planned time is up.

    Returns None when nothing changed.
    """
    if session.state != "in_progress":
        return None
    elapsed = int((now - session.started_at).total_seconds())
    if elapsed < session.planned_duration_seconds:
        return None
    return replace(session, state="awaiting_check_in", routine_completed_at=now)


def complete_early(session: RegulateSession, now: datetime) -> RegulateSession | None:
    if session.state != "in_progress":
        logger.debug("Ignoring early completion of session %s in state %s", session.id, session.state)
        return None
    return replace(session, state="awaiting_check_in", routine_completed_at=now)


def cancel(session: RegulateSession, now: datetime) -> RegulateSession | None:
    if not session.is_active:
        logger.debug("Ignoring cancel of session %s in state %s", session.id, session.state)
        return None
    return replace(session, state="cancelled", cancelled_at=now, completed_at=now)


def record_outcome(
    session: RegulateSession,
    *,
    direction: str,
    intensity: int,
    feel_rating: int,
    helpfulness: str,
    scenario: str,
    quality: str,
    now: datetime,
) -> RegulateSession | None:
    """Capture the post-session check-in and complete the session.

    A session still in progress is moved to awaiting_check_in first.
    Intensity and feel rating are clamped to [1, 5].
    """
    if session.state == "in_progress":
        session = replace(session, state="awaiting_check_in", routine_completed_at=now)
    if session.state != "awaiting_check_in":
        logger.debug("Ignoring outcome for session %s in state %s", session.id, session.state)
        return None

    bounded = clamp_int(intensity, *INTENSITY_BOUNDS)
    feeling = clamp_int(feel_rating, *FEEL_RATING_BOUNDS)
    effect = session_effect_metrics(direction, bounded, session.preset, scenario, quality)
    outcome = SessionOutcome(
        direction=direction,
        intensity=bounded,
        captured_at=now,
        feel_rating=feeling,
        helpfulness=helpfulness,
        effect_metrics=effect,
    )
    return replace(session, state="completed", completed_at=now, outcome=outcome)
