"""Experiment lifecycle and adherence.

    planned -> active -> completed

At most one experiment is active. Operations mutate the experiment
list in place and return the experiment they touched, or None when the
id is unknown or the transition is not valid.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Sequence

from mindsense.domains.coaching.catalog.models import ExperimentTemplate
from mindsense.domains.coaching.domain_logic.delta_engine import (
    PERCEIVED_CHANGE_BOUNDS,
    experiment_completion_summary,
)
from mindsense.domains.coaching.domain_logic.metrics import (
    FOCUS_TITLES,
    clamp_int,
    round_half_away,
)
from mindsense.domains.coaching.domain_logic.models import (
    Experiment,
    ExperimentResult,
    new_id,
)

logger = logging.getLogger(__name__)

_CORRELATION_INSIGHTS: dict[str, str] = {
    "readiness": "On days this was done before 11am, afternoon HR drift stayed lower.",
    "load": "When this was completed before pressure blocks, peak episode intensity declined.",
    "consistency": "When repeated at the same time, recovery windows became more predictable.",
}


def seed_experiments(templates: Sequence[ExperimentTemplate]) -> list[Experiment]:
    """Fresh planned experiments for a scenario."""
    return [
        Experiment(
            id=new_id(),
            title=t.title,
            duration_days=t.duration_days,
            hypothesis=t.hypothesis,
            focus=t.focus,
            next_step=t.next_step,
            estimate=t.estimate,
            rationale=t.rationale,
        )
        for t in templates
    ]


def find(experiments: Sequence[Experiment], experiment_id: str) -> Experiment | None:
    return next((e for e in experiments if e.id == experiment_id), None)


def active_experiment(experiments: Sequence[Experiment]) -> Experiment | None:
    return next((e for e in experiments if e.status == "active"), None)


def _reset_progress(experiment: Experiment) -> None:
    experiment.started_at = None
    experiment.target_end_date = None
    experiment.check_in_days_completed = 0
    experiment.check_in_log = []
    experiment.result = None


def start(experiments: list[Experiment], experiment_id: str, now: datetime) -> Experiment | None:
    """Activate one experiment, reverting any other active one to planned."""
    experiment = find(experiments, experiment_id)
    if experiment is None:
        return None
    if experiment.status == "active":
        return None

    for other in experiments:
        if other.status == "active":
            logger.info("Reverting active experiment %s to planned", other.id)
            other.status = "planned"
            _reset_progress(other)

    _reset_progress(experiment)
    experiment.status = "active"
    experiment.started_at = now
    experiment.target_end_date = now + timedelta(days=experiment.duration_days - 1)
    return experiment


def log_day(experiments: list[Experiment], experiment_id: str, now: datetime) -> Experiment | None:
    """Record one daily check-in, capped at the experiment duration."""
    experiment = find(experiments, experiment_id)
    if experiment is None or experiment.status != "active":
        return None
    experiment.check_in_days_completed = min(
        experiment.duration_days, experiment.check_in_days_completed + 1
    )
    experiment.check_in_log.append(now)
    return experiment


def complete(
    experiments: list[Experiment],
    experiment_id: str,
    perceived_change: int,
    summary: str,
    scenario_title: str,
    now: datetime,
) -> tuple[Experiment, int] | None:
    """Close an active experiment with a result.

    Returns the experiment and the adherence percentage the result was
    computed with. The perceived change is clamped to [-5, 5]; any
    user text is appended to the generated summary.
    """
    experiment = find(experiments, experiment_id)
    if experiment is None or experiment.status != "active":
        return None

    perceived = clamp_int(perceived_change, *PERCEIVED_CHANGE_BOUNDS)
    duration = experiment.duration_days
    adherence = round_half_away(
        min(duration, experiment.check_in_days_completed) / max(duration, 1) * 100
    )
    generated = experiment_completion_summary(
        scenario_title, FOCUS_TITLES[experiment.focus], adherence, perceived
    )
    user_text = summary.strip()

    experiment.status = "completed"
    experiment.check_in_days_completed = max(duration, experiment.check_in_days_completed)
    experiment.result = ExperimentResult(
        perceived_change=perceived,
        summary=f"{generated} {user_text}" if user_text else generated,
        completed_at=now,
    )
    return experiment, adherence


def adherence_percent(experiment: Experiment, now: datetime) -> int:
    """Share of expected daily check-ins logged, in [0, 100].

    While active the denominator is the number of calendar days since
    the start, inclusive, capped at the duration.
    """
    duration = experiment.duration_days
    completed_days = min(max(experiment.check_in_days_completed, 0), max(duration, 1))

    if experiment.status == "completed":
        ratio = completed_days / max(duration, 1)
    elif experiment.status == "active" and experiment.started_at is not None:
        elapsed_days = (now.date() - experiment.started_at.date()).days + 1
        ratio = completed_days / max(1, min(duration, elapsed_days))
    else:
        return 0
    return round_half_away(min(max(ratio, 0.0), 1.0) * 100)


def is_overdue(experiment: Experiment, now: datetime) -> bool:
    return (
        experiment.status == "active"
        and experiment.target_end_date is not None
        and now > experiment.target_end_date
    )


def effect_estimate(experiment: Experiment, adherence: int) -> str:
    """Projected effect line with a confidence qualifier."""
    if adherence >= 75:
        confidence = "moderate confidence"
    elif adherence >= 45:
        confidence = "emerging confidence"
    else:
        confidence = "low confidence"

    if experiment.focus == "readiness":
        line = f"Readiness +{max(1, adherence // 22)}"
    elif experiment.focus == "load":
        line = f"Stress episode frequency -{max(4, adherence // 6)}%"
    else:
        line = f"Consistency +{max(1, adherence // 24)}"
    return f"{line} ({confidence})"


def correlation_insight(experiment: Experiment) -> str:
    return _CORRELATION_INSIGHTS[experiment.focus]
