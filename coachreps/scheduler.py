"""SM-2 spaced repetition scheduling for drills.

Outcomes are mapped to SM-2 grades (0-5); passing grades grow the
interval 1 -> 6 -> interval * ease, failing grades bring the drill
back the next day. The ease factor is adjusted on every review.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Protocol

from coachreps.config import DEFAULT_CONFIG, EngineConfig
from coachreps.models import DrillSchedule, Outcome

_GRADES: dict[Outcome, int] = {
    Outcome.PERFECT: 5,
    Outcome.SLOW_SUCCESS: 4,
    Outcome.SUCCESS_WITH_HINT: 3,
    Outcome.FAILURE: 1,
    Outcome.ABANDONED: 0,
}

_PASS_GRADE = 3


def grade_of(outcome: Outcome) -> int:
    """SM-2 grade for an outcome."""
    return _GRADES[Outcome(outcome)]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ScheduleStrategy(Protocol):
    """Computes the next repetition state for a drill."""

    def initial(self, drill_id: str, now: datetime | None = None) -> DrillSchedule: ...

    def calculate_next(
        self, schedule: DrillSchedule, outcome: Outcome, now: datetime | None = None
    ) -> DrillSchedule: ...


class Sm2Scheduler:
    """SuperMemo 2 recurrence with day-granular intervals."""

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG) -> None:
        self._config = config

    def initial(self, drill_id: str, now: datetime | None = None) -> DrillSchedule:
        return DrillSchedule(
            drill_id=drill_id,
            next_due_at=now or datetime.now(timezone.utc),
            interval=0,
            repetition=0,
            ease_factor=self._config.initial_ease_factor,
        )

    def calculate_next(
        self, schedule: DrillSchedule, outcome: Outcome, now: datetime | None = None
    ) -> DrillSchedule:
        """Apply one SM-2 review.

        Args:
            schedule: Current schedule for the drill.
            outcome: Normalized outcome of the attempt.
            now: Review time; defaults to the current UTC time.

        Returns:
            A new DrillSchedule with the same drill_id.
        """
        now = now or datetime.now(timezone.utc)
        grade = grade_of(outcome)
        ef = schedule.ease_factor

        if grade >= _PASS_GRADE:
            if schedule.repetition == 0:
                interval = 1
            elif schedule.repetition == 1:
                interval = 6
            else:
                # Previous interval times previous ease
                interval = _round_half_up(schedule.interval * ef)
            repetition = schedule.repetition + 1
        else:
            interval = 1
            repetition = 0

        # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)), both branches
        ef = ef + (0.1 - (5 - grade) * (0.08 + (5 - grade) * 0.02))
        ef = max(self._config.min_ease_factor, ef)

        return replace(
            schedule,
            next_due_at=now + timedelta(days=interval),
            interval=interval,
            repetition=repetition,
            ease_factor=round(ef, 4),
        )


_default_strategy = Sm2Scheduler()


def create_initial_schedule(
    drill_id: str,
    *,
    now: datetime | None = None,
    strategy: ScheduleStrategy | None = None,
) -> DrillSchedule:
    return (strategy or _default_strategy).initial(drill_id, now)


def next_schedule(
    schedule: DrillSchedule,
    outcome: Outcome,
    *,
    now: datetime | None = None,
    strategy: ScheduleStrategy | None = None,
) -> DrillSchedule:
    """Public entry point for the scheduler."""
    return (strategy or _default_strategy).calculate_next(schedule, outcome, now)


def is_due(schedule: DrillSchedule, *, now: datetime | None = None) -> bool:
    return schedule.next_due_at <= (now or datetime.now(timezone.utc))
