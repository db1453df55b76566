"""Per-theme mastery model.

A logistic-expectancy update: the drill's difficulty is mapped onto the
0-100 mastery scale, the expected score is compared with the actual
score, and the gap moves mastery by a K-factor damped by confidence.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from coachreps.config import DEFAULT_CONFIG, EngineConfig
from coachreps.models import Outcome, SkillState

_PERFORMANCE_SCORES: dict[Outcome, float] = {
    Outcome.PERFECT: 1.0,
    Outcome.SLOW_SUCCESS: 0.85,
    Outcome.SUCCESS_WITH_HINT: 0.5,
    Outcome.FAILURE: 0.0,
    Outcome.ABANDONED: 0.0,
}

# 40 mastery points of gap = 10:1 expected odds
_LOGISTIC_SCALE = 40.0

_SURPRISE_THRESHOLD = 0.5
_STREAK_SCORE = 0.8


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def drill_rating(difficulty: int) -> float:
    """Map drill difficulty 1-5 onto the mastery scale (20..100)."""
    return _clamp(difficulty * 20, 10, 100)


def expected_score(mastery: float, rating: float) -> float:
    """Logistic probability that a learner at `mastery` solves a drill at `rating`."""
    return 1 / (1 + 10 ** (-(mastery - rating) / _LOGISTIC_SCALE))


def performance_score(outcome: Outcome) -> float:
    return _PERFORMANCE_SCORES[Outcome(outcome)]


class SkillUpdatePolicy(Protocol):
    """Anything that can turn (state, outcome, difficulty) into a new state."""

    def update(
        self,
        state: SkillState,
        outcome: Outcome,
        difficulty: int,
        now: datetime | None = None,
    ) -> SkillState: ...


class LogisticSkillPolicy:
    """Glicko-inspired update: confident estimates move less."""

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG) -> None:
        self._config = config

    def update(
        self,
        state: SkillState,
        outcome: Outcome,
        difficulty: int,
        now: datetime | None = None,
    ) -> SkillState:
        """Return the skill state after one graded attempt.

        Args:
            state: Current skill state for the drill's theme.
            outcome: Normalized outcome of the attempt.
            difficulty: Drill difficulty, 1..5.
            now: Practice time; defaults to the current UTC time.

        Returns:
            A new SkillState with mastery and confidence clamped and rounded.

        Raises:
            ValueError: If difficulty is outside 1..5.
        """
        if not isinstance(difficulty, int) or difficulty < 1 or difficulty > 5:
            raise ValueError(f"Difficulty must be an integer between 1 and 5, got {difficulty}")

        expected = expected_score(state.mastery, drill_rating(difficulty))
        actual = performance_score(outcome)

        k_factor = self._config.k_factor_base * (1.0 - state.confidence * 0.5)
        mastery = _clamp(state.mastery + k_factor * (actual - expected), 0.0, 100.0)

        surprise = abs(actual - expected)
        if surprise > _SURPRISE_THRESHOLD:
            confidence = state.confidence - 0.1
        else:
            confidence = state.confidence + 0.05
        confidence = _clamp(confidence, 0.0, 1.0)

        streak = state.streak + 1 if actual >= _STREAK_SCORE else 0

        return replace(
            state,
            mastery=round(mastery, 2),
            confidence=round(confidence, 2),
            streak=streak,
            last_practiced_at=now or datetime.now(timezone.utc),
        )


_default_policy = LogisticSkillPolicy()


def update_skill(
    state: SkillState,
    outcome: Outcome,
    difficulty: int,
    *,
    now: datetime | None = None,
    policy: SkillUpdatePolicy | None = None,
) -> SkillState:
    """Public entry point; swaps in another policy without touching callers."""
    return (policy or _default_policy).update(state, outcome, difficulty, now)


def create_initial_skill(config: EngineConfig = DEFAULT_CONFIG) -> SkillState:
    return SkillState(
        mastery=config.initial_mastery,
        confidence=config.initial_confidence,
        streak=0,
        last_practiced_at=None,
    )


def is_mastered(state: SkillState, config: EngineConfig = DEFAULT_CONFIG) -> bool:
    return state.mastery >= config.mastery_threshold
