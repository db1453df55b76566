"""Learning loop contract: attempt classification and tilt detection.

Separates pattern recognition (fast, first try) from calculation (slow)
and from recovered attempts, and signals when a theme should be paused
after repeated failures.
"""

from __future__ import annotations

from collections.abc import Sequence

from coachreps.config import DEFAULT_CONFIG, EngineConfig
from coachreps.models import Outcome

_FEEDBACK: dict[Outcome, str] = {
    Outcome.PERFECT: "PERFECT! Pattern recognized immediately.",
    Outcome.SLOW_SUCCESS: "GOOD. Calculation correct, but try to recognize this faster.",
    Outcome.SUCCESS_WITH_HINT: "RECOVERED. You found it eventually. Review this pattern.",
    Outcome.FAILURE: "FAILED. Critical gap detected. Theme may be locked if this persists.",
    Outcome.ABANDONED: "SKIPPED.",
}


class OutcomeClassifier:
    """Stateless classifier bound to a learning contract config."""

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG) -> None:
        self._config = config

    @property
    def config(self) -> EngineConfig:
        return self._config

    def classify(self, is_correct: bool, duration_ms: int, retry_count: int) -> Outcome:
        """Map raw attempt telemetry to an Outcome.

        Args:
            is_correct: Whether the learner found the solution.
            duration_ms: Time spent on the attempt in milliseconds.
            retry_count: Number of wrong tries (or hints) before this one.

        Returns:
            The normalized outcome.

        Raises:
            ValueError: If duration_ms or retry_count is negative.
        """
        if duration_ms < 0:
            raise ValueError(f"duration_ms must be >= 0, got {duration_ms}")
        if retry_count < 0:
            raise ValueError(f"retry_count must be >= 0, got {retry_count}")

        if not is_correct:
            if retry_count >= self._config.max_retries_allowed:
                return Outcome.FAILURE
            # Provisional until the learner solves it
            return Outcome.SUCCESS_WITH_HINT

        # Any retry caps the credit regardless of time
        if retry_count > 0:
            return Outcome.SUCCESS_WITH_HINT

        if duration_ms <= self._config.perfect_time_threshold_ms:
            return Outcome.PERFECT
        return Outcome.SLOW_SUCCESS

    def should_lock_theme(self, recent_outcomes: Sequence[Outcome]) -> bool:
        """True when the last tilt_failure_limit outcomes are all FAILURE."""
        limit = self._config.tilt_failure_limit
        if len(recent_outcomes) < limit:
            return False
        tail = list(recent_outcomes)[-limit:]
        return all(Outcome(o) is Outcome.FAILURE for o in tail)


_default_classifier = OutcomeClassifier()


def classify_outcome(
    is_correct: bool,
    duration_ms: int,
    retry_count: int,
    config: EngineConfig | None = None,
) -> Outcome:
    """Classify an attempt with the default (or given) contract."""
    classifier = _default_classifier if config is None else OutcomeClassifier(config)
    return classifier.classify(is_correct, duration_ms, retry_count)


def should_lock_theme(
    recent_outcomes: Sequence[Outcome], config: EngineConfig | None = None
) -> bool:
    classifier = _default_classifier if config is None else OutcomeClassifier(config)
    return classifier.should_lock_theme(recent_outcomes)


def outcome_feedback(outcome: Outcome) -> str:
    """User-facing feedback line for a normalized outcome."""
    return _FEEDBACK.get(Outcome(outcome), "")
