"""Shared data models for the CoachReps training engine.

Drill, SkillState and DrillSchedule are the contract between the engine,
the training store and the MCP server. All records are frozen; updates
build new values.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Outcome(str, Enum):
    """Normalized result of a single drill attempt."""

    PERFECT = "PERFECT"
    SLOW_SUCCESS = "SLOW_SUCCESS"
    SUCCESS_WITH_HINT = "SUCCESS_WITH_HINT"
    FAILURE = "FAILURE"
    ABANDONED = "ABANDONED"


class SelectionMode(str, Enum):
    """How the drill generator picks a ply from a game."""

    RANDOM_MOMENT = "RANDOM_MOMENT"
    CRITICAL_POSITION = "CRITICAL_POSITION"
    START_FROM_MOVE = "START_FROM_MOVE"
    ENDGAME_FINISH = "ENDGAME_FINISH"
    ANY = "ANY"


class Theme(str, Enum):
    """Skill area a drill trains; each theme has its own SkillState."""

    TACTICS = "tactics"
    ADVANTAGE = "advantage"
    ENDGAME = "endgame"


@dataclass(frozen=True)
class Game:
    """A historical game as delivered by the import layer."""

    id: str
    pgn: str
    white: str = "?"
    black: str = "?"
    result: str = "*"
    time_control: str = "unknown"
    date: str = "????.??.??"
    source: str = "pgn"
    rated: bool = False


@dataclass(frozen=True)
class Ply:
    """One half-move of a materialized game with its tactical markers."""

    index: int
    san: str
    uci: str
    fen_before: str
    is_capture: bool
    is_check: bool
    is_mate: bool

    @property
    def is_tactical(self) -> bool:
        return self.is_capture or self.is_check or self.is_mate


@dataclass(frozen=True)
class Drill:
    """A training position with its forced solution line."""

    id: str
    source_game_id: str
    fen: str
    theme: Theme
    goal: str
    solution_san: tuple[str, ...]
    difficulty: int = 3
    explanation: str = ""
    played_move_san: str | None = None
    ply_index: int = 0
    mode: SelectionMode = SelectionMode.START_FROM_MOVE


@dataclass(frozen=True)
class SkillState:
    """Proficiency estimate for one theme."""

    mastery: float = 40.0
    confidence: float = 0.2
    streak: int = 0
    last_practiced_at: datetime | None = None


@dataclass(frozen=True)
class DrillSchedule:
    """SM-2 repetition state for one drill."""

    drill_id: str
    next_due_at: datetime
    interval: int = 0
    repetition: int = 0
    ease_factor: float = 2.5


@dataclass(frozen=True)
class GenerationFailure:
    """Returned when no drill could be produced from a pool."""

    reason: str
    attempts: int = 0

    def __bool__(self) -> bool:
        return False
