"""Training store for CoachReps.

Persists drills, their SM-2 schedules, per-theme skill states and
per-theme outcome history in one JSON document. Each recorded attempt
runs the full learning loop: classify -> skill update -> reschedule ->
tilt check.

CLI interface outputs JSON to stdout for MCP server integration.
"""

from __future__ import annotations

import argparse
import json
import os
import random
import shutil
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

from coachreps.config import DEFAULT_CONFIG, EngineConfig, data_dir, load_config
from coachreps.drill_generator import generate_drill
from coachreps.games import TIME_CONTROLS, demo_games, filter_by_time_control, load_pgn_file
from coachreps.learning_loop import OutcomeClassifier, outcome_feedback
from coachreps.log import log_event
from coachreps.models import (
    Drill,
    DrillSchedule,
    GenerationFailure,
    Outcome,
    SelectionMode,
    SkillState,
    Theme,
)
from coachreps.scheduler import Sm2Scheduler, is_due
from coachreps.skill import LogisticSkillPolicy, create_initial_skill, is_mastered

# Outcome history kept per theme for tilt detection
_HISTORY_LIMIT = 20


def _empty_document() -> dict:
    return {"drills": {}, "schedules": {}, "skills": {}, "history": {}}


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def drill_to_dict(drill: Drill) -> dict:
    data = asdict(drill)
    data["theme"] = drill.theme.value
    data["mode"] = drill.mode.value
    data["solution_san"] = list(drill.solution_san)
    return data


def drill_from_dict(data: dict) -> Drill:
    return Drill(
        id=data["id"],
        source_game_id=data["source_game_id"],
        fen=data["fen"],
        theme=Theme(data["theme"]),
        goal=data["goal"],
        solution_san=tuple(data["solution_san"]),
        difficulty=data.get("difficulty", 3),
        explanation=data.get("explanation", ""),
        played_move_san=data.get("played_move_san"),
        ply_index=data.get("ply_index", 0),
        mode=SelectionMode(data.get("mode", SelectionMode.START_FROM_MOVE.value)),
    )


def schedule_to_dict(schedule: DrillSchedule) -> dict:
    data = asdict(schedule)
    data["next_due_at"] = _dt_to_str(schedule.next_due_at)
    return data


def schedule_from_dict(data: dict) -> DrillSchedule:
    return DrillSchedule(
        drill_id=data["drill_id"],
        next_due_at=_dt_from_str(data["next_due_at"]),
        interval=data["interval"],
        repetition=data["repetition"],
        ease_factor=data["ease_factor"],
    )


def skill_to_dict(skill: SkillState) -> dict:
    data = asdict(skill)
    data["last_practiced_at"] = _dt_to_str(skill.last_practiced_at)
    return data


def skill_from_dict(data: dict) -> SkillState:
    return SkillState(
        mastery=data["mastery"],
        confidence=data["confidence"],
        streak=data["streak"],
        last_practiced_at=_dt_from_str(data.get("last_practiced_at")),
    )


def _validate_entries(doc: dict) -> None:
    """Parse every stored entry once; raises KeyError, TypeError or ValueError."""
    for data in doc["drills"].values():
        drill_from_dict(data)
    for drill_id, data in doc["schedules"].items():
        if schedule_from_dict(data).next_due_at is None:
            raise ValueError(f"Schedule without a due date: {drill_id}")
        if drill_id not in doc["drills"]:
            raise ValueError(f"Schedule without a drill: {drill_id}")
    for theme, data in doc["skills"].items():
        Theme(theme)
        skill_from_dict(data)
    for theme, outcomes in doc["history"].items():
        Theme(theme)
        if not isinstance(outcomes, list):
            raise ValueError(f"History for '{theme}' must be a list")
        for outcome in outcomes:
            Outcome(outcome)


class TrainingStore:
    """Owns persisted training state and drives the learning loop."""

    def __init__(
        self,
        store_path: str | Path | None = None,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        """Load state from a JSON file.

        If the file is corrupted, backs it up as .bak and starts fresh.

        Args:
            store_path: Path to the JSON document; defaults to
                $COACHREPS_DATA_DIR/training.json.
            config: Engine configuration for classifier, skill and scheduler.
        """
        self._path = Path(store_path) if store_path else data_dir() / "training.json"
        self._config = config
        self._classifier = OutcomeClassifier(config)
        self._skill_policy = LogisticSkillPolicy(config)
        self._scheduler = Sm2Scheduler(config)
        self._doc: dict = self._load()

    def _load(self) -> dict:
        if not self._path.exists():
            return _empty_document()

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("Training store must contain a JSON object")
            doc = _empty_document()
            for key in doc:
                section = data.get(key, {})
                if not isinstance(section, dict):
                    raise ValueError(f"Section '{key}' must be a JSON object")
                doc[key] = section
            _validate_entries(doc)
            return doc
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            backup_path = self._path.with_suffix(".bak")
            shutil.copy2(self._path, backup_path)
            log_event("store_corrupted", {"path": str(self._path), "backup": str(backup_path)}, level="warn")
            return _empty_document()

    def _save(self) -> None:
        """Save state with atomic write."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps(self._doc, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_path, self._path)

    # ------------------------------------------------------------------
    # Drills and schedules
    # ------------------------------------------------------------------

    def add_drill(self, drill: Drill, now: datetime | None = None) -> DrillSchedule:
        """Store a drill and give it an initial (immediately due) schedule.

        A drill that is already stored keeps its current schedule, so
        regenerating the same seeded drill does not reset its progress.
        """
        existing = self._doc["schedules"].get(drill.id)
        if existing is not None:
            log_event("drill_already_stored", {"drill_id": drill.id})
            return schedule_from_dict(existing)

        schedule = self._scheduler.initial(drill.id, now)
        self._doc["drills"][drill.id] = drill_to_dict(drill)
        self._doc["schedules"][drill.id] = schedule_to_dict(schedule)
        self._save()
        return schedule

    def get_drill(self, drill_id: str) -> Drill:
        """Find a drill by ID.

        Raises:
            ValueError: If no drill with that ID exists.
        """
        data = self._doc["drills"].get(drill_id)
        if data is None:
            raise ValueError(f"Drill not found: {drill_id}")
        return drill_from_dict(data)

    def get_schedule(self, drill_id: str) -> DrillSchedule:
        data = self._doc["schedules"].get(drill_id)
        if data is None:
            raise ValueError(f"Drill not found: {drill_id}")
        return schedule_from_dict(data)

    def get_due_drills(self, now: datetime | None = None) -> list[Drill]:
        """Drills whose next_due_at is at or before now, oldest first."""
        now = now or datetime.now(timezone.utc)
        schedules = [schedule_from_dict(s) for s in self._doc["schedules"].values()]
        due = [s for s in schedules if is_due(s, now=now)]
        due.sort(key=lambda s: s.next_due_at)
        return [self.get_drill(s.drill_id) for s in due]

    # ------------------------------------------------------------------
    # Skills and history
    # ------------------------------------------------------------------

    def get_skill(self, theme: Theme | str) -> SkillState:
        data = self._doc["skills"].get(Theme(theme).value)
        if data is None:
            return create_initial_skill(self._config)
        return skill_from_dict(data)

    def get_skills(self) -> dict[str, SkillState]:
        """Skill state for every theme, defaults for untouched ones."""
        return {theme.value: self.get_skill(theme) for theme in Theme}

    def get_history(self, theme: Theme | str) -> list[Outcome]:
        return [Outcome(o) for o in self._doc["history"].get(Theme(theme).value, [])]

    def is_theme_locked(self, theme: Theme | str) -> bool:
        return self._classifier.should_lock_theme(self.get_history(theme))

    # ------------------------------------------------------------------
    # Learning loop
    # ------------------------------------------------------------------

    def record_attempt(
        self,
        drill_id: str,
        is_correct: bool,
        duration_ms: int,
        retry_count: int,
        now: datetime | None = None,
    ) -> dict:
        """Classify raw telemetry, then apply it like record_outcome."""
        outcome = self._classifier.classify(is_correct, duration_ms, retry_count)
        return self.record_outcome(drill_id, outcome, now=now)

    def record_outcome(
        self, drill_id: str, outcome: Outcome, now: datetime | None = None
    ) -> dict:
        """Apply an outcome to the drill's schedule and its theme's skill.

        Args:
            drill_id: ID of a stored drill.
            outcome: Normalized outcome of the attempt.
            now: Review time; defaults to the current UTC time.

        Returns:
            Dict with outcome, feedback, schedule, skill and theme_locked.

        Raises:
            ValueError: If drill_id is not found.
        """
        now = now or datetime.now(timezone.utc)
        outcome = Outcome(outcome)
        drill = self.get_drill(drill_id)

        schedule = self._scheduler.calculate_next(self.get_schedule(drill_id), outcome, now)
        skill = self._skill_policy.update(
            self.get_skill(drill.theme), outcome, drill.difficulty, now
        )

        theme = drill.theme.value
        keep = max(_HISTORY_LIMIT, self._config.tilt_failure_limit)
        history = [*self._doc["history"].get(theme, []), outcome.value][-keep:]

        self._doc["schedules"][drill_id] = schedule_to_dict(schedule)
        self._doc["skills"][theme] = skill_to_dict(skill)
        self._doc["history"][theme] = history
        self._save()

        locked = self._classifier.should_lock_theme([Outcome(o) for o in history])
        log_event(
            "drill_completed",
            {"drill_id": drill_id, "outcome": outcome.value, "theme": theme, "locked": locked},
        )
        return {
            "drill_id": drill_id,
            "outcome": outcome.value,
            "feedback": outcome_feedback(outcome),
            "schedule": schedule_to_dict(schedule),
            "skill": skill_to_dict(skill),
            "theme": theme,
            "theme_locked": locked,
        }

    def get_stats(self, now: datetime | None = None) -> dict:
        """Summary statistics about drills and skills.

        Returns:
            Dict with keys: total, due, avg_ease, by_theme, mastered, locked.
        """
        now = now or datetime.now(timezone.utc)
        schedules = [schedule_from_dict(s) for s in self._doc["schedules"].values()]
        by_theme: dict[str, int] = {}
        for data in self._doc["drills"].values():
            by_theme[data["theme"]] = by_theme.get(data["theme"], 0) + 1

        total = len(schedules)
        skills = self.get_skills()
        return {
            "total": total,
            "due": sum(1 for s in schedules if is_due(s, now=now)),
            "avg_ease": round(sum(s.ease_factor for s in schedules) / total, 3) if total > 0 else 0.0,
            "by_theme": by_theme,
            "mastered": sorted(t for t, s in skills.items() if is_mastered(s, self._config)),
            "locked": sorted(t.value for t in Theme if self.is_theme_locked(t)),
        }


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _cli_generate(store: TrainingStore, args: argparse.Namespace, config: EngineConfig) -> int:
    """Generate a drill from a PGN file (or the demo game) and store it."""
    pool = list(load_pgn_file(args.pgn)) if args.pgn else demo_games()
    if args.time_control:
        pool = filter_by_time_control(pool, args.time_control)

    rng = random.Random(args.seed) if args.seed is not None else None
    result = generate_drill(pool, args.mode, args.start_move, rng=rng, config=config)
    if isinstance(result, GenerationFailure):
        _print_json({"error": result.reason, "attempts": result.attempts})
        return 1
    if store.is_theme_locked(result.theme):
        _print_json({"error": f"Theme '{result.theme.value}' is locked after repeated failures"})
        return 1

    store.add_drill(result)
    _print_json(drill_to_dict(result))
    return 0


def _cli_review(store: TrainingStore, args: argparse.Namespace) -> int:
    if args.abandon:
        result = store.record_outcome(args.drill_id, Outcome.ABANDONED)
    else:
        result = store.record_attempt(
            args.drill_id, args.correct, args.duration_ms, args.retries
        )
    _print_json(result)
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for the training store."""
    parser = argparse.ArgumentParser(
        description="CoachReps - adaptive drills from your own games"
    )
    parser.add_argument("--store", type=str, default=None, help="Training store JSON path")
    parser.add_argument("--config", type=str, default=None, help="Engine config JSON path")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    gen_parser = subparsers.add_parser("generate", help="Generate and store a drill")
    gen_parser.add_argument("--pgn", type=str, default=None, help="PGN file (default: demo game)")
    gen_parser.add_argument(
        "--mode",
        type=str,
        default=SelectionMode.ANY.value,
        choices=[m.value for m in SelectionMode],
        help="Selection mode",
    )
    gen_parser.add_argument("--start-move", type=int, default=None, help="Move for START_FROM_MOVE")
    gen_parser.add_argument("--seed", type=int, default=None, help="Random seed")
    gen_parser.add_argument(
        "--time-control",
        type=str,
        action="append",
        choices=TIME_CONTROLS,
        help="Allowed time-control class (repeatable)",
    )

    review_parser = subparsers.add_parser("review", help="Record an attempt on a drill")
    review_parser.add_argument("drill_id", type=str, help="Drill ID")
    result_group = review_parser.add_mutually_exclusive_group(required=True)
    result_group.add_argument("--correct", dest="correct", action="store_true")
    result_group.add_argument("--incorrect", dest="correct", action="store_false")
    result_group.add_argument("--abandon", action="store_true", help="Give up on the drill")
    review_parser.add_argument("--duration-ms", type=int, default=0, help="Time spent")
    review_parser.add_argument("--retries", type=int, default=0, help="Wrong tries before this one")

    subparsers.add_parser("due", help="List due drills")
    subparsers.add_parser("skills", help="Show skill state per theme")
    subparsers.add_parser("stats", help="Show training statistics")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    config = load_config(args.config)
    store = TrainingStore(args.store, config=config)

    try:
        if args.command == "generate":
            return _cli_generate(store, args, config)
        if args.command == "review":
            return _cli_review(store, args)
        if args.command == "due":
            _print_json([drill_to_dict(d) for d in store.get_due_drills()])
        elif args.command == "skills":
            _print_json({t: skill_to_dict(s) for t, s in store.get_skills().items()})
        elif args.command == "stats":
            _print_json(store.get_stats())
    except ValueError as exc:
        _print_json({"error": str(exc)})
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
