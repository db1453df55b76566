"""MCP server for CoachReps.

Exposes the adaptive training loop to an agent via FastMCP: drill
generation from the learner's PGN games, move checking, attempt
submission, and skill / schedule reports. State lives in the JSON
training store under $COACHREPS_DATA_DIR.
"""

from __future__ import annotations

import random
import sys
from pathlib import Path

# Add project root for imports when run from a checkout
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT))

import chess
from mcp.server.fastmcp import FastMCP

from coachreps.config import data_dir, load_config
from coachreps.drill_generator import check_solution_move, generate_drill as _generate
from coachreps.games import demo_games, filter_by_time_control, load_pgn_file
from coachreps.log import get_recent_logs, log_event
from coachreps.models import GenerationFailure, Outcome
from coachreps.store import TrainingStore, drill_to_dict, skill_to_dict

mcp = FastMCP("coachreps")

_CONFIG = load_config()
_STORE_PATH = data_dir() / "training.json"


def _store() -> TrainingStore:
    return TrainingStore(_STORE_PATH, config=_CONFIG)


def _drill_view(drill: dict) -> dict:
    """Hide the solution line from the agent until the learner is done."""
    view = {k: v for k, v in drill.items() if k not in ("solution_san", "played_move_san")}
    view["solution_length"] = len(drill["solution_san"])
    view["side_to_move"] = "white" if chess.Board(drill["fen"]).turn == chess.WHITE else "black"
    return view


# ---------------------------------------------------------------------------
# Drill tools
# ---------------------------------------------------------------------------


@mcp.tool()
def generate_drill(
    pgn_path: str | None = None,
    mode: str = "ANY",
    start_move: int | None = None,
    seed: int | None = None,
    time_controls: list[str] | None = None,
) -> dict:
    """Generate a training drill from the learner's games.

    Args:
        pgn_path: PGN file with the learner's games. Demo game if omitted.
        mode: RANDOM_MOMENT, CRITICAL_POSITION, START_FROM_MOVE,
            ENDGAME_FINISH or ANY.
        start_move: Full-move number for START_FROM_MOVE (default 10).
        seed: Optional random seed for reproducible selection.
        time_controls: Allowed time-control classes (e.g. ['blitz', 'rapid']).

    Returns:
        Drill dict without its solution, or an error dict.
    """
    if pgn_path is not None and not Path(pgn_path).exists():
        return {"error": f"PGN file not found: {pgn_path}"}

    pool = list(load_pgn_file(pgn_path)) if pgn_path else demo_games()
    if time_controls:
        pool = filter_by_time_control(pool, time_controls)

    rng = random.Random(seed) if seed is not None else None
    try:
        result = _generate(pool, mode, start_move, rng=rng, config=_CONFIG)
    except ValueError as exc:
        return {"error": str(exc)}

    if isinstance(result, GenerationFailure):
        return {
            "error": f"Could not generate a drill: {result.reason}",
            "attempts": result.attempts,
        }

    store = _store()
    if store.is_theme_locked(result.theme):
        return {
            "error": f"Theme '{result.theme.value}' is locked after repeated failures. "
            "Review the fundamentals before drilling it again."
        }

    schedule = store.add_drill(result)
    view = _drill_view(drill_to_dict(result))
    view["next_due_at"] = schedule.next_due_at.isoformat()
    return view


@mcp.tool()
def check_move(drill_id: str, index: int, move_san: str) -> dict:
    """Check one learner move against a drill's solution line.

    Args:
        drill_id: ID of a stored drill.
        index: Position in the solution line (0 = first move).
        move_san: The learner's move in SAN.

    Returns:
        Dict with correct flag, and the expected move once the line is done
        or the move is wrong.
    """
    try:
        drill = _store().get_drill(drill_id)
    except ValueError as exc:
        return {"error": str(exc)}

    if index < 0 or index >= len(drill.solution_san):
        return {"error": f"Index out of range: {index}"}

    board = chess.Board(drill.fen)
    for san in drill.solution_san[:index]:
        board.push_san(san)

    try:
        board.parse_san(move_san)
    except (chess.InvalidMoveError, chess.IllegalMoveError, chess.AmbiguousMoveError):
        legal = [board.san(m) for m in board.legal_moves]
        return {"error": f"Illegal move: {move_san}. Legal moves: {legal}"}

    correct = check_solution_move(drill, index, move_san)
    response = {
        "drill_id": drill_id,
        "index": index,
        "correct": correct,
        "complete": correct and index + 1 >= len(drill.solution_san),
    }
    if not correct:
        response["expected"] = drill.solution_san[index]
    return response


@mcp.tool()
def submit_attempt(
    drill_id: str,
    is_correct: bool,
    duration_ms: int,
    retry_count: int = 0,
    abandoned: bool = False,
) -> dict:
    """Record a finished drill attempt and update skill and schedule.

    Args:
        drill_id: ID of a stored drill.
        is_correct: Whether the learner solved it.
        duration_ms: Time spent on the drill.
        retry_count: Wrong tries (or hints) before solving.
        abandoned: True if the learner skipped the drill.

    Returns:
        Dict with outcome, feedback, updated schedule, skill and lock flag.
    """
    store = _store()
    try:
        if abandoned:
            return store.record_outcome(drill_id, Outcome.ABANDONED)
        return store.record_attempt(drill_id, is_correct, duration_ms, retry_count)
    except ValueError as exc:
        return {"error": str(exc)}


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@mcp.tool()
def due_drills() -> dict:
    """List drills due for review, oldest first."""
    drills = _store().get_due_drills()
    return {"count": len(drills), "drills": [_drill_view(drill_to_dict(d)) for d in drills]}


@mcp.tool()
def skill_report() -> dict:
    """Mastery, confidence, streak and lock state per theme."""
    store = _store()
    report = {}
    for theme, skill in store.get_skills().items():
        entry = skill_to_dict(skill)
        entry["locked"] = store.is_theme_locked(theme)
        report[theme] = entry
    return report


@mcp.tool()
def training_stats() -> dict:
    """Totals, due count, average ease and mastered / locked themes."""
    return _store().get_stats()


@mcp.tool()
def recent_logs(limit: int = 20) -> dict:
    """Recent engine events for diagnostics."""
    logs = get_recent_logs()[:max(0, limit)]
    return {"count": len(logs), "events": logs}


if __name__ == "__main__":
    log_event("server_started", {"store": str(_STORE_PATH)})
    mcp.run()
