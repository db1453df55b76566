"""Drill generation from a pool of historical games.

Samples a game, picks a ply according to the selection mode, and cuts
the next few plies out as the solution line. Candidates that cannot
produce a usable position are rejected and the next attempt is made;
the loop is bounded and ends in a GenerationFailure.
"""

from __future__ import annotations

import functools
import io
import random
import uuid
from collections.abc import Sequence

import chess
import chess.pgn

from coachreps.config import DEFAULT_CONFIG, EngineConfig
from coachreps.games import clean_pgn
from coachreps.log import log_event
from coachreps.models import Drill, Game, GenerationFailure, Ply, SelectionMode, Theme

# Weighted distribution used when the mode is ANY
_ANY_WEIGHTS: dict[SelectionMode, int] = {
    SelectionMode.CRITICAL_POSITION: 40,
    SelectionMode.RANDOM_MOMENT: 25,
    SelectionMode.START_FROM_MOVE: 20,
    SelectionMode.ENDGAME_FINISH: 15,
}

# Plies kept clear at the end of the game when sampling a moment
_TAIL_MARGIN = 8

# ENDGAME_FINISH starts this many plies before the end
_ENDGAME_DEPTH = 20

_BASELINE_DIFFICULTY = 3


class CandidateRejected(Exception):
    """A sampled game/ply cannot produce a drill; try the next candidate."""


@functools.lru_cache(maxsize=256)
def _replay(pgn: str) -> tuple[Ply, ...]:
    node = chess.pgn.read_game(io.StringIO(clean_pgn(pgn)))
    if node is None:
        raise CandidateRejected("no game in PGN")
    if node.errors:
        raise CandidateRejected(f"malformed PGN: {node.errors[0]}")

    board = node.board()
    plies: list[Ply] = []
    for index, move in enumerate(node.mainline_moves()):
        fen_before = board.fen()
        san = board.san(move)
        plies.append(
            Ply(
                index=index,
                san=san,
                uci=move.uci(),
                fen_before=fen_before,
                is_capture="x" in san,
                is_check="+" in san,
                is_mate="#" in san,
            )
        )
        board.push(move)
    return tuple(plies)


def materialize_plies(game: Game) -> tuple[Ply, ...]:
    """Replay a game once and index every ply with the position before it.

    Raises:
        CandidateRejected: If the game's notation cannot be parsed.
    """
    return _replay(game.pgn)


def _resolve_mode(mode: SelectionMode, rng: random.Random) -> SelectionMode:
    if mode is not SelectionMode.ANY:
        return mode
    modes = list(_ANY_WEIGHTS)
    return rng.choices(modes, weights=[_ANY_WEIGHTS[m] for m in modes], k=1)[0]


def _target_ply(
    plies: Sequence[Ply],
    mode: SelectionMode,
    start_move: int,
    rng: random.Random,
    config: EngineConfig,
) -> tuple[int, bool]:
    """Return (target index, whether a tactical marker was found)."""
    n = len(plies)
    low = config.min_history_plies

    if mode is SelectionMode.RANDOM_MOMENT:
        return rng.randint(low, max(low, n - _TAIL_MARGIN)), False

    if mode is SelectionMode.CRITICAL_POSITION:
        candidates = [p.index for p in plies[low:max(low, n - _TAIL_MARGIN)] if p.is_tactical]
        if candidates:
            return rng.choice(candidates), True
        return n // 2, False

    if mode is SelectionMode.START_FROM_MOVE:
        return max(0, (start_move - 1) * 2), False

    if mode is SelectionMode.ENDGAME_FINISH:
        return max(0, n - _ENDGAME_DEPTH), False

    raise ValueError(f"Unresolved selection mode: {mode}")


def _describe(
    mode: SelectionMode, ply: Ply, start_move: int, tactical: bool
) -> tuple[Theme, str, str]:
    """Theme, goal and explanation text for a drill."""
    played = ply.san
    if mode is SelectionMode.RANDOM_MOMENT:
        return (
            Theme.ADVANTAGE,
            "Find the continuation",
            f"{played} was played here. Keep the advantage going.",
        )
    if mode is SelectionMode.CRITICAL_POSITION:
        if not tactical:
            return (
                Theme.TACTICS,
                "Find the critical move",
                f"No forcing move was found; this is a quiet middlegame moment where {played} was played.",
            )
        if ply.is_mate:
            detail = f"{played} delivers checkmate."
        elif ply.is_capture:
            detail = f"{played} wins material with a capture."
        else:
            detail = f"{played} gives check and keeps the initiative."
        return Theme.TACTICS, "Find the critical move", detail
    if mode is SelectionMode.ENDGAME_FINISH:
        return (
            Theme.ENDGAME,
            "Convert the endgame",
            f"{played} starts the winning technique in this ending.",
        )
    return (
        Theme.TACTICS,
        "Find the best move",
        f"Training from move {start_move}. {played} was played in the game.",
    )


def _build_candidate(
    game: Game,
    mode: SelectionMode,
    start_move: int,
    rng: random.Random,
    config: EngineConfig,
    requested: SelectionMode,
) -> Drill:
    plies = materialize_plies(game)
    n = len(plies)
    if n < config.min_history_plies:
        raise CandidateRejected(f"history too short ({n} plies)")

    target, tactical = _target_ply(plies, mode, start_move, rng, config)
    target = max(0, min(target, n - config.solution_plies))

    fen = plies[target].fen_before
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        raise CandidateRejected(f"unreadable position: {exc}") from exc
    if not board.is_valid():
        raise CandidateRejected(f"invalid position at ply {target}")

    # Only an explicit START_FROM_MOVE request may open on the initial position.
    if board.board_fen() == chess.STARTING_BOARD_FEN and requested is not SelectionMode.START_FROM_MOVE:
        raise CandidateRejected("position is the starting arrangement")

    solution = tuple(p.san for p in plies[target:target + config.solution_plies])
    if not solution:
        raise CandidateRejected("empty solution")

    if mode is SelectionMode.CRITICAL_POSITION and not tactical:
        log_event("critical_fallback", {"game_id": game.id, "ply": target}, level="warn")

    theme, goal, explanation = _describe(mode, plies[target], start_move, tactical)
    suffix = uuid.UUID(int=rng.getrandbits(128), version=4).hex[:8]
    return Drill(
        id=f"{mode.value.lower()}-{game.id}-{suffix}",
        source_game_id=game.id,
        fen=fen,
        theme=theme,
        goal=goal,
        solution_san=solution,
        difficulty=_BASELINE_DIFFICULTY,
        explanation=explanation,
        played_move_san=plies[target].san,
        ply_index=target,
        mode=mode,
    )


def generate_drill(
    pool: Sequence[Game],
    mode: SelectionMode | str,
    start_move: int | None = None,
    *,
    rng: random.Random | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Drill | GenerationFailure:
    """Sample a drill from a pool of games.

    Args:
        pool: Candidate games.
        mode: Selection mode (enum or its name).
        start_move: Full-move number for START_FROM_MOVE (default 10).
        rng: Random source; pass a seeded random.Random for reproducibility.
        config: Generation limits.

    Returns:
        A Drill, or a GenerationFailure when the pool is empty or no
        candidate survives within the attempt budget.

    Raises:
        ValueError: If mode is not a known selection mode.
    """
    mode = SelectionMode(mode)
    rng = rng or random.Random()
    if start_move is None:
        start_move = config.default_start_move

    log_event("drill_generation_started", {"mode": mode.value, "pool": len(pool)})
    if not pool:
        return GenerationFailure(reason="empty pool", attempts=0)

    for attempt in range(1, config.max_generation_attempts + 1):
        game = rng.choice(pool)
        concrete = _resolve_mode(mode, rng)
        try:
            drill = _build_candidate(game, concrete, start_move, rng, config, requested=mode)
        except CandidateRejected as exc:
            log_event(
                "candidate_rejected",
                {"game_id": game.id, "attempt": attempt, "reason": str(exc)},
                level="debug",
            )
            continue

        log_event(
            "drill_generated",
            {"drill_id": drill.id, "game_id": game.id, "ply": drill.ply_index, "fen": drill.fen},
        )
        return drill

    log_event(
        "drill_generation_failed",
        {"mode": mode.value, "attempts": config.max_generation_attempts},
        level="warn",
    )
    return GenerationFailure(
        reason="no valid drill found", attempts=config.max_generation_attempts
    )


def _strip_markers(san: str) -> str:
    return san.replace("+", "").replace("#", "")


def check_solution_move(drill: Drill, index: int, move_san: str) -> bool:
    """Compare a learner's move to the solution, ignoring check/mate markers."""
    if index < 0 or index >= len(drill.solution_san):
        return False
    return _strip_markers(move_san.strip()) == _strip_markers(drill.solution_san[index])
