"""Game import helpers: PGN text and files into Game records.

Network retrieval from Lichess / Chess.com is out of scope; this module
accepts PGN already on disk or in memory and normalizes its metadata.
"""

from __future__ import annotations

import io
import re
import uuid
from collections.abc import Iterable, Iterator
from pathlib import Path

import chess.pgn

from coachreps.log import log_event
from coachreps.models import Game

_COMMENT_RE = re.compile(r"\{[^}]*\}")

# Platform speed / time_class names -> time-control class
_SPEED_MAP: dict[str, str] = {
    "ultrabullet": "bullet",
    "bullet": "bullet",
    "blitz": "blitz",
    "rapid": "rapid",
    "classical": "classical",
    "correspondence": "daily",
    "daily": "daily",
}

TIME_CONTROLS = ("bullet", "blitz", "rapid", "classical", "daily", "unknown")

DEMO_PGN = """[Event "Casual Game"]
[Site "Berlin GER"]
[Date "1852.??.??"]
[Round "?"]
[White "Adolf Anderssen"]
[Black "Jean Dufresne"]
[Result "1-0"]

1. e4 e5 2. Nf3 Nc6 3. Bc4 Bc5 4. b4 Bxb4 5. c3 Ba5 6. d4 exd4 7. O-O d3
8. Qb3 Qf6 9. e5 Qg6 10. Re1 Nge7 11. Ba3 b5 12. Qxb5 Rb8 13. Qa4 Bb6
14. Nbd2 Bb7 15. Ne4 Qf5 16. Bxd3 Qh5 17. Nf6+ gxf6 18. exf6 Rg8 19. Rad1 Qxf3
20. Rxe7+ Nxe7 21. Qxd7+ Kxd7 22. Bf5+ Ke8 23. Bd7+ Kf8 24. Bxe7# 1-0
"""


def clean_pgn(pgn: str) -> str:
    """Strip {comments} and surrounding whitespace from PGN text."""
    return _COMMENT_RE.sub("", pgn.strip())


def classify_time_control(value: str | None) -> str:
    """Map a TimeControl header or platform speed name to a class.

    Accepts "300+0"-style headers (base seconds + increment, classified by
    estimated duration over 40 moves) and names such as "blitz" or
    "correspondence".
    """
    if not value:
        return "unknown"

    value = value.strip()
    named = _SPEED_MAP.get(value.lower())
    if named:
        return named

    if value == "-" or "/" in value:
        # "-" = no clock, "1/86400" = days per move
        return "daily"

    match = re.fullmatch(r"(\d+)(?:\+(\d+))?", value)
    if match is None:
        return "unknown"

    base = int(match.group(1))
    increment = int(match.group(2) or 0)
    estimated = base + 40 * increment
    if estimated < 180:
        return "bullet"
    if estimated < 480:
        return "blitz"
    if estimated < 1500:
        return "rapid"
    return "classical"


def _game_from_node(
    node: chess.pgn.Game, pgn_text: str, source: str, game_id: str | None
) -> Game:
    headers = node.headers
    event = headers.get("Event", "")
    return Game(
        id=game_id or headers.get("GameId") or str(uuid.uuid4()),
        pgn=pgn_text,
        white=headers.get("White", "?"),
        black=headers.get("Black", "?"),
        result=headers.get("Result", "*"),
        time_control=classify_time_control(headers.get("TimeControl")),
        date=headers.get("Date", "????.??.??"),
        source=source,
        rated="rated" in event.lower() and "unrated" not in event.lower(),
    )


def game_from_pgn(pgn: str, source: str = "pgn", game_id: str | None = None) -> Game:
    """Build a Game from a single PGN string.

    Only headers are read here; the move list is materialized later by the
    drill generator, which rejects malformed notation per candidate.

    Raises:
        ValueError: If the text contains no game at all.
    """
    cleaned = clean_pgn(pgn)
    node = chess.pgn.read_game(io.StringIO(cleaned))
    if node is None:
        raise ValueError("No game found in PGN text")
    return _game_from_node(node, cleaned, source, game_id)


def load_pgn_file(path: str | Path, source: str = "pgn") -> Iterator[Game]:
    """Yield every game in a (possibly multi-game) PGN file."""
    pgn_path = Path(path)
    text = pgn_path.read_text(encoding="utf-8", errors="replace")
    stream = io.StringIO(text)
    count = 0
    while True:
        offset = stream.tell()
        node = chess.pgn.read_game(stream)
        if node is None:
            break
        count += 1
        if node.errors:
            # Keep the raw text so the generator sees (and rejects) the bad notation
            game_text = clean_pgn(text[offset:stream.tell()])
        else:
            exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=False)
            game_text = node.accept(exporter)
        yield _game_from_node(node, game_text, source, f"{pgn_path.stem}-{count}")
    log_event("pgn_loaded", {"path": str(pgn_path), "games": count})


def filter_by_time_control(pool: Iterable[Game], allowed: Iterable[str]) -> list[Game]:
    """Keep games whose class is allowed; 'unknown' always passes."""
    allowed_set = set(allowed)
    return [g for g in pool if g.time_control in allowed_set or g.time_control == "unknown"]


def demo_games() -> list[Game]:
    """The Evergreen game, used when a learner has imported nothing yet."""
    return [
        Game(
            id="demo-game-1",
            pgn=clean_pgn(DEMO_PGN),
            white="Adolf Anderssen",
            black="Jean Dufresne",
            result="1-0",
            time_control="classical",
            date="1852.??.??",
            source="demo",
            rated=False,
        )
    ]
