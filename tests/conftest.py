"""Shared test fixtures.

Fixtures:
    demo_game       - The Evergreen game (47 plies, plenty of tactics).
    short_game      - A 3-ply game, below the generation minimum.
    shuffle_game    - 20 plies of knight shuffling; every 4th ply returns
                      to the starting arrangement and nothing is forcing.
    malformed_game  - A game whose movetext cannot be parsed.
    fixed_now       - A fixed UTC timestamp for deterministic scheduling.
    store           - A TrainingStore backed by a temp file.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT))

from coachreps.games import demo_games  # noqa: E402
from coachreps.log import clear_logs  # noqa: E402
from coachreps.models import Game  # noqa: E402
from coachreps.store import TrainingStore  # noqa: E402

SHORT_PGN = """[Event "Blitz"]
[White "A"]
[Black "B"]
[Result "*"]

1. e4 e5 2. Nf3 *
"""

SHUFFLE_PGN = """[Event "Shuffle"]
[White "A"]
[Black "B"]
[Result "*"]

1. Nf3 Nf6 2. Ng1 Ng8 3. Nf3 Nf6 4. Ng1 Ng8 5. Nf3 Nf6 6. Ng1 Ng8
7. Nf3 Nf6 8. Ng1 Ng8 9. Nf3 Nf6 10. Ng1 Ng8 *
"""

MALFORMED_PGN = """[Event "Broken"]
[Result "*"]

1. e4 e5 2. Ke3 Nc6 3. Bb5 a6 4. O-O Nf6 5. Re1 Be7 6. c3 b5 7. Bb3 d6 *
"""


@pytest.fixture()
def demo_game() -> Game:
    return demo_games()[0]


@pytest.fixture()
def short_game() -> Game:
    return Game(id="short-1", pgn=SHORT_PGN)


@pytest.fixture()
def shuffle_game() -> Game:
    return Game(id="shuffle-1", pgn=SHUFFLE_PGN)


@pytest.fixture()
def malformed_game() -> Game:
    return Game(id="broken-1", pgn=MALFORMED_PGN)


@pytest.fixture()
def fixed_now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def store(tmp_path) -> TrainingStore:
    return TrainingStore(tmp_path / "training.json")


@pytest.fixture(autouse=True)
def reset_logs():
    """Start every test with an empty event buffer."""
    clear_logs()
    yield
    clear_logs()
