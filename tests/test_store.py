"""Pytest tests for the TrainingStore and its CLI.

Tests cover drill lifecycle, the full learning loop on an attempt,
due filtering, tilt locking, persistence, corrupted file recovery,
and the JSON-emitting CLI. All tests use tmp_path for isolation.
"""

from __future__ import annotations

import json
import random
from datetime import timedelta

import pytest

from coachreps.config import EngineConfig
from coachreps.drill_generator import generate_drill
from coachreps.models import Outcome, SelectionMode, Theme
from coachreps.store import TrainingStore, drill_from_dict, drill_to_dict, main


def _add_demo_drill(store: TrainingStore, demo_game, now, mode=SelectionMode.START_FROM_MOVE, seed=1):
    drill = generate_drill([demo_game], mode, 10, rng=random.Random(seed))
    store.add_drill(drill, now=now)
    return drill


# ---------------------------------------------------------------------------
# Drill lifecycle
# ---------------------------------------------------------------------------


class TestDrills:

    def test_add_and_get(self, store, demo_game, fixed_now):
        drill = _add_demo_drill(store, demo_game, fixed_now)
        assert store.get_drill(drill.id) == drill
        schedule = store.get_schedule(drill.id)
        assert schedule.interval == 0
        assert schedule.next_due_at == fixed_now

    def test_re_adding_keeps_schedule(self, store, demo_game, fixed_now):
        drill = _add_demo_drill(store, demo_game, fixed_now)
        for _ in range(3):
            store.record_outcome(drill.id, Outcome.PERFECT, now=fixed_now)
        progressed = store.get_schedule(drill.id)
        assert progressed.repetition == 3

        again = _add_demo_drill(store, demo_game, fixed_now + timedelta(days=1))
        assert again.id == drill.id
        assert store.get_schedule(drill.id) == progressed
        assert store.get_stats(now=fixed_now)["total"] == 1

    def test_unknown_drill(self, store):
        with pytest.raises(ValueError, match="Drill not found"):
            store.get_drill("missing")
        with pytest.raises(ValueError, match="Drill not found"):
            store.record_attempt("missing", True, 1000, 0)

    def test_serialization_round_trip(self, demo_game):
        drill = generate_drill([demo_game], SelectionMode.ENDGAME_FINISH, rng=random.Random(2))
        assert drill_from_dict(json.loads(json.dumps(drill_to_dict(drill)))) == drill

    def test_persisted_across_instances(self, tmp_path, demo_game, fixed_now):
        path = tmp_path / "training.json"
        drill = _add_demo_drill(TrainingStore(path), demo_game, fixed_now)
        TrainingStore(path).record_attempt(drill.id, True, 4000, 0, now=fixed_now)

        reloaded = TrainingStore(path)
        assert reloaded.get_schedule(drill.id).interval == 1
        assert reloaded.get_skill(Theme.TACTICS).streak == 1


# ---------------------------------------------------------------------------
# Learning loop
# ---------------------------------------------------------------------------


class TestRecordAttempt:

    def test_perfect_attempt(self, store, demo_game, fixed_now):
        drill = _add_demo_drill(store, demo_game, fixed_now)
        result = store.record_attempt(drill.id, True, 5000, 0, now=fixed_now)

        assert result["outcome"] == "PERFECT"
        assert result["theme"] == "tactics"
        assert result["schedule"]["interval"] == 1
        assert result["skill"]["mastery"] == pytest.approx(53.68, abs=0.01)
        assert result["theme_locked"] is False
        assert result["feedback"].startswith("PERFECT")

    def test_only_drill_theme_changes(self, store, demo_game, fixed_now):
        drill = _add_demo_drill(store, demo_game, fixed_now)
        store.record_attempt(drill.id, False, 5000, 1, now=fixed_now)
        skills = store.get_skills()
        assert skills["tactics"].mastery < 40
        assert skills["endgame"].mastery == 40
        assert skills["advantage"].last_practiced_at is None

    def test_three_failures_lock_theme(self, store, demo_game, fixed_now):
        drill = _add_demo_drill(store, demo_game, fixed_now)
        results = [store.record_attempt(drill.id, False, 9000, 1, now=fixed_now) for _ in range(3)]
        assert [r["theme_locked"] for r in results] == [False, False, True]
        assert store.is_theme_locked(Theme.TACTICS)
        assert not store.is_theme_locked(Theme.ENDGAME)

    def test_success_unlocks(self, store, demo_game, fixed_now):
        drill = _add_demo_drill(store, demo_game, fixed_now)
        for _ in range(3):
            store.record_outcome(drill.id, Outcome.FAILURE, now=fixed_now)
        store.record_outcome(drill.id, Outcome.SLOW_SUCCESS, now=fixed_now)
        assert not store.is_theme_locked(Theme.TACTICS)

    def test_abandoned_recorded(self, store, demo_game, fixed_now):
        drill = _add_demo_drill(store, demo_game, fixed_now)
        result = store.record_outcome(drill.id, Outcome.ABANDONED, now=fixed_now)
        assert result["outcome"] == "ABANDONED"
        assert result["schedule"]["ease_factor"] == pytest.approx(1.7)
        assert store.get_history(Theme.TACTICS) == [Outcome.ABANDONED]

    def test_history_is_bounded(self, store, demo_game, fixed_now):
        drill = _add_demo_drill(store, demo_game, fixed_now)
        for _ in range(25):
            store.record_outcome(drill.id, Outcome.PERFECT, now=fixed_now)
        assert len(store.get_history(Theme.TACTICS)) == 20

    def test_history_covers_high_tilt_limit(self, tmp_path, demo_game, fixed_now):
        store = TrainingStore(tmp_path / "training.json", config=EngineConfig(tilt_failure_limit=25))
        drill = _add_demo_drill(store, demo_game, fixed_now)
        results = [store.record_outcome(drill.id, Outcome.FAILURE, now=fixed_now) for _ in range(30)]
        assert results[23]["theme_locked"] is False
        assert results[24]["theme_locked"] is True
        assert len(store.get_history(Theme.TACTICS)) == 25


# ---------------------------------------------------------------------------
# Due drills and stats
# ---------------------------------------------------------------------------


class TestDueAndStats:

    def test_due_filtering(self, store, demo_game, fixed_now):
        reviewed = _add_demo_drill(store, demo_game, fixed_now, seed=1)
        fresh = _add_demo_drill(store, demo_game, fixed_now, mode=SelectionMode.ENDGAME_FINISH, seed=2)
        store.record_attempt(reviewed.id, True, 3000, 0, now=fixed_now)

        assert [d.id for d in store.get_due_drills(now=fixed_now)] == [fresh.id]
        later = fixed_now + timedelta(days=1)
        assert {d.id for d in store.get_due_drills(now=later)} == {reviewed.id, fresh.id}

    def test_stats(self, store, demo_game, fixed_now):
        drill = _add_demo_drill(store, demo_game, fixed_now, seed=1)
        _add_demo_drill(store, demo_game, fixed_now, mode=SelectionMode.ENDGAME_FINISH, seed=2)
        store.record_attempt(drill.id, True, 3000, 0, now=fixed_now)

        stats = store.get_stats(now=fixed_now)
        assert stats["total"] == 2
        assert stats["due"] == 1
        assert stats["avg_ease"] == round((2.6 + 2.5) / 2, 3)
        assert stats["by_theme"] == {"tactics": 1, "endgame": 1}
        assert stats["mastered"] == []
        assert stats["locked"] == []

    def test_stats_empty(self, store):
        stats = store.get_stats()
        assert stats["total"] == 0
        assert stats["due"] == 0
        assert stats["avg_ease"] == 0.0


class TestCorruptedStore:

    def test_corrupted_json(self, tmp_path, demo_game, fixed_now):
        path = tmp_path / "training.json"
        path.write_text("{invalid json[[[", encoding="utf-8")

        store = TrainingStore(path)
        assert store.get_stats()["total"] == 0

        backup = tmp_path / "training.bak"
        assert backup.read_text(encoding="utf-8") == "{invalid json[[["

        _add_demo_drill(store, demo_game, fixed_now)
        assert store.get_stats()["total"] == 1

    def test_wrong_shape(self, tmp_path):
        path = tmp_path / "training.json"
        path.write_text(json.dumps({"drills": []}), encoding="utf-8")
        assert TrainingStore(path).get_stats()["total"] == 0
        assert (tmp_path / "training.bak").exists()

    @pytest.mark.parametrize("document", [
        {"schedules": {"x": {"drill_id": "x"}}},
        {"drills": {"x": {"id": "x"}}},
        {"skills": {"tactics": "strong"}},
        {"history": {"tactics": ["WON"]}},
        {"history": {"openings": []}},
    ])
    def test_broken_entries(self, tmp_path, document):
        path = tmp_path / "training.json"
        path.write_text(json.dumps(document), encoding="utf-8")
        store = TrainingStore(path)
        assert store.get_stats()["total"] == 0
        assert store.get_due_drills() == []
        assert (tmp_path / "training.bak").exists()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestCli:

    def test_generate_review_due(self, tmp_path, capsys):
        store_path = str(tmp_path / "training.json")

        assert main(["--store", store_path, "generate", "--mode", "START_FROM_MOVE",
                     "--start-move", "10", "--seed", "3"]) == 0
        drill = json.loads(capsys.readouterr().out)
        assert drill["solution_san"][0] == "Re1"

        assert main(["--store", store_path, "due"]) == 0
        due = json.loads(capsys.readouterr().out)
        assert [d["id"] for d in due] == [drill["id"]]

        assert main(["--store", store_path, "review", drill["id"], "--correct",
                     "--duration-ms", "20000"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["outcome"] == "SLOW_SUCCESS"

        assert main(["--store", store_path, "due"]) == 0
        assert json.loads(capsys.readouterr().out) == []

    def test_generate_from_pgn_file(self, tmp_path, capsys, demo_game):
        pgn_path = tmp_path / "games.pgn"
        pgn_path.write_text(demo_game.pgn + "\n", encoding="utf-8")
        assert main(["--store", str(tmp_path / "t.json"), "generate", "--pgn", str(pgn_path),
                     "--mode", "CRITICAL_POSITION", "--seed", "5"]) == 0
        drill = json.loads(capsys.readouterr().out)
        assert drill["source_game_id"] == "games-1"
        assert drill["theme"] == "tactics"

    def test_generate_failure(self, tmp_path, capsys):
        pgn_path = tmp_path / "short.pgn"
        pgn_path.write_text("1. e4 e5 2. Nf3 *\n", encoding="utf-8")
        assert main(["--store", str(tmp_path / "t.json"), "generate", "--pgn", str(pgn_path)]) == 1
        assert json.loads(capsys.readouterr().out)["error"] == "no valid drill found"

    def test_review_unknown_drill(self, tmp_path, capsys):
        assert main(["--store", str(tmp_path / "t.json"), "review", "nope", "--abandon"]) == 1
        assert "Drill not found" in json.loads(capsys.readouterr().out)["error"]

    def test_skills_and_stats(self, tmp_path, capsys):
        store_path = str(tmp_path / "t.json")
        assert main(["--store", store_path, "skills"]) == 0
        skills = json.loads(capsys.readouterr().out)
        assert set(skills) == {"tactics", "advantage", "endgame"}
        assert skills["tactics"]["mastery"] == 40

        assert main(["--store", store_path, "stats"]) == 0
        assert json.loads(capsys.readouterr().out)["total"] == 0

    def test_regenerate_same_seed_keeps_progress(self, tmp_path, capsys):
        store_path = str(tmp_path / "training.json")
        args = ["--store", store_path, "generate", "--mode", "START_FROM_MOVE", "--seed", "1"]

        assert main(args) == 0
        drill = json.loads(capsys.readouterr().out)
        for _ in range(3):
            assert main(["--store", store_path, "review", drill["id"], "--correct"]) == 0
        capsys.readouterr()

        assert main(args) == 0
        assert json.loads(capsys.readouterr().out)["id"] == drill["id"]
        assert TrainingStore(store_path).get_schedule(drill["id"]).repetition == 3

    def test_broken_store_starts_fresh(self, tmp_path, capsys):
        store_path = tmp_path / "training.json"
        store_path.write_text(json.dumps({"schedules": {"x": {"drill_id": "x"}}}), encoding="utf-8")
        assert main(["--store", str(store_path), "due"]) == 0
        assert json.loads(capsys.readouterr().out) == []
        assert (tmp_path / "training.bak").exists()

    def test_no_command(self, capsys):
        assert main([]) == 1
