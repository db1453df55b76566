"""Tunable constants for the training engine.

Every threshold used by the classifier, skill model, scheduler and drill
generator lives on EngineConfig so it can be overridden per call or loaded
from a JSON file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

_CONFIG_ENV = "COACHREPS_CONFIG"
_DATA_DIR_ENV = "COACHREPS_DATA_DIR"


@dataclass(frozen=True)
class EngineConfig:
    """Learning contract and generation limits."""

    # Learning loop
    perfect_time_threshold_ms: int = 15000
    max_retries_allowed: int = 1
    tilt_failure_limit: int = 3
    mastery_threshold: float = 80.0

    # Skill model
    k_factor_base: float = 20.0
    initial_mastery: float = 40.0
    initial_confidence: float = 0.2

    # SM-2 scheduler
    initial_ease_factor: float = 2.5
    min_ease_factor: float = 1.3

    # Drill generation
    max_generation_attempts: int = 50
    min_history_plies: int = 12
    solution_plies: int = 6
    default_start_move: int = 10


DEFAULT_CONFIG = EngineConfig()


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load config overrides from a JSON object.

    Falls back to $COACHREPS_CONFIG when no path is given. A missing file
    yields the defaults.

    Raises:
        ValueError: If the file is not a JSON object or names unknown keys.
    """
    if path is None:
        path = os.environ.get(_CONFIG_ENV)
    if not path:
        return DEFAULT_CONFIG

    config_path = Path(path)
    if not config_path.exists():
        return DEFAULT_CONFIG

    data = json.loads(config_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Config file must contain a JSON object")

    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

    return replace(DEFAULT_CONFIG, **data)


def data_dir() -> Path:
    """Directory holding the training store (default ./data)."""
    return Path(os.environ.get(_DATA_DIR_ENV, "data"))
