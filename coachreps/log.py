"""Event logging with an in-memory buffer for diagnostics.

Events go to stderr so JSON written to stdout by the CLI stays clean.
"""

from __future__ import annotations

import json
import os
import sys
from collections import deque
from datetime import datetime, timezone

_LOG_BUFFER_SIZE = 50
_DEBUG_ENV = "COACHREPS_DEBUG"

_LEVELS = ("debug", "info", "warn", "error")

_buffer: deque[dict] = deque(maxlen=_LOG_BUFFER_SIZE)


def log_event(event: str, data: dict | None = None, level: str = "info") -> dict:
    """Record an event and print it with flush for progress visibility.

    Debug events are always buffered but only printed when
    $COACHREPS_DEBUG is set to 1.

    Returns:
        The buffered entry.
    """
    if level not in _LEVELS:
        raise ValueError(f"Unknown log level: {level}")

    entry = {
        "event": event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "data": data or {},
    }
    _buffer.appendleft(entry)

    if level != "debug" or os.environ.get(_DEBUG_ENV) == "1":
        payload = json.dumps(entry["data"], default=str, ensure_ascii=False)
        print(f"[{event}] {payload}", file=sys.stderr, flush=True)
    return entry


def get_recent_logs() -> list[dict]:
    """Most recent events first."""
    return list(_buffer)


def clear_logs() -> None:
    _buffer.clear()
