"""Process-lifetime admission counters per key."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass


@dataclass
class MetricsEntry:
    requests: int = 0
    blocks: int = 0


class MetricsRecorder:
    """Thread-safe tally of admitted requests and blocks per key.

    Entries are created on first observation and live as long as the recorder.
    """

    def __init__(self) -> None:
        self._entries: dict[str, MetricsEntry] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"MetricsRecorder(keys={len(self._entries)})"

    def record_request(self, key: str) -> None:
        """Count one admitted request for key."""
        with self._lock:
            self._entries.setdefault(key, MetricsEntry()).requests += 1

    def record_block(self, key: str) -> None:
        """Count one denied or throttled request for key."""
        with self._lock:
            self._entries.setdefault(key, MetricsEntry()).blocks += 1

    def get_stats(self) -> dict[str, dict[str, int]]:
        """Return a snapshot of every key's counters.

        The returned mapping is a copy; mutating it does not affect the
        recorder, and calling this has no side effects.
        """
        with self._lock:
            return {key: asdict(entry) for key, entry in self._entries.items()}
