"""Operational utilities for ChorePoints."""

from __future__ import annotations

import json
import threading
from pathlib import Path

from .models import utcnow


class StructuredLogger:
    """Write JSON lines log entries for admin inspection."""

    def __init__(self, *, path: Path | str | None = None, keep: int = 1000) -> None:
        self.path = Path(path) if path else None
        self._keep = keep
        self._entries: list[dict] = []
        self._lock = threading.Lock()

    def log(self, event_type: str, *, severity: str = "info", **fields: object) -> dict:
        entry = {
            "timestamp": utcnow().isoformat(),
            "event": event_type,
            "severity": severity,
            **fields,
        }
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._keep:
                del self._entries[: len(self._entries) - self._keep]
            if self.path:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def anomaly(self, event_type: str, **fields: object) -> dict:
        """Log a recoverable inconsistency that needs reconciling."""

        return self.log(event_type, severity="warning", **fields)

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        with self._lock:
            return tuple(self._entries[-limit:])

    def events(self, event_type: str) -> tuple[dict, ...]:
        with self._lock:
            return tuple(entry for entry in self._entries if entry["event"] == event_type)


__all__ = ["StructuredLogger"]
