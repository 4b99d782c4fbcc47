"""Operational utilities for KidPots."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

from .persistence import utcnow

_LOGGER = logging.getLogger("kidpots")


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)


class StructuredLogger:
    """Write JSON lines log entries for admin inspection.

    Every entry is also forwarded to the ``kidpots`` stdlib logger so that the
    host application's handlers see it.
    """

    def __init__(self, *, path: Path | str | None = None, logger: Optional[logging.Logger] = None) -> None:
        self.path = Path(path) if path else None
        self._logger = logger or _LOGGER
        self._entries: list[dict] = []

    def log(self, event_type: str, *, level: int = logging.INFO, **fields: object) -> dict:
        entry = {"timestamp": utcnow().isoformat(), "event": event_type, **fields}
        self._entries.append(entry)
        line = json.dumps(entry, default=_json_default, sort_keys=True)
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        self._logger.log(level, line)
        return entry

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries[-limit:])

    def events(self, event_type: str) -> tuple[dict, ...]:
        return tuple(entry for entry in self._entries if entry["event"] == event_type)


__all__ = ["StructuredLogger"]
