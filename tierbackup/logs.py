"""Append-only JSONL event log for backup runs.

Every entry carries ``ts``, ``run``, ``event`` and ``ok`` plus free-form
fields. ``run`` identifies the :class:`BackupLogger` that wrote it, so the
entries of one run can be grouped when several runs share a log file.
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

LOGGER = logging.getLogger("tierbackup.events")

_HEADER_KEYS = ("ts", "run", "event", "phase", "ok")


class BackupLogger:
    def __init__(self, log_path: Path, *, run_id: Optional[str] = None) -> None:
        self._log_path = Path(log_path)
        self._run_id = run_id or uuid.uuid4().hex[:12]
        self._guard = Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    @property
    def run_id(self) -> str:
        return self._run_id

    # ------------------------------------------------------------------
    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        """Record a phase outcome; failures are mirrored at ERROR level."""

        self._emit(logging.INFO if ok else logging.ERROR, event, ok=ok, phase=phase, **extra)

    def info(self, event: str, **extra: Any) -> None:
        self._emit(logging.INFO, event, ok=True, **extra)

    def warning(self, event: str, **extra: Any) -> None:
        self._emit(logging.WARNING, event, ok=False, **extra)

    def error(self, event: str, **extra: Any) -> None:
        self._emit(logging.ERROR, event, ok=False, **extra)

    def read_events(self) -> List[Dict[str, Any]]:
        """Return the entries written so far, oldest first. Unparsable lines are skipped."""

        try:
            lines = self._log_path.read_text(encoding="utf-8").splitlines()
        except (FileNotFoundError, NotADirectoryError):
            return []
        entries: List[Dict[str, Any]] = []
        for line in lines:
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(entry, dict):
                entries.append(entry)
        return entries

    # ------------------------------------------------------------------
    def _emit(self, level: int, event: str, *, ok: bool, **fields: Any) -> None:
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "run": self._run_id,
            "event": event,
            "ok": bool(ok),
        }
        entry.update(fields)
        line = json.dumps(entry, sort_keys=True, default=str)
        try:
            with self._guard:
                self._log_path.parent.mkdir(parents=True, exist_ok=True)
                with self._log_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        except OSError as exc:
            # the console mirror below still carries the entry
            LOGGER.error("event log %s is not writable: %s", self._log_path, exc)
        LOGGER.log(level, "%s", _render(entry))


def _render(entry: Dict[str, Any]) -> str:
    details = " ".join(f"{key}={value}" for key, value in entry.items() if key not in _HEADER_KEYS)
    return f"{entry['event']} {details}".rstrip()


__all__ = ["BackupLogger"]
