"""Simulated mail notifications written to an append-only file."""
from __future__ import annotations

import time
from pathlib import Path
from typing import Optional, Protocol

from .errors import NotificationError
from .logs import BackupLogger

SUBJECT_SUCCESS = "Backup Success"
SUBJECT_FAILED = "Backup Failed"
SUBJECT_VERIFY_FAILED = "Backup Verification Failed"


class Notifier(Protocol):
    def notify(self, subject: str, message: str) -> None:
        ...


class FileNotifier:
    """Append one mail-like record per notification to *email_path*."""

    def __init__(self, email_path: Path, *, logger: Optional[BackupLogger] = None) -> None:
        self._email_path = Path(email_path)
        self._logger = logger

    def notify(self, subject: str, message: str) -> None:
        stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())
        record = f"---\nSubject: {subject}\nDate: {stamp}\n{message}\n\n"
        try:
            self._email_path.parent.mkdir(parents=True, exist_ok=True)
            with self._email_path.open("a", encoding="utf-8") as handle:
                handle.write(record)
        except OSError as exc:
            raise NotificationError(f"Cannot write notification to {self._email_path}: {exc}") from exc
        if self._logger is not None:
            self._logger.info("email_simulated", subject=subject)


def notify_failure(notifier: Notifier, subject: str, message: str, *, logger: BackupLogger) -> None:
    """Send a failure notification without masking the failure being reported."""

    try:
        notifier.notify(subject, message)
    except NotificationError as exc:
        logger.error("notify_failed", subject=subject, error=str(exc))


__all__ = [
    "FileNotifier",
    "Notifier",
    "SUBJECT_FAILED",
    "SUBJECT_SUCCESS",
    "SUBJECT_VERIFY_FAILED",
    "notify_failure",
]
