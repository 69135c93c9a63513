"""Error hierarchy for backup operations."""
from __future__ import annotations

from tiercore.settings import ConfigError, ConfigMissingError


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class AlreadyRunningError(BackupError):
    """Raised when another run holds the lock marker."""


class LockError(BackupError):
    """Raised when the lock marker cannot be created or inspected."""


class NotificationError(BackupError):
    """Raised when a notification record could not be written."""


class SourceNotFoundError(BackupError):
    """Raised when the source directory does not exist."""


class InsufficientSpaceError(BackupError):
    """Raised when the destination cannot hold a copy of the source tree."""

    def __init__(self, message: str, *, available_kb: int, required_kb: int) -> None:
        super().__init__(message)
        self.available_kb = available_kb
        self.required_kb = required_kb


class ArchiveCreationError(BackupError):
    """Raised when the archive could not be written."""


class BackupVerificationError(BackupError):
    """Raised when verification of an archive fails."""


class ChecksumWriteError(BackupVerificationError):
    """Raised when the fingerprint record could not be written."""


class ChecksumMismatchError(BackupVerificationError):
    """Raised when an archive no longer matches its fingerprint record."""


class BackupRestoreError(BackupError):
    """Raised when restoring an archive fails."""


class BackupNotFoundError(BackupRestoreError):
    """Raised when the named archive is not present at the destination."""


class RestoreFailedError(BackupRestoreError):
    """Raised when extraction does not complete cleanly."""


__all__ = [
    "AlreadyRunningError",
    "ArchiveCreationError",
    "BackupError",
    "BackupNotFoundError",
    "BackupRestoreError",
    "BackupVerificationError",
    "ChecksumMismatchError",
    "ChecksumWriteError",
    "ConfigError",
    "ConfigMissingError",
    "InsufficientSpaceError",
    "LockError",
    "NotificationError",
    "RestoreFailedError",
    "SourceNotFoundError",
]
