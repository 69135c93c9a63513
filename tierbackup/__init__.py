"""Backup lifecycle orchestration: locking, creation, verification, rotation and restore."""
from __future__ import annotations

from .api import BackupService
from .errors import BackupError
from .retention import RetentionPolicy
from .types import BackupResult, BackupSummary, RetentionSummary, RunSummary

__version__ = "0.1.0"

__all__ = [
    "BackupError",
    "BackupResult",
    "BackupService",
    "BackupSummary",
    "RetentionPolicy",
    "RetentionSummary",
    "RunSummary",
    "__version__",
]
