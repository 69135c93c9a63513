"""Common dataclasses shared across backup modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set


@dataclass(slots=True)
class ArchiveInfo:
    """Archive file found at the destination."""

    name: str
    path: Path
    modified: datetime
    size_bytes: int


@dataclass(slots=True)
class CodecResult:
    files_added: int
    files_skipped: int
    incremental: bool


@dataclass(slots=True)
class BackupResult:
    name: str
    path: Path
    source: Path
    incremental: bool
    dry_run: bool = False
    files_added: int = 0
    files_skipped: int = 0
    size_bytes: int = 0


@dataclass(slots=True)
class VerifyResult:
    name: str
    digest: str
    record_path: Path


@dataclass(slots=True)
class RetentionPlan:
    keep: Set[str]
    remove: List[str]
    reasons: Dict[str, Set[str]] = field(default_factory=dict)


@dataclass(slots=True)
class RetentionSummary:
    removed: List[str]
    kept: List[str]
    freed_bytes: int


@dataclass(slots=True)
class BackupSummary:
    name: str
    created: datetime
    size_bytes: int
    has_checksum: bool
    path: Path


@dataclass(slots=True)
class RunSummary:
    backup: BackupResult
    verify: Optional[VerifyResult] = None
    retention: Optional[RetentionSummary] = None


__all__ = [
    "ArchiveInfo",
    "BackupResult",
    "BackupSummary",
    "CodecResult",
    "RetentionPlan",
    "RetentionSummary",
    "RunSummary",
    "VerifyResult",
]
