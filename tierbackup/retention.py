"""Tiered (daily/weekly/monthly) retention for archives at the destination."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .codec import is_archive_name
from .errors import BackupError
from .logs import BackupLogger
from .types import ArchiveInfo, RetentionPlan, RetentionSummary
from .verify import checksum_path_for

MONTHLY_MIN_AGE = timedelta(days=28)


@dataclass(slots=True)
class RetentionPolicy:
    daily_keep: int = 7
    weekly_keep: int = 4
    monthly_keep: int = 3


def load_archives(destination: Path) -> List[ArchiveInfo]:
    """Return the archives at *destination*, newest first."""

    items: List[ArchiveInfo] = []
    if not destination.is_dir():
        return items
    try:
        children = list(destination.iterdir())
    except OSError as exc:
        raise BackupError(f"Cannot list backups in {destination}: {exc}") from exc
    for child in children:
        if not is_archive_name(child.name) or not child.is_file():
            continue
        try:
            stat = child.stat()
        except FileNotFoundError:
            continue
        except OSError as exc:
            raise BackupError(f"Cannot inspect backup {child.name}: {exc}") from exc
        items.append(
            ArchiveInfo(
                name=child.name,
                path=child,
                modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                size_bytes=stat.st_size,
            )
        )
    items.sort(key=lambda info: (info.modified, info.name), reverse=True)
    return items


def _most_recent(items: Iterable[ArchiveInfo], count: int) -> List[ArchiveInfo]:
    ordered = sorted(items, key=lambda info: (info.modified, info.name), reverse=True)
    return ordered[: max(count, 0)]


def _latest_by_name(items: Iterable[ArchiveInfo], count: int) -> List[ArchiveInfo]:
    ordered = sorted(items, key=lambda info: info.name, reverse=True)
    return ordered[: max(count, 0)]


def plan_retention(
    items: Sequence[ArchiveInfo],
    policy: RetentionPolicy,
    *,
    now: Optional[datetime] = None,
) -> RetentionPlan:
    """Decide which archives survive. Pure: nothing on disk is touched.

    Each tier selects independently from the full set; an archive survives
    if any tier selected it.
    """

    current = now or datetime.now(timezone.utc)
    younger = [info for info in items if current - info.modified < MONTHLY_MIN_AGE]
    older = [info for info in items if current - info.modified >= MONTHLY_MIN_AGE]

    tiers = (
        ("daily", _most_recent(items, policy.daily_keep)),
        ("weekly", _latest_by_name(younger, policy.weekly_keep)),
        ("monthly", _latest_by_name(older, policy.monthly_keep)),
    )
    reasons: Dict[str, Set[str]] = {}
    for tier, selected in tiers:
        for info in selected:
            reasons.setdefault(info.name, set()).add(tier)

    keep = set(reasons)
    remove = sorted(info.name for info in items if info.name not in keep)
    return RetentionPlan(keep=keep, remove=remove, reasons=reasons)


def apply_retention(
    destination: Path,
    policy: RetentionPolicy,
    *,
    logger: BackupLogger,
    now: Optional[datetime] = None,
) -> RetentionSummary:
    items = load_archives(destination)
    plan = plan_retention(items, policy, now=now)
    logger.info("retention_start", destination=str(destination), archives=len(items), keep=len(plan.keep))

    removed: List[str] = []
    freed = 0
    for info in items:
        if info.name in plan.keep:
            continue
        try:
            info.path.unlink(missing_ok=True)
            checksum_path_for(info.path).unlink(missing_ok=True)
        except OSError as exc:
            logger.error("backup_remove_failed", archive=info.name, error=str(exc))
            raise BackupError(f"Failed to delete old backup {info.name}: {exc}") from exc
        removed.append(info.name)
        freed += info.size_bytes
        logger.info("backup_removed", archive=info.name, reason="retention")

    kept = [info.name for info in items if info.name in plan.keep]
    logger.event(event="retention_applied", phase="retention", ok=True, removed=len(removed), kept=len(kept))
    return RetentionSummary(removed=removed, kept=kept, freed_bytes=freed)


__all__ = ["MONTHLY_MIN_AGE", "RetentionPolicy", "apply_retention", "load_archives", "plan_retention"]
