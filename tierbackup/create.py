"""Create timestamped full or incremental archives of a source tree."""
from __future__ import annotations

import math
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from tiercore.settings import split_patterns

from .codec import ARCHIVE_PREFIX, ARCHIVE_SUFFIX, SNAPSHOT_NAME, write_archive
from .errors import ArchiveCreationError, InsufficientSpaceError, SourceNotFoundError
from .logs import BackupLogger
from .notify import SUBJECT_FAILED, Notifier, notify_failure
from .types import BackupResult

_TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M"

Clock = Callable[[], datetime]


def archive_name_for(moment: datetime) -> str:
    return f"{ARCHIVE_PREFIX}{moment.strftime(_TIMESTAMP_FORMAT)}{ARCHIVE_SUFFIX}"


def _raise(error: OSError) -> None:
    raise error


def tree_usage_kb(root: Path) -> int:
    """Allocated size of *root* in KiB, counting blocks like ``du -sk``."""

    total = 0
    seen = set()

    def _account(path: str) -> None:
        nonlocal total
        stat = os.lstat(path)
        key = (stat.st_dev, stat.st_ino)
        if key in seen:
            return
        seen.add(key)
        blocks = getattr(stat, "st_blocks", None)
        total += blocks * 512 if blocks is not None else stat.st_size

    _account(str(root))
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        for name in dirnames + filenames:
            _account(os.path.join(dirpath, name))
    return int(math.ceil(total / 1024))


def _ensure_destination(destination: Path) -> None:
    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ArchiveCreationError(f"Cannot create destination {destination}: {exc}") from exc


def check_space(source: Path, destination: Path, *, logger: BackupLogger) -> None:
    """Raise :class:`InsufficientSpaceError` when the destination cannot hold the source.

    When either figure cannot be measured the check is skipped with a warning.
    """

    try:
        available_kb = int(shutil.disk_usage(destination).free // 1024)
        required_kb = tree_usage_kb(source)
    except OSError as exc:
        logger.warning("disk_space_unknown", destination=str(destination), error=str(exc))
        return
    if available_kb < required_kb:
        raise InsufficientSpaceError(
            f"Not enough disk space for backup. Available={available_kb}KB Required={required_kb}KB",
            available_kb=available_kb,
            required_kb=required_kb,
        )
    logger.info("disk_space_ok", available_kb=available_kb, required_kb=required_kb)


def create_backup(
    source: Path,
    destination: Path,
    *,
    logger: BackupLogger,
    notifier: Notifier,
    exclude_patterns: str | Iterable[str] | None = None,
    dry_run: bool = False,
    clock: Optional[Clock] = None,
) -> BackupResult:
    source = Path(source)
    destination = Path(destination)
    if not source.is_dir():
        raise SourceNotFoundError(f"Source directory not found: {source}")

    moment = (clock or datetime.now)()
    name = archive_name_for(moment)
    archive_path = destination / name
    snapshot_path = destination / SNAPSHOT_NAME
    patterns = split_patterns(exclude_patterns)

    logger.event(event="backup_start", phase="create", ok=True, source=str(source), archive=name)

    if dry_run:
        incremental = snapshot_path.exists()
        logger.info(
            "dry_run",
            source=str(source),
            destination=str(destination),
            archive=name,
            mode="incremental" if incremental else "full",
            exclude=list(patterns),
        )
        return BackupResult(name=name, path=archive_path, source=source, incremental=incremental, dry_run=True)

    stamp = moment.strftime("%Y-%m-%d %H:%M:%S")
    try:
        _ensure_destination(destination)
        check_space(source, destination, logger=logger)
        if archive_path.exists():
            raise ArchiveCreationError(f"Archive {name} already exists; refusing to overwrite it")
        if snapshot_path.exists():
            logger.info("backup_mode", mode="incremental", snapshot=str(snapshot_path))
        else:
            logger.info("backup_mode", mode="full")
        codec_result = write_archive(
            source,
            archive_path,
            snapshot_path=snapshot_path,
            exclude_patterns=patterns,
            logger=logger,
        )
    except InsufficientSpaceError as exc:
        logger.event(
            event="backup_failed",
            phase="create",
            ok=False,
            reason="insufficient_space",
            available_kb=exc.available_kb,
            required_kb=exc.required_kb,
        )
        notify_failure(notifier, SUBJECT_FAILED, f"Backup of {source} skipped at {stamp}: {exc}", logger=logger)
        raise
    except ArchiveCreationError as exc:
        logger.event(event="backup_failed", phase="create", ok=False, archive=name, error=str(exc))
        notify_failure(notifier, SUBJECT_FAILED, f"Backup of {source} failed at {stamp}", logger=logger)
        raise

    try:
        size = archive_path.stat().st_size
    except OSError as exc:
        raise ArchiveCreationError(f"Cannot stat new archive {name}: {exc}") from exc
    logger.event(
        event="backup_complete",
        phase="create",
        ok=True,
        archive=name,
        mode="incremental" if codec_result.incremental else "full",
        size=size,
    )
    return BackupResult(
        name=name,
        path=archive_path,
        source=source,
        incremental=codec_result.incremental,
        files_added=codec_result.files_added,
        files_skipped=codec_result.files_skipped,
        size_bytes=size,
    )


__all__ = ["archive_name_for", "check_space", "create_backup", "tree_usage_kb"]
